import pytest
from sqlalchemy import func, select, update

from mentra.app.core.exceptions import (
    AccessDeniedError,
    JournalStorageError,
    JournalValidationError,
    KeyPersistenceError,
    NotFoundError,
)
from mentra.app.models.encryption_key import EncryptionKey
from mentra.app.models.journal_entry import JournalEntry, PrivacyLevel
from mentra.app.models.relations import Tag
from mentra.app.schemas.journal import DECRYPTION_FAILED, RequestInfo
from mentra.app.services.activity import ActivityTracker


async def _count(session_factory, model) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar()


async def _corrupt(session_factory, entry_id, **values):
    async with session_factory() as session:
        async with session.begin():
            await session.execute(update(JournalEntry).where(JournalEntry.id == entry_id).values(**values))


# ─────────────────────────────────────────────────────────────────────────────
# create / find_by_id
# ─────────────────────────────────────────────────────────────────────────────
async def test_create_hello_world(repo, entry_data):
    view = await repo.create(entry_data)

    assert view.student_id == "student-1"
    assert view.word_count == 2
    assert view.reading_time_minutes == 1
    assert view.privacy_level is PrivacyLevel.PRIVATE
    assert view.is_private is True
    assert view.content == "Hello world"
    assert view.plain_text_content == "Hello world"
    assert view.encryption_metadata.decryption_successful is True
    assert view.encryption_metadata.encryption_method == "aes256"
    assert view.encryption_metadata.key_id.startswith("student_")


async def test_markup_only_content_has_zero_words(repo, entry_data):
    created = await repo.create({**entry_data, "content": "<p></p>"})

    assert created.word_count == 0
    assert created.reading_time_minutes == 0

    view = await repo.find_by_id(created.id, "student-1")
    assert view.content == "<p></p>"
    assert view.word_count == 0
    assert view.reading_time_minutes == 0


async def test_content_whitespace_is_preserved(repo, session_factory, entry_data):
    body = "  indented first line\n\nlast line  \n"
    created = await repo.create({**entry_data, "title": "  Padded title  ", "content": body})

    assert created.title == "Padded title"
    assert created.content == body

    view = await repo.find_by_id(created.id, "student-1")
    assert view.content == body
    assert view.encryption_metadata.integrity_verified is True
    async with session_factory() as session:
        row = await session.get(JournalEntry, created.id)
    assert row.content_hash == repo.codec.content_hash(body)

    updated = await repo.update(created.id, {"content": " new body "}, "student-1")
    assert updated.content == " new body "


async def test_create_and_read_return_the_same_shape(repo, entry_data):
    created = await repo.create({
        **entry_data,
        "tags": ["zeta", "alpha"],
        "emotionalState": {"primary": "calm"},
        "attachments": [{"originalFilename": "drawing.png", "mimeType": "image/png"}],
    })

    view = await repo.find_by_id(created.id, "student-1")

    assert created.tags == view.tags == ["alpha", "zeta"]
    for timestamp in (view.created_at, view.updated_at, view.last_edited_at, view.encryption_metadata.encrypted_at,
                      view.emotional_state.detected_at, view.attachments[0].created_at):
        assert timestamp.tzinfo is not None
    assert view.created_at == created.created_at

    page = await repo.find_by_student_id("student-1", "student-1")
    assert page.entries[0].created_at.tzinfo is not None


async def test_content_is_stored_encrypted(repo, session_factory, entry_data):
    view = await repo.create(entry_data)

    async with session_factory() as session:
        row = await session.get(JournalEntry, view.id)

    assert b"Hello world" not in row.encrypted_content
    assert b"Hello world" not in row.encrypted_plain_text
    assert row.content_hash == repo.codec.content_hash("Hello world")
    assert await _count(session_factory, EncryptionKey) == 1


async def test_owner_reads_decrypted_entry_and_read_is_audited(repo, audit_logger, entry_data):
    created = await repo.create({
        **entry_data,
        "content": "<p>Today I <b>learned</b> fractions</p>",
        "emotionalState": {"primary": "Happy", "intensity": 0.8, "secondary": ["Proud"]},
        "tags": ["Math", " math ", "Fractions", ""],
    })

    view = await repo.find_by_id(created.id, "student-1", RequestInfo(source="mobile"))

    assert view.content == "<p>Today I <b>learned</b> fractions</p>"
    assert view.plain_text_content == "Today I learned fractions"
    assert view.word_count == 4
    assert view.tags == ["fractions", "math"]
    assert view.emotional_state.primary == "happy"
    assert view.emotional_state.secondary == ["proud"]
    assert view.encryption_metadata.integrity_verified is True

    await audit_logger.drain()
    log = await audit_logger.list_for_entry(created.id)
    assert [(r.access_type, r.access_source, r.decryption_successful) for r in log] == [("read", "mobile", True)]


async def test_find_by_id_missing_returns_none(repo):
    assert await repo.find_by_id("does-not-exist", "student-1") is None


async def test_corrupted_content_degrades_to_placeholder(repo, session_factory, audit_logger, entry_data):
    created = await repo.create(entry_data)
    async with session_factory() as session:
        row = await session.get(JournalEntry, created.id)
    broken = bytearray(row.encrypted_content)
    broken[-1] ^= 0xFF
    await _corrupt(session_factory, created.id, encrypted_content=bytes(broken))

    view = await repo.find_by_id(created.id, "student-1")

    assert view.content == DECRYPTION_FAILED
    # The plain text field decrypts on its own
    assert view.plain_text_content == "Hello world"
    assert view.encryption_metadata.decryption_successful is False
    assert view.title == "First day"

    await audit_logger.drain()
    log = await audit_logger.list_for_entry(created.id)
    assert [r.decryption_successful for r in log] == [False]


async def test_unknown_key_id_degrades_both_fields(repo, session_factory, entry_data):
    created = await repo.create(entry_data)
    await _corrupt(session_factory, created.id, encryption_key_id="lost-key")

    view = await repo.find_by_id(created.id, "student-1")

    assert view.content == DECRYPTION_FAILED
    assert view.plain_text_content == DECRYPTION_FAILED
    assert view.encryption_metadata.decryption_successful is False


async def test_hash_mismatch_is_treated_as_unreadable(repo, session_factory, entry_data):
    created = await repo.create(entry_data)
    await _corrupt(session_factory, created.id, content_hash="0" * 64)

    view = await repo.find_by_id(created.id, "student-1")

    assert view.content == DECRYPTION_FAILED
    assert view.encryption_metadata.decryption_successful is False
    assert view.encryption_metadata.integrity_verified is False


async def test_non_owner_denied_private_entry(repo, audit_logger, entry_data):
    created = await repo.create(entry_data)

    with pytest.raises(AccessDeniedError):
        await repo.find_by_id(created.id, "teacher-9", RequestInfo(user_role="teacher"))

    await audit_logger.drain()
    decisions = await audit_logger.list_decisions(created.id)
    assert [(d.user_id, d.user_role, d.result) for d in decisions] == [("teacher-9", "teacher", "denied")]


async def test_non_owner_reads_shared_entry(repo, entry_data):
    created = await repo.create({**entry_data, "isPrivate": False, "isShareableWithTeacher": True})

    view = await repo.find_by_id(created.id, "teacher-9", {"userRole": "teacher"})

    assert view.privacy_level is PrivacyLevel.TEACHER_SHAREABLE
    assert view.content == "Hello world"


# ─────────────────────────────────────────────────────────────────────────────
# create failure paths
# ─────────────────────────────────────────────────────────────────────────────
@pytest.mark.parametrize(
    "override",
    [
        {"title": "   "},
        {"content": ""},
        {"content": " \n\t "},
        {"title": "x" * 501},
        {"emotionalState": {"primary": "calm", "intensity": 1.5}},
    ],
)
async def test_create_rejects_invalid_input(repo, entry_data, override):
    with pytest.raises(JournalValidationError):
        await repo.create({**entry_data, **override})


async def test_create_rolls_back_everything_on_relation_failure(repo, session_factory, entry_data, monkeypatch):
    from sqlalchemy.exc import OperationalError

    async def broken_save(*args, **kwargs):
        raise OperationalError("INSERT INTO journal_tags", {}, Exception("disk I/O error"))

    monkeypatch.setattr(repo.tags, "save", broken_save)

    with pytest.raises(JournalStorageError) as exc_info:
        await repo.create({**entry_data, "tags": ["math"]})

    assert exc_info.value.type == "STORAGE_ERROR"
    assert isinstance(exc_info.value.__cause__, OperationalError)
    assert await _count(session_factory, JournalEntry) == 0
    assert await _count(session_factory, EncryptionKey) == 0


async def test_create_key_failure_propagates(repo, session_factory, entry_data, monkeypatch):
    first = await repo.create(entry_data)
    # Force a key id collision on the unique key_id column
    key_id = first.encryption_metadata.key_id
    monkeypatch.setattr("mentra.app.security.keys.build_key_id", lambda owner: key_id)

    with pytest.raises(KeyPersistenceError):
        await repo.create(entry_data)
    assert await _count(session_factory, JournalEntry) == 1
    assert await _count(session_factory, EncryptionKey) == 1


@pytest.mark.parametrize("student_id", ["john.doe", "alice@example.com", "s" * 64])
async def test_create_accepts_any_owner_id(repo, entry_data, student_id):
    created = await repo.create({**entry_data, "studentId": student_id})

    view = await repo.find_by_id(created.id, student_id)
    assert view.student_id == student_id
    assert view.content == "Hello world"
    assert view.encryption_metadata.decryption_successful is True


async def test_activity_tracker_failure_does_not_fail_create(session_factory, key_manager, codec, audit_logger, entry_data):
    from mentra.app.services.journal_repository import JournalEntryRepository

    class ExplodingTracker(ActivityTracker):
        async def track(self, activity_type, student_id, details):
            raise RuntimeError("monitor down")

    repo = JournalEntryRepository(session_factory, key_manager, codec, audit_logger, activity_tracker=ExplodingTracker())
    view = await repo.create(entry_data)

    assert await repo.find_by_id(view.id, "student-1") is not None


# ─────────────────────────────────────────────────────────────────────────────
# update
# ─────────────────────────────────────────────────────────────────────────────
async def test_update_sharing_flags_to_public(repo, entry_data):
    created = await repo.create({**entry_data, "isPrivate": False})
    assert created.privacy_level is PrivacyLevel.PRIVATE

    view = await repo.update(
        created.id,
        {"isShareableWithTeacher": True, "isShareableWithParent": True},
        "student-1",
    )

    assert view.is_private is False
    assert view.privacy_level is PrivacyLevel.PUBLIC


async def test_update_private_flag_wins(repo, entry_data):
    created = await repo.create({**entry_data, "isPrivate": False, "isShareableWithTeacher": True})

    view = await repo.update(created.id, {"isPrivate": True}, "student-1")

    assert view.privacy_level is PrivacyLevel.PRIVATE
    assert view.is_shareable_with_teacher is True


async def test_update_content_reencrypts_under_same_key(repo, audit_logger, entry_data):
    created = await repo.create(entry_data)

    view = await repo.update(created.id, {"content": "<p>one two three four five</p>"}, "student-1")

    assert view.content == "<p>one two three four five</p>"
    assert view.plain_text_content == "one two three four five"
    assert view.word_count == 5
    assert view.encryption_metadata.key_id == created.encryption_metadata.key_id
    assert view.last_edited_at >= created.last_edited_at

    await audit_logger.drain()
    log = await audit_logger.list_for_entry(created.id)
    assert [r.access_type for r in log] == ["edit"]


async def test_update_replaces_tags_and_emotion(repo, session_factory, entry_data):
    created = await repo.create({
        **entry_data,
        "tags": ["math", "science"],
        "emotionalState": {"primary": "anxious"},
    })

    view = await repo.update(
        created.id,
        {"tags": ["Art", "math"], "emotionalState": {"primary": "calm", "intensity": 0.3}},
        "student-1",
    )
    assert view.tags == ["art", "math"]
    assert view.emotional_state.primary == "calm"
    assert view.emotional_state.intensity == 0.3

    async with session_factory() as session:
        counts = dict((await session.execute(select(Tag.name, Tag.usage_count))).all())
    assert counts == {"math": 2, "science": 1, "art": 1}

    cleared = await repo.update(created.id, {"emotionalState": None, "title": "Renamed"}, "student-1")
    assert cleared.emotional_state is None
    assert cleared.title == "Renamed"
    # Tags left out of the update stay as they were
    assert cleared.tags == ["art", "math"]


async def test_tag_save_tolerates_tag_committed_by_another_transaction(repo, session_factory, entry_data):
    created = await repo.create(entry_data)
    # Another student's create committed the tag after ours started
    async with session_factory() as session:
        async with session.begin():
            session.add(Tag(name="math", created_by="student-2", usage_count=0))

    async with session_factory() as session:
        async with session.begin():
            await repo.tags.save(session, created.id, ["Math", "art"], "student-1")
            # Saving the same links again neither fails nor double counts
            await repo.tags.save(session, created.id, ["math"], "student-1")

    async with session_factory() as session:
        counts = dict((await session.execute(select(Tag.name, Tag.usage_count))).all())
        owners = dict((await session.execute(select(Tag.name, Tag.created_by))).all())
    assert counts == {"math": 1, "art": 1}
    assert owners["math"] == "student-2"

    view = await repo.find_by_id(created.id, "student-1")
    assert view.tags == ["art", "math"]


async def test_empty_update_still_bumps_last_edited_at(repo, entry_data):
    created = await repo.create(entry_data)

    view = await repo.update(created.id, {}, "student-1")

    assert view.last_edited_at > created.last_edited_at
    assert view.updated_at > created.updated_at
    assert view.content == "Hello world"
    assert view.title == "First day"


async def test_update_requires_owner(repo, entry_data):
    created = await repo.create({**entry_data, "isPrivate": False, "isShareableWithTeacher": True})

    with pytest.raises(AccessDeniedError):
        await repo.update(created.id, {"title": "Hijacked"}, "teacher-9")

    view = await repo.find_by_id(created.id, "student-1")
    assert view.title == "First day"


async def test_update_missing_entry(repo):
    with pytest.raises(NotFoundError):
        await repo.update("missing", {"title": "x"}, "student-1")


# ─────────────────────────────────────────────────────────────────────────────
# delete
# ─────────────────────────────────────────────────────────────────────────────
async def test_delete_is_soft_and_idempotent(repo, session_factory, audit_logger, entry_data):
    created = await repo.create(entry_data)

    assert await repo.delete(created.id, "student-1") is True
    assert await repo.find_by_id(created.id, "student-1") is None
    assert await repo.delete(created.id, "student-1") is False

    async with session_factory() as session:
        row = await session.get(JournalEntry, created.id)
    assert row.deleted_at is not None

    await audit_logger.drain()
    log = await audit_logger.list_for_entry(created.id)
    assert sorted(r.access_type for r in log) == ["delete", "read"]


async def test_delete_unknown_entry(repo):
    with pytest.raises(NotFoundError):
        await repo.delete("missing", "student-1")


async def test_delete_requires_owner(repo, entry_data):
    shared = await repo.create({**entry_data, "isPrivate": False, "isShareableWithParent": True})
    private = await repo.create(entry_data)

    with pytest.raises(AccessDeniedError):
        await repo.delete(shared.id, "parent-3")
    with pytest.raises(AccessDeniedError):
        await repo.delete(private.id, "parent-3")

    assert await repo.find_by_id(shared.id, "student-1") is not None


# ─────────────────────────────────────────────────────────────────────────────
# find_by_student_id
# ─────────────────────────────────────────────────────────────────────────────
async def test_pagination(repo, entry_data):
    for i in range(5):
        await repo.create({**entry_data, "title": f"Entry {i}"})

    first = await repo.find_by_student_id("student-1", "student-1", {"limit": 2, "offset": 0})
    last = await repo.find_by_student_id("student-1", "student-1", {"limit": 2, "offset": 4})

    assert first.total == 5
    assert len(first.entries) == 2
    assert first.has_more is True
    assert [e.title for e in first.entries] == ["Entry 4", "Entry 3"]
    assert first.pagination.limit == 2

    assert len(last.entries) == 1
    assert last.has_more is False
    assert last.entries[0].encryption_metadata.content_available is False


async def test_limit_is_capped(repo):
    with pytest.raises(JournalValidationError):
        await repo.find_by_student_id("student-1", "student-1", {"limit": 101})


async def test_non_owner_listing_excludes_private(repo, entry_data):
    await repo.create({**entry_data, "title": "Secret"})
    await repo.create({**entry_data, "title": "Shared", "isPrivate": False, "isShareableWithTeacher": True})

    owner_page = await repo.find_by_student_id("student-1", "student-1")
    teacher_page = await repo.find_by_student_id("student-1", "teacher-9", {"includePrivate": True})
    owner_public_only = await repo.find_by_student_id("student-1", "student-1", {"includePrivate": False})

    assert owner_page.total == 2
    assert [e.title for e in teacher_page.entries] == ["Shared"]
    assert [e.title for e in owner_public_only.entries] == ["Shared"]


async def test_list_filters(repo, entry_data):
    await repo.create({**entry_data, "title": "Math quiz", "tags": ["math"], "emotionalState": {"primary": "anxious"}})
    await repo.create({**entry_data, "title": "Art class", "tags": ["art"], "emotionalState": {"primary": "happy"}})
    await repo.create({**entry_data, "title": "100% effort", "tags": ["math", "art"]})

    by_tag = await repo.find_by_student_id("student-1", "student-1", {"tags": "math"})
    by_emotion = await repo.find_by_student_id("student-1", "student-1", {"emotions": ["Happy"]})
    by_title = await repo.find_by_student_id("student-1", "student-1", {"searchQuery": "QUIZ"})
    by_literal_percent = await repo.find_by_student_id("student-1", "student-1", {"searchQuery": "100%"})
    by_title_asc = await repo.find_by_student_id("student-1", "student-1", {"sortBy": "title", "sortOrder": "ASC"})

    assert sorted(e.title for e in by_tag.entries) == ["100% effort", "Math quiz"]
    assert [e.title for e in by_emotion.entries] == ["Art class"]
    assert [e.title for e in by_title.entries] == ["Math quiz"]
    assert [e.title for e in by_literal_percent.entries] == ["100% effort"]
    assert [e.title for e in by_title_asc.entries] == ["100% effort", "Art class", "Math quiz"]


async def test_unknown_sort_column_rejected(repo):
    with pytest.raises(JournalValidationError):
        await repo.find_by_student_id("student-1", "student-1", {"sortBy": "encrypted_content"})


# ─────────────────────────────────────────────────────────────────────────────
# bulk privacy, statistics, access log, health
# ─────────────────────────────────────────────────────────────────────────────
async def test_bulk_update_privacy_collects_outcomes(repo, entry_data):
    a = await repo.create(entry_data)
    b = await repo.create(entry_data)
    other = await repo.create({**entry_data, "studentId": "student-2"})

    result = await repo.bulk_update_privacy(
        [a.id, b.id, other.id, "missing"],
        "student-1",
        {"isPrivate": False, "isShareableWithParent": True},
        "student-1",
    )

    assert result.total_entries == 4
    assert result.successful == 2
    assert result.failed == 2
    outcomes = {r["entryId"]: r for r in result.results}
    assert outcomes[a.id]["privacyLevel"] == "parent_shareable"
    assert outcomes[other.id]["type"] == "ACCESS_DENIED"
    assert outcomes["missing"]["type"] == "NOT_FOUND"


async def test_bulk_update_privacy_guards(repo):
    with pytest.raises(AccessDeniedError):
        await repo.bulk_update_privacy(["x"], "student-1", {"isPrivate": False}, "student-2")
    with pytest.raises(JournalValidationError):
        await repo.bulk_update_privacy([], "student-1", {"isPrivate": False}, "student-1")
    with pytest.raises(JournalValidationError):
        await repo.bulk_update_privacy([str(i) for i in range(51)], "student-1", {"isPrivate": False}, "student-1")
    with pytest.raises(JournalValidationError):
        await repo.bulk_update_privacy(["x"], "student-1", {}, "student-1")


async def test_statistics(repo, entry_data):
    await repo.create(entry_data)
    await repo.create({**entry_data, "content": "one two three four"})
    await repo.create({**entry_data, "content": "hidden from others"})

    stats = await repo.get_statistics("student-1", "student-1")

    assert stats.total_entries == 3
    assert stats.recent_entries == 3
    assert stats.total_word_count == 9
    assert stats.average_words_per_entry == 3
    assert stats.current_streak == 1
    assert stats.last_entry_date is not None

    assert (await repo.get_statistics("student-1", "teacher-9")).total_entries == 0


async def test_access_log_is_owner_only(repo, audit_logger, entry_data):
    created = await repo.create({**entry_data, "isPrivate": False, "isShareableWithTeacher": True})
    await repo.find_by_id(created.id, "teacher-9", {"userRole": "teacher", "ipAddress": "10.1.1.1"})
    await audit_logger.drain()

    items = await repo.get_access_log(created.id, "student-1")
    assert [(i.accessed_by, i.ip_address, i.privacy_level_at_access) for i in items] == [
        ("teacher-9", "10.1.1.1", "teacher_shareable"),
    ]

    with pytest.raises(AccessDeniedError):
        await repo.get_access_log(created.id, "teacher-9")
    with pytest.raises(NotFoundError):
        await repo.get_access_log("missing", "student-1")


async def test_health_check(repo):
    health = await repo.health_check()

    assert health["status"] == "healthy"
    assert health["features"]["databaseConnection"] == "connected"
