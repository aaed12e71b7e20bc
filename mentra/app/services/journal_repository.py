# mentra/app/services/journal_repository.py
"""
Encrypted journal entry repository.

Owns the entry lifecycle (create / read / list / update / soft delete) and
ties together key management, field encryption, relation records, the
access policy and the audit trail.

Transactions:
- every mutation runs in ``async with session.begin()``; any exception rolls
  the whole unit back (entry, key row, emotion, tags, attachments) before it
  propagates, and the connection goes back to the pool on exit
- audit rows and activity tracking happen strictly after commit and can
  never undo or fail the committed work

Reads:
- ``find_by_id`` decrypts every time (no plaintext cache) and degrades to a
  placeholder instead of failing when decryption is impossible
- ``find_by_student_id`` never decrypts
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import BaseModel, ValidationError
from sqlalchemy import func, select, text, update as sa_update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import defer

from mentra.app.core.config import Settings, settings as default_settings
from mentra.app.core.exceptions import (
    AccessDeniedError,
    DecryptionError,
    JournalStorageError,
    JournalValidationError,
    KeyNotFoundError,
    NotFoundError,
)
from mentra.app.models.journal_entry import JournalEntry, new_uuid
from mentra.app.models.relations import EmotionalState, EntryTag, Tag
from mentra.app.schemas.journal import (
    DECRYPTION_FAILED,
    AccessLogItem,
    BulkPrivacyResult,
    EmotionalStateView,
    EncryptionMetadata,
    JournalEntryCreate,
    JournalEntryListItem,
    JournalEntryPage,
    JournalEntryUpdate,
    JournalEntryView,
    JournalStatistics,
    ListOptions,
    Pagination,
    RequestInfo,
)
from mentra.app.security.access import AccessPolicy, OwnerOrNonPrivatePolicy, determine_privacy_level
from mentra.app.security.codec import CryptoCodec
from mentra.app.security.keys import KeyManager
from mentra.app.services.activity import ActivityTracker, LoggingActivityTracker
from mentra.app.services.audit import AuditLogger
from mentra.app.services.relations import AttachmentManager, EmotionalStateManager, TagManager
from mentra.app.services.text import count_words, extract_plain_text, reading_time_minutes

logger = logging.getLogger(__name__)

PRIVACY_FIELDS = ("is_private", "is_shareable_with_teacher", "is_shareable_with_parent")


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class JournalEntryRepository:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        key_manager: KeyManager,
        codec: CryptoCodec,
        audit_logger: AuditLogger,
        access_policy: Optional[AccessPolicy] = None,
        activity_tracker: Optional[ActivityTracker] = None,
        settings: Optional[Settings] = None,
    ):
        self._session_factory = session_factory
        self.key_manager = key_manager
        self.codec = codec
        self.audit = audit_logger
        self.access_policy = access_policy or OwnerOrNonPrivatePolicy()
        self.activity_tracker = activity_tracker or LoggingActivityTracker()
        self.settings = settings or default_settings

        self.emotions = EmotionalStateManager()
        self.tags = TagManager(max_tags=self.settings.MAX_TAGS)
        self.attachments = AttachmentManager()

    # ==================================================================
    # Create
    # ==================================================================
    async def create(
        self,
        entry_data: Union[JournalEntryCreate, Dict[str, Any]],
        request_info: Optional[Union[RequestInfo, Dict[str, Any]]] = None,
    ) -> JournalEntryView:
        entry_in = self._coerce(JournalEntryCreate, entry_data)
        info = self._request_info(request_info)

        plain_text = entry_in.plain_text_content or extract_plain_text(entry_in.content)
        word_count = count_words(plain_text)
        reading_time = reading_time_minutes(word_count, self.settings.WORDS_PER_MINUTE)
        privacy_level = determine_privacy_level(
            entry_in.is_private,
            entry_in.is_shareable_with_teacher,
            entry_in.is_shareable_with_parent,
        )
        now = datetime.now(timezone.utc)

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    key_id = await self.key_manager.generate_key(session, entry_in.student_id)
                    key = self.key_manager.resolve_key(key_id)

                    entry = JournalEntry(
                        id=new_uuid(),
                        student_id=entry_in.student_id,
                        title=entry_in.title,
                        encrypted_content=self.codec.encrypt(entry_in.content, key),
                        encrypted_plain_text=self.codec.encrypt(plain_text, key),
                        content_hash=self.codec.content_hash(entry_in.content),
                        word_count=word_count,
                        reading_time_minutes=reading_time,
                        privacy_level=privacy_level,
                        is_private=entry_in.is_private,
                        is_shareable_with_teacher=entry_in.is_shareable_with_teacher,
                        is_shareable_with_parent=entry_in.is_shareable_with_parent,
                        encryption_method=self.codec.method,
                        encryption_key_id=key_id,
                        encrypted_at=now,
                        encryption_version=self.settings.ENCRYPTION_VERSION,
                        created_at=now,
                        updated_at=now,
                        last_edited_at=now,
                    )
                    session.add(entry)
                    await session.flush()

                    await self.emotions.save(session, entry.id, entry_in.emotional_state)
                    await self.tags.save(session, entry.id, entry_in.tags, entry_in.student_id)
                    await self.attachments.save(session, entry.id, entry_in.attachments)
                    await session.flush()

                    attachments = await self.attachments.get(session, entry.id)
        except JournalStorageError:
            logger.error("Rolled back journal entry creation for student %s", entry_in.student_id)
            raise
        except SQLAlchemyError as e:
            logger.error("Rolled back journal entry creation for student %s: %s", entry_in.student_id, e)
            raise JournalStorageError(
                "Failed to create journal entry",
                details={"originalError": str(e)},
            ) from e

        await self._track(
            "encrypted_journal_entry_created",
            entry.student_id,
            {
                "entryId": entry.id,
                "wordCount": word_count,
                "privacyLevel": privacy_level.value,
                "isPrivate": entry.is_private,
                "isShareableWithTeacher": entry.is_shareable_with_teacher,
                "isShareableWithParent": entry.is_shareable_with_parent,
                "hasEmotionalState": entry_in.emotional_state is not None,
                "tagCount": len(entry_in.tags),
                "attachmentCount": len(entry_in.attachments),
                "source": info.source,
            },
        )

        emotional_state = None
        if entry_in.emotional_state is not None:
            state = entry_in.emotional_state.model_dump()
            state["primary"] = state["primary"].lower()
            state["secondary"] = [s.lower() for s in state["secondary"]]
            emotional_state = EmotionalStateView(**state, detected_at=now)

        # The caller just supplied the plaintext; no decryption round trip
        return self._build_view(
            entry,
            content=entry_in.content,
            plain_text=plain_text,
            emotional_state=emotional_state,
            tags=sorted(entry_in.tags),
            attachments=attachments,
            decryption_successful=True,
            integrity_verified=True,
        )

    # ==================================================================
    # Read
    # ==================================================================
    async def find_by_id(
        self,
        entry_id: str,
        requesting_user_id: str,
        request_info: Optional[Union[RequestInfo, Dict[str, Any]]] = None,
    ) -> Optional[JournalEntryView]:
        info = self._request_info(request_info)

        entry = await self._fetch_entry(entry_id)
        if entry is None:
            return None

        self._authorize(entry, requesting_user_id, info, "read")

        content, plain_text, decrypted, intact = self._decrypt_entry(entry)

        self.audit.record(
            entry.id,
            requesting_user_id,
            "read",
            info,
            decryption_successful=decrypted,
            privacy_level=entry.privacy_level.value,
        )

        emotional_state, tags, attachments = await self._load_relations(entry.id)
        return self._build_view(
            entry,
            content=content,
            plain_text=plain_text,
            emotional_state=emotional_state,
            tags=tags,
            attachments=attachments,
            decryption_successful=decrypted,
            integrity_verified=intact,
        )

    async def find_by_student_id(
        self,
        student_id: str,
        requesting_user_id: str,
        options: Optional[Union[ListOptions, Dict[str, Any]]] = None,
    ) -> JournalEntryPage:
        opts = self._coerce(ListOptions, options or {})
        conditions = self._list_conditions(student_id, requesting_user_id, opts)

        column = getattr(JournalEntry, opts.sort_by)
        ordering = column.asc() if opts.sort_order == "asc" else column.desc()

        page_stmt = (
            select(JournalEntry)
            .options(defer(JournalEntry.encrypted_content), defer(JournalEntry.encrypted_plain_text))
            .where(*conditions)
            .order_by(ordering, JournalEntry.id)
            .limit(opts.limit)
            .offset(opts.offset)
        )
        count_stmt = select(func.count()).select_from(JournalEntry).where(*conditions)

        rows, total = await asyncio.gather(
            self._scalars(page_stmt),
            self._scalar(count_stmt),
        )
        total = int(total or 0)

        entries = [self._build_list_item(row) for row in rows]
        return JournalEntryPage(
            entries=entries,
            total=total,
            has_more=opts.offset + len(entries) < total,
            pagination=Pagination(limit=opts.limit, offset=opts.offset, total=total),
        )

    # ==================================================================
    # Update
    # ==================================================================
    async def update(
        self,
        entry_id: str,
        update_data: Union[JournalEntryUpdate, Dict[str, Any]],
        requesting_user_id: str,
        request_info: Optional[Union[RequestInfo, Dict[str, Any]]] = None,
    ) -> JournalEntryView:
        changes = self._coerce(JournalEntryUpdate, update_data)
        info = self._request_info(request_info)
        now = datetime.now(timezone.utc)

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        select(JournalEntry)
                        .where(JournalEntry.id == str(entry_id), JournalEntry.deleted_at.is_(None))
                        .with_for_update()
                    )
                    entry = result.scalars().first()
                    if entry is None:
                        raise NotFoundError("Journal entry not found", details={"entryId": str(entry_id)})

                    self._authorize(entry, requesting_user_id, info, "edit")

                    self._apply_content_changes(entry, changes, now)
                    self._apply_privacy_changes(entry, changes)
                    if changes.title is not None:
                        entry.title = changes.title

                    # Bumped on every update, even when nothing else changed
                    entry.last_edited_at = now
                    entry.updated_at = now

                    if "emotional_state" in changes.model_fields_set:
                        await self.emotions.replace(session, entry.id, changes.emotional_state)
                    if changes.tags is not None:
                        await self.tags.replace(session, entry.id, changes.tags, entry.student_id)
                    await session.flush()
        except JournalStorageError:
            raise
        except SQLAlchemyError as e:
            logger.error("Rolled back update of journal entry %s: %s", entry_id, e)
            raise JournalStorageError(
                "Failed to update journal entry",
                details={"entryId": str(entry_id), "originalError": str(e)},
            ) from e

        self.audit.record(
            entry.id,
            requesting_user_id,
            "edit",
            info,
            decryption_successful=True,
            privacy_level=entry.privacy_level.value,
        )
        await self._track(
            "encrypted_journal_entry_updated",
            entry.student_id,
            {
                "entryId": entry.id,
                "updatedFields": sorted(changes.model_fields_set),
                "privacyChanged": changes.touches_privacy,
            },
        )

        content, plain_text, decrypted, intact = self._decrypt_entry(entry)
        emotional_state, tags, attachments = await self._load_relations(entry.id)
        return self._build_view(
            entry,
            content=content,
            plain_text=plain_text,
            emotional_state=emotional_state,
            tags=tags,
            attachments=attachments,
            decryption_successful=decrypted,
            integrity_verified=intact,
        )

    def _apply_content_changes(self, entry: JournalEntry, changes: JournalEntryUpdate, now: datetime) -> None:
        content = changes.content
        plain_text = changes.plain_text_content
        if content is not None and plain_text is None:
            plain_text = extract_plain_text(content)

        if content is None and plain_text is None:
            return

        # Same key as at creation; keys are not rotated on update
        key = self.key_manager.resolve_key(entry.encryption_key_id)

        if content is not None:
            entry.encrypted_content = self.codec.encrypt(content, key)
            entry.content_hash = self.codec.content_hash(content)
            entry.encrypted_at = now

        if plain_text is not None:
            entry.encrypted_plain_text = self.codec.encrypt(plain_text, key)
            entry.word_count = count_words(plain_text)
            entry.reading_time_minutes = reading_time_minutes(
                entry.word_count, self.settings.WORDS_PER_MINUTE
            )

    @staticmethod
    def _apply_privacy_changes(entry: JournalEntry, changes: JournalEntryUpdate) -> None:
        if not changes.touches_privacy:
            return
        for name in PRIVACY_FIELDS:
            value = getattr(changes, name)
            if value is not None:
                setattr(entry, name, value)
        entry.privacy_level = determine_privacy_level(
            entry.is_private,
            entry.is_shareable_with_teacher,
            entry.is_shareable_with_parent,
        )

    # ==================================================================
    # Delete
    # ==================================================================
    async def delete(
        self,
        entry_id: str,
        requesting_user_id: str,
        request_info: Optional[Union[RequestInfo, Dict[str, Any]]] = None,
    ) -> bool:
        """
        Soft delete. Returns False when the entry was already deleted;
        raises NotFoundError when it never existed.
        """
        info = self._request_info(request_info)

        existing = await self.find_by_id(entry_id, requesting_user_id, info)
        if existing is None:
            if await self._fetch_entry(entry_id, include_deleted=True) is not None:
                return False
            raise NotFoundError("Journal entry not found", details={"entryId": str(entry_id)})

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        select(JournalEntry)
                        .where(JournalEntry.id == existing.id, JournalEntry.deleted_at.is_(None))
                        .with_for_update()
                    )
                    entry = result.scalars().first()
                    if entry is None:
                        return False

                    self._authorize(entry, requesting_user_id, info, "delete")

                    await session.execute(
                        sa_update(JournalEntry)
                        .where(JournalEntry.id == entry.id)
                        .values(deleted_at=datetime.now(timezone.utc))
                    )
        except JournalStorageError:
            raise
        except SQLAlchemyError as e:
            logger.error("Rolled back delete of journal entry %s: %s", entry_id, e)
            raise JournalStorageError(
                "Failed to delete journal entry",
                details={"entryId": str(entry_id), "originalError": str(e)},
            ) from e

        self.audit.record(
            existing.id,
            requesting_user_id,
            "delete",
            info,
            decryption_successful=True,
            privacy_level=existing.privacy_level.value,
        )
        await self._track(
            "encrypted_journal_entry_deleted",
            existing.student_id,
            {"entryId": existing.id, "wordCount": existing.word_count},
        )
        return True

    # ==================================================================
    # Bulk privacy, statistics, audit trail, health
    # ==================================================================
    async def bulk_update_privacy(
        self,
        entry_ids: Iterable[str],
        student_id: str,
        privacy: Union[JournalEntryUpdate, Dict[str, Any]],
        requesting_user_id: str,
        request_info: Optional[Union[RequestInfo, Dict[str, Any]]] = None,
    ) -> BulkPrivacyResult:
        if str(student_id) != str(requesting_user_id):
            raise AccessDeniedError("Can only update your own entries")

        ids = list(dict.fromkeys(str(i) for i in (entry_ids or [])))
        if not ids:
            raise JournalValidationError("Entry IDs array is required")
        if len(ids) > self.settings.MAX_BULK_ENTRIES:
            raise JournalValidationError(
                f"Cannot update more than {self.settings.MAX_BULK_ENTRIES} entries at once"
            )

        requested = self._coerce(JournalEntryUpdate, privacy)
        changes = JournalEntryUpdate(**{name: getattr(requested, name) for name in PRIVACY_FIELDS})
        if not changes.touches_privacy:
            raise JournalValidationError("No privacy settings supplied")

        outcomes = await asyncio.gather(
            *(self.update(entry_id, changes, requesting_user_id, request_info) for entry_id in ids),
            return_exceptions=True,
        )

        results: List[Dict[str, Any]] = []
        for entry_id, outcome in zip(ids, outcomes):
            if isinstance(outcome, JournalEntryView):
                results.append({
                    "entryId": entry_id,
                    "success": True,
                    "privacyLevel": outcome.privacy_level.value,
                })
            else:
                results.append({
                    "entryId": entry_id,
                    "success": False,
                    "error": str(outcome),
                    "type": getattr(outcome, "type", "STORAGE_ERROR"),
                })

        successful = sum(1 for r in results if r["success"])
        await self._track(
            "journal_bulk_privacy_update",
            str(student_id),
            {"totalEntries": len(ids), "successful": successful, "failed": len(ids) - successful},
        )
        return BulkPrivacyResult(
            total_entries=len(ids),
            successful=successful,
            failed=len(ids) - successful,
            results=results,
        )

    async def get_statistics(
        self,
        student_id: str,
        requesting_user_id: str,
        time_window_days: int = 30,
    ) -> JournalStatistics:
        opts = ListOptions(include_private=True)
        conditions = self._list_conditions(student_id, requesting_user_id, opts)

        async with self._session_factory() as session:
            result = await session.execute(
                select(JournalEntry.created_at, JournalEntry.word_count)
                .where(*conditions)
                .order_by(JournalEntry.created_at.desc())
            )
            rows = result.all()

        now = datetime.now(timezone.utc)
        window_start = now - timedelta(days=time_window_days)
        created = [_as_utc(created_at) for created_at, _ in rows]
        total_words = sum(word_count or 0 for _, word_count in rows)

        streak = 0
        days = sorted({c.date() for c in created if c is not None}, reverse=True)
        for i, day in enumerate(days):
            if day == (now - timedelta(days=i)).date():
                streak += 1
            else:
                break

        return JournalStatistics(
            total_entries=len(rows),
            recent_entries=sum(1 for c in created if c is not None and c >= window_start),
            total_word_count=total_words,
            average_words_per_entry=round(total_words / len(rows)) if rows else 0,
            current_streak=streak,
            time_window=time_window_days,
            last_entry_date=created[0] if created else None,
        )

    async def get_access_log(self, entry_id: str, requesting_user_id: str) -> List[AccessLogItem]:
        """Owner-only view of the audit trail, including for deleted entries."""
        entry = await self._fetch_entry(entry_id, include_deleted=True)
        if entry is None:
            raise NotFoundError("Journal entry not found", details={"entryId": str(entry_id)})
        if not self.access_policy.can_modify(entry, requesting_user_id):
            raise AccessDeniedError("Only the entry owner can view its access log")

        rows = await self.audit.list_for_entry(entry.id)
        return [
            AccessLogItem(
                id=row.id,
                accessed_by=row.accessed_by,
                access_type=row.access_type,
                access_source=row.access_source,
                decryption_successful=row.decryption_successful,
                privacy_level_at_access=row.privacy_level_at_access,
                ip_address=row.ip_address,
                user_agent=row.user_agent,
                accessed_at=row.accessed_at,
            )
            for row in rows
        ]

    async def health_check(self) -> Dict[str, Any]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                connected = result.scalar() == 1
        except (SQLAlchemyError, OSError) as e:
            logger.error("Journal storage health check failed: %s", e)
            return {
                "status": "unhealthy",
                "service": "journal-storage",
                "error": str(e),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        return {
            "status": "healthy" if connected else "unhealthy",
            "service": "journal-storage",
            "features": {
                "encryption": self.codec.method,
                "databaseConnection": "connected" if connected else "disconnected",
            },
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    # ==================================================================
    # Internals
    # ==================================================================
    def _authorize(self, entry: JournalEntry, user_id: str, info: RequestInfo, action: str) -> None:
        if action == "read":
            allowed = self.access_policy.can_read(entry, user_id, info.user_role)
        else:
            allowed = self.access_policy.can_modify(entry, user_id, info.user_role)

        details = {"privacyLevel": entry.privacy_level.value, "ownerId": entry.student_id}
        if not allowed:
            self.audit.record_decision(user_id, entry.id, action, "denied", info, details)
            logger.info("Denied %s of journal entry %s for user %s", action, entry.id, user_id)
            if action == "read":
                message = "Access denied to this journal entry"
            else:
                message = f"Only the entry owner can {'update' if action == 'edit' else action} it"
            raise AccessDeniedError(message, details={"entryId": entry.id})

        self.audit.record_decision(user_id, entry.id, action, "allowed", info, details)

    def _decrypt_entry(self, entry: JournalEntry) -> Tuple[Optional[str], Optional[str], bool, bool]:
        """Returns (content, plain_text, decryption_successful, integrity_verified)."""
        try:
            key = self.key_manager.resolve_key(entry.encryption_key_id)
        except KeyNotFoundError as e:
            logger.warning(
                "No key material for journal entry %s (key %s): %s",
                entry.id, entry.encryption_key_id, e,
            )
            content = DECRYPTION_FAILED if entry.encrypted_content is not None else None
            plain = DECRYPTION_FAILED if entry.encrypted_plain_text is not None else None
            return content, plain, False, False

        content, content_ok = self._decrypt_field(entry, "content", entry.encrypted_content, key)
        plain, plain_ok = self._decrypt_field(entry, "plain_text", entry.encrypted_plain_text, key)

        intact = content_ok
        if content_ok and content is not None and not self.codec.verify_content_hash(content, entry.content_hash):
            logger.warning("Content hash mismatch for journal entry %s", entry.id)
            content, content_ok, intact = DECRYPTION_FAILED, False, False

        return content, plain, content_ok and plain_ok, intact

    def _decrypt_field(
        self,
        entry: JournalEntry,
        field: str,
        ciphertext: Optional[bytes],
        key: bytes,
    ) -> Tuple[Optional[str], bool]:
        try:
            return self.codec.decrypt(ciphertext, key), True
        except DecryptionError as e:
            logger.warning(
                "Decryption of %s failed for journal entry %s (key %s): %s",
                field, entry.id, entry.encryption_key_id, e,
            )
            return DECRYPTION_FAILED, False

    async def _load_relations(self, entry_id: str):
        """Emotional state, tags and attachments, fetched concurrently."""
        return await asyncio.gather(
            self._with_session(self.emotions.get, entry_id),
            self._with_session(self.tags.get, entry_id),
            self._with_session(self.attachments.get, entry_id),
        )

    async def _with_session(self, loader, entry_id: str):
        async with self._session_factory() as session:
            return await loader(session, entry_id)

    async def _fetch_entry(self, entry_id: str, include_deleted: bool = False) -> Optional[JournalEntry]:
        stmt = select(JournalEntry).where(JournalEntry.id == str(entry_id))
        if not include_deleted:
            stmt = stmt.where(JournalEntry.deleted_at.is_(None))
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalars().first()

    async def _scalars(self, stmt) -> List[JournalEntry]:
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def _scalar(self, stmt):
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar()

    @staticmethod
    def _list_conditions(student_id: str, requesting_user_id: str, opts: ListOptions) -> list:
        conditions = [
            JournalEntry.student_id == str(student_id),
            JournalEntry.deleted_at.is_(None),
        ]

        # Non-owners never see private entries, whatever they ask for
        if str(student_id) != str(requesting_user_id) or not opts.include_private:
            conditions.append(JournalEntry.is_private.is_(False))

        if opts.start_date is not None:
            conditions.append(JournalEntry.created_at >= opts.start_date)
        if opts.end_date is not None:
            conditions.append(JournalEntry.created_at <= opts.end_date)

        if opts.tags:
            conditions.append(
                JournalEntry.id.in_(
                    select(EntryTag.journal_entry_id)
                    .join(Tag, Tag.id == EntryTag.tag_id)
                    .where(Tag.name.in_(opts.tags))
                )
            )
        if opts.emotions:
            conditions.append(
                JournalEntry.id.in_(
                    select(EmotionalState.journal_entry_id)
                    .where(EmotionalState.primary_emotion.in_(opts.emotions))
                )
            )
        # Content is encrypted, so only titles are searchable
        if opts.search_query and opts.search_query.strip():
            conditions.append(JournalEntry.title.icontains(opts.search_query.strip(), autoescape=True))

        return conditions

    def _build_view(
        self,
        entry: JournalEntry,
        *,
        content: Optional[str],
        plain_text: Optional[str],
        emotional_state: Optional[EmotionalStateView],
        tags: List[str],
        attachments: list,
        decryption_successful: bool,
        integrity_verified: bool,
    ) -> JournalEntryView:
        if emotional_state is not None:
            emotional_state.detected_at = _as_utc(emotional_state.detected_at)
        for attachment in attachments:
            attachment.created_at = _as_utc(attachment.created_at)
        return JournalEntryView(
            id=entry.id,
            student_id=entry.student_id,
            title=entry.title,
            content=content,
            plain_text_content=plain_text,
            word_count=entry.word_count,
            reading_time_minutes=entry.reading_time_minutes,
            privacy_level=entry.privacy_level,
            is_private=entry.is_private,
            is_shareable_with_teacher=entry.is_shareable_with_teacher,
            is_shareable_with_parent=entry.is_shareable_with_parent,
            emotional_state=emotional_state,
            tags=tags,
            attachments=attachments,
            created_at=_as_utc(entry.created_at),
            updated_at=_as_utc(entry.updated_at),
            last_edited_at=_as_utc(entry.last_edited_at),
            published_at=_as_utc(entry.published_at),
            encryption_metadata=EncryptionMetadata(
                is_encrypted=entry.encrypted_content is not None,
                encryption_method=entry.encryption_method,
                encrypted_at=_as_utc(entry.encrypted_at),
                key_id=entry.encryption_key_id,
                decryption_successful=decryption_successful,
                integrity_verified=integrity_verified,
            ),
        )

    @staticmethod
    def _build_list_item(entry: JournalEntry) -> JournalEntryListItem:
        return JournalEntryListItem(
            id=entry.id,
            student_id=entry.student_id,
            title=entry.title,
            word_count=entry.word_count,
            reading_time_minutes=entry.reading_time_minutes,
            privacy_level=entry.privacy_level,
            is_private=entry.is_private,
            is_shareable_with_teacher=entry.is_shareable_with_teacher,
            is_shareable_with_parent=entry.is_shareable_with_parent,
            created_at=_as_utc(entry.created_at),
            updated_at=_as_utc(entry.updated_at),
            last_edited_at=_as_utc(entry.last_edited_at),
            published_at=_as_utc(entry.published_at),
        )

    @staticmethod
    def _coerce(model_cls, data):
        if isinstance(data, model_cls):
            return data
        if isinstance(data, BaseModel):
            data = data.model_dump(exclude_unset=True)
        try:
            return model_cls.model_validate(data)
        except ValidationError as e:
            errors = [
                {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
                for err in e.errors()
            ]
            raise JournalValidationError(
                f"Invalid {model_cls.__name__} data",
                details={"errors": errors},
            ) from e

    @classmethod
    def _request_info(cls, request_info) -> RequestInfo:
        if request_info is None:
            return RequestInfo()
        return cls._coerce(RequestInfo, request_info)

    async def _track(self, activity_type: str, student_id: str, details: Dict[str, Any]) -> None:
        try:
            await self.activity_tracker.track(activity_type, student_id, details)
        except Exception:
            logger.exception("Activity tracking failed for %s (student %s)", activity_type, student_id)
