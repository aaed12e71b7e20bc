# mentra/app/services/relations.py
"""
Sub-records attached to a journal entry: emotional state, tags, attachments.

Every method works on the session handed in by the repository, so writes
join the repository's transaction. Updates go through ``replace``, which
deletes then inserts; callers never patch relation rows in place.
"""
import uuid
from typing import Iterable, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from mentra.app.models.relations import Attachment, EmotionalState, EntryTag, Tag
from mentra.app.schemas.journal import (
    AttachmentIn,
    AttachmentView,
    EmotionalStateIn,
    EmotionalStateView,
    normalize_tags,
)


DIALECT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def _dialect_insert(session: AsyncSession):
    return DIALECT_INSERTS[session.bind.dialect.name]


class EmotionalStateManager:
    async def save(self, session: AsyncSession, entry_id: str, state: Optional[EmotionalStateIn]) -> None:
        if state is None or not state.primary:
            return
        session.add(
            EmotionalState(
                journal_entry_id=entry_id,
                primary_emotion=state.primary.lower(),
                intensity=state.intensity,
                confidence=state.confidence,
                secondary_emotions=[s.lower() for s in state.secondary],
                emotion_context=state.context,
                mood_before=state.mood_before,
                mood_after=state.mood_after,
                detected_by=state.detected_by,
            )
        )

    async def get(self, session: AsyncSession, entry_id: str) -> Optional[EmotionalStateView]:
        result = await session.execute(
            select(EmotionalState)
            .where(EmotionalState.journal_entry_id == entry_id)
            .order_by(EmotionalState.detected_at.desc())
            .limit(1)
        )
        row = result.scalars().first()
        if row is None:
            return None
        return EmotionalStateView(
            primary=row.primary_emotion,
            intensity=float(row.intensity if row.intensity is not None else 0.5),
            confidence=float(row.confidence if row.confidence is not None else 0.5),
            secondary=list(row.secondary_emotions or []),
            context=row.emotion_context,
            mood_before=row.mood_before,
            mood_after=row.mood_after,
            detected_by=row.detected_by,
            detected_at=row.detected_at,
        )

    async def replace(self, session: AsyncSession, entry_id: str, state: Optional[EmotionalStateIn]) -> None:
        await session.execute(delete(EmotionalState).where(EmotionalState.journal_entry_id == entry_id))
        await self.save(session, entry_id, state)


class TagManager:
    def __init__(self, max_tags: int = 10):
        self.max_tags = max_tags

    def normalize(self, tags: Optional[Iterable[str]]) -> List[str]:
        return normalize_tags(list(tags or []), max_tags=self.max_tags)

    async def save(self, session: AsyncSession, entry_id: str, tags: Iterable[str], student_id: str) -> None:
        """
        Upsert each tag and link it once.

        Both inserts are ON CONFLICT DO NOTHING, so a concurrent create that
        introduces the same tag cannot fail this transaction. ``usage_count``
        is bumped in SQL, only when a new link was actually inserted.
        """
        insert = _dialect_insert(session)
        for name in self.normalize(tags):
            await session.execute(
                insert(Tag)
                .values(name=name, created_by=student_id, usage_count=0)
                .on_conflict_do_nothing(index_elements=["name"])
            )
            tag_id = (await session.execute(select(Tag.id).where(Tag.name == name))).scalar_one()

            linked = await session.execute(
                insert(EntryTag)
                .values(journal_entry_id=entry_id, tag_id=tag_id)
                .on_conflict_do_nothing(index_elements=["journal_entry_id", "tag_id"])
            )
            if linked.rowcount:
                await session.execute(
                    update(Tag).where(Tag.id == tag_id).values(usage_count=Tag.usage_count + 1)
                )

    async def get(self, session: AsyncSession, entry_id: str) -> List[str]:
        result = await session.execute(
            select(Tag.name)
            .join(EntryTag, EntryTag.tag_id == Tag.id)
            .where(EntryTag.journal_entry_id == entry_id)
            .order_by(Tag.name)
        )
        return [name for (name,) in result.all()]

    async def replace(self, session: AsyncSession, entry_id: str, tags: Iterable[str], student_id: str) -> None:
        await session.execute(delete(EntryTag).where(EntryTag.journal_entry_id == entry_id))
        await self.save(session, entry_id, tags, student_id)


class AttachmentManager:
    async def save(self, session: AsyncSession, entry_id: str, attachments: Iterable[AttachmentIn]) -> None:
        for item in attachments:
            session.add(
                Attachment(
                    journal_entry_id=entry_id,
                    original_filename=item.original_filename,
                    stored_filename=str(uuid.uuid4()),
                    file_size=item.file_size,
                    mime_type=item.mime_type,
                    attachment_type=item.attachment_type,
                    description=item.description,
                    is_encrypted=True,
                    access_level="private",
                )
            )

    async def get(self, session: AsyncSession, entry_id: str) -> List[AttachmentView]:
        result = await session.execute(
            select(Attachment)
            .where(Attachment.journal_entry_id == entry_id)
            .order_by(Attachment.created_at)
        )
        return [
            AttachmentView(
                id=row.id,
                original_filename=row.original_filename,
                stored_filename=row.stored_filename,
                file_size=row.file_size,
                mime_type=row.mime_type,
                attachment_type=row.attachment_type,
                description=row.description,
                is_encrypted=row.is_encrypted,
                access_level=row.access_level,
                created_at=row.created_at,
            )
            for row in result.scalars().all()
        ]
