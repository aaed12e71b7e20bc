# mentra/app/models/relations.py
import uuid

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from mentra.app.db.base import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class EmotionalState(Base):
    """At most one current row per entry; replaced wholesale on update."""

    __tablename__ = "journal_emotions"

    id = Column(String(36), primary_key=True, default=_uuid)
    journal_entry_id = Column(
        String(36), ForeignKey("journal_entries.id", ondelete="CASCADE"), nullable=False, index=True
    )

    primary_emotion = Column(String(50), nullable=False)
    intensity = Column(Float, default=0.5)  # 0.0 - 1.0
    confidence = Column(Float, default=0.5)  # 0.0 - 1.0
    secondary_emotions = Column(JSON, default=list)

    emotion_context = Column(Text, nullable=True)
    mood_before = Column(Text, nullable=True)
    mood_after = Column(Text, nullable=True)

    # manual | model
    detected_by = Column(String(50), default="manual", nullable=False)
    detected_at = Column(DateTime(timezone=True), server_default=func.now())
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Tag(Base):
    __tablename__ = "journal_tags"

    id = Column(String(36), primary_key=True, default=_uuid)
    # Always stored lowercased
    name = Column(String(100), unique=True, nullable=False)
    description = Column(Text, nullable=True)
    color = Column(String(7), nullable=True)
    created_by = Column(String(64), nullable=True)
    usage_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class EntryTag(Base):
    __tablename__ = "journal_entry_tags"

    id = Column(String(36), primary_key=True, default=_uuid)
    journal_entry_id = Column(
        String(36), ForeignKey("journal_entries.id", ondelete="CASCADE"), nullable=False, index=True
    )
    tag_id = Column(String(36), ForeignKey("journal_tags.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("journal_entry_id", "tag_id", name="uq_journal_entry_tag"),
    )


class Attachment(Base):
    """Attachment metadata only; file bytes live outside this service."""

    __tablename__ = "journal_attachments"

    id = Column(String(36), primary_key=True, default=_uuid)
    journal_entry_id = Column(
        String(36), ForeignKey("journal_entries.id", ondelete="CASCADE"), nullable=False, index=True
    )

    original_filename = Column(String(255), nullable=True)
    # UUID-based name, never the user-supplied one
    stored_filename = Column(String(255), nullable=True)
    file_size = Column(BigInteger, nullable=True)
    mime_type = Column(String(100), nullable=True)

    # image, document, link, recording
    attachment_type = Column(String(50), nullable=True)
    description = Column(Text, nullable=True)
    is_encrypted = Column(Boolean, default=True, nullable=False)
    access_level = Column(String(30), default="private", nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
