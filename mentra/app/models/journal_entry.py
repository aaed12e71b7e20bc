# mentra/app/models/journal_entry.py
import enum
import uuid

from sqlalchemy import Boolean, Column, DateTime, Enum, Index, Integer, LargeBinary, String
from sqlalchemy.sql import func

from mentra.app.db.base import Base


class PrivacyLevel(str, enum.Enum):
    PRIVATE = "private"
    TEACHER_SHAREABLE = "teacher_shareable"
    PARENT_SHAREABLE = "parent_shareable"
    PUBLIC = "public"


def new_uuid() -> str:
    return str(uuid.uuid4())


class JournalEntry(Base):
    __tablename__ = "journal_entries"

    id = Column(String(36), primary_key=True, default=new_uuid)
    student_id = Column(String(64), nullable=False, index=True)

    title = Column(String(500), nullable=False)

    # --- SECRET DATA (two independent ciphertexts under the same key) ---
    encrypted_content = Column(LargeBinary, nullable=True)
    # Plain-text rendering of content, encrypted separately
    encrypted_plain_text = Column(LargeBinary, nullable=True)
    # SHA-256 hex of the plaintext content, computed before encryption
    content_hash = Column(String(64), nullable=True)

    # --- METADATA (unencrypted, used for listing and filtering) ---
    word_count = Column(Integer, default=0, nullable=False)
    reading_time_minutes = Column(Integer, default=0, nullable=False)

    # Derived from the three flags below; never written on its own
    privacy_level = Column(
        Enum(PrivacyLevel, name="privacy_level", values_callable=lambda e: [m.value for m in e]),
        default=PrivacyLevel.PRIVATE,
        nullable=False,
    )
    is_private = Column(Boolean, default=True, nullable=False)
    is_shareable_with_teacher = Column(Boolean, default=False, nullable=False)
    is_shareable_with_parent = Column(Boolean, default=False, nullable=False)

    encryption_method = Column(String(50), default="aes256", nullable=False)
    encryption_key_id = Column(String(100), nullable=True)
    encrypted_at = Column(DateTime(timezone=True), nullable=True)
    encryption_version = Column(Integer, default=1, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
    last_edited_at = Column(DateTime(timezone=True), server_default=func.now())
    published_at = Column(DateTime(timezone=True), nullable=True)
    # Soft delete
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_journal_entries_student_created", "student_id", "created_at"),
    )
