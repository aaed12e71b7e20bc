# mentra/app/schemas/journal.py
"""
Pydantic schemas for journal entries.

Input models validate and normalize what callers send; view models are what
the repository returns. Views serialize with camelCase aliases
(``studentId``, ``encryptionMetadata.decryptionSuccessful``...) so the HTTP
layer can return them unchanged.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from mentra.app.core.config import settings
from mentra.app.models.journal_entry import PrivacyLevel

DECRYPTION_FAILED = "[DECRYPTION_FAILED]"

SortColumn = Literal["created_at", "updated_at", "last_edited_at", "title", "word_count"]


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def normalize_tags(tags: Optional[List[Any]], max_tags: int = settings.MAX_TAGS) -> List[str]:
    """Trim, lowercase, drop blanks and duplicates (first wins), cap the count."""
    if not tags:
        return []
    seen: List[str] = []
    for tag in tags:
        if not isinstance(tag, str):
            continue
        name = tag.strip().lower()
        if name and name not in seen:
            seen.append(name)
    return seen[:max_tags]


# ─────────────────────────────────────────────────────────────────────────────
# Request context
# ─────────────────────────────────────────────────────────────────────────────
class RequestInfo(CamelModel):
    """Where an access came from; recorded on every audit row."""
    source: str = "web"
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    user_role: str = "student"


# ─────────────────────────────────────────────────────────────────────────────
# Relations
# ─────────────────────────────────────────────────────────────────────────────
class EmotionalStateIn(CamelModel):
    primary: str = Field(..., min_length=1, max_length=50)
    intensity: float = Field(0.5, ge=0, le=1)
    confidence: float = Field(0.5, ge=0, le=1)
    secondary: List[str] = Field(default_factory=list)
    context: Optional[str] = None
    mood_before: Optional[str] = None
    mood_after: Optional[str] = None
    detected_by: Literal["manual", "model"] = "manual"


class EmotionalStateView(EmotionalStateIn):
    detected_at: Optional[datetime] = None


class AttachmentIn(CamelModel):
    original_filename: Optional[str] = Field(None, max_length=255)
    file_size: Optional[int] = Field(None, ge=0)
    mime_type: Optional[str] = Field(None, max_length=100)
    attachment_type: Optional[str] = Field(None, max_length=50)
    description: Optional[str] = None


class AttachmentView(AttachmentIn):
    id: str
    stored_filename: Optional[str] = None
    is_encrypted: bool = True
    access_level: str = "private"
    created_at: Optional[datetime] = None


# ─────────────────────────────────────────────────────────────────────────────
# Entry input
# ─────────────────────────────────────────────────────────────────────────────
class JournalEntryIn(CamelModel):
    """Request body for POST /entries; the author comes from the token."""
    title: str = Field(..., max_length=settings.MAX_TITLE_LENGTH)
    content: str = Field(..., max_length=settings.MAX_CONTENT_LENGTH)
    plain_text_content: Optional[str] = Field(None, max_length=settings.MAX_CONTENT_LENGTH)
    emotional_state: Optional[EmotionalStateIn] = None
    tags: List[str] = Field(default_factory=list)
    # Entries are private unless the student opts into sharing
    is_private: bool = True
    is_shareable_with_teacher: bool = False
    is_shareable_with_parent: bool = False
    attachments: List[AttachmentIn] = Field(default_factory=list)

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("content")
    @classmethod
    def require_content(cls, v: str) -> str:
        # Stored exactly as written; blank bodies are rejected
        if not v.strip():
            raise ValueError("must not be empty")
        return v

    @field_validator("tags", mode="before")
    @classmethod
    def clean_tags(cls, v):
        return normalize_tags(v if isinstance(v, list) else [])


class JournalEntryCreate(JournalEntryIn):
    student_id: str = Field(..., min_length=1, max_length=64)

    @field_validator("student_id", mode="before")
    @classmethod
    def coerce_student_id(cls, v):
        return str(v) if v is not None else v


class JournalEntryUpdate(CamelModel):
    """Only fields the caller actually sent are applied (``model_fields_set``)."""
    title: Optional[str] = Field(None, max_length=settings.MAX_TITLE_LENGTH)
    content: Optional[str] = Field(None, max_length=settings.MAX_CONTENT_LENGTH)
    plain_text_content: Optional[str] = Field(None, max_length=settings.MAX_CONTENT_LENGTH)
    emotional_state: Optional[EmotionalStateIn] = None
    tags: Optional[List[str]] = None
    is_private: Optional[bool] = None
    is_shareable_with_teacher: Optional[bool] = None
    is_shareable_with_parent: Optional[bool] = None

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("content")
    @classmethod
    def require_content(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("must not be empty")
        return v

    @field_validator("tags", mode="before")
    @classmethod
    def clean_tags(cls, v):
        if v is None:
            return v
        return normalize_tags(v if isinstance(v, list) else [])

    @property
    def touches_privacy(self) -> bool:
        return any(
            getattr(self, name) is not None
            for name in ("is_private", "is_shareable_with_teacher", "is_shareable_with_parent")
        )


class BulkPrivacyUpdate(CamelModel):
    entry_ids: List[str] = Field(..., min_length=1, max_length=settings.MAX_BULK_ENTRIES)
    is_private: Optional[bool] = None
    is_shareable_with_teacher: Optional[bool] = None
    is_shareable_with_parent: Optional[bool] = None


class ListOptions(CamelModel):
    limit: int = Field(settings.DEFAULT_PAGE_LIMIT, ge=1, le=settings.MAX_PAGE_LIMIT)
    offset: int = Field(0, ge=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    tags: Optional[List[str]] = None
    emotions: Optional[List[str]] = None
    search_query: Optional[str] = Field(None, max_length=200)
    include_private: bool = True
    sort_by: SortColumn = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"

    @field_validator("sort_order", mode="before")
    @classmethod
    def lower_sort_order(cls, v):
        return v.lower() if isinstance(v, str) else v

    @field_validator("tags", "emotions", mode="before")
    @classmethod
    def split_csv(cls, v):
        if isinstance(v, str):
            v = v.split(",")
        if v is None:
            return v
        return normalize_tags(v, max_tags=50)


# ─────────────────────────────────────────────────────────────────────────────
# Views
# ─────────────────────────────────────────────────────────────────────────────
class EncryptionMetadata(CamelModel):
    is_encrypted: bool = True
    encryption_method: str
    encrypted_at: Optional[datetime] = None
    key_id: Optional[str] = None
    decryption_successful: bool = True
    integrity_verified: bool = True


class JournalEntryView(CamelModel):
    id: str
    student_id: str
    title: str
    content: Optional[str] = None
    plain_text_content: Optional[str] = None
    word_count: int
    reading_time_minutes: int
    privacy_level: PrivacyLevel
    is_private: bool
    is_shareable_with_teacher: bool
    is_shareable_with_parent: bool
    emotional_state: Optional[EmotionalStateView] = None
    tags: List[str] = Field(default_factory=list)
    attachments: List[AttachmentView] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_edited_at: Optional[datetime] = None
    published_at: Optional[datetime] = None
    encryption_metadata: EncryptionMetadata


class ListEncryptionMetadata(CamelModel):
    is_encrypted: bool = True
    # Content is never decrypted for list views
    content_available: bool = False


class JournalEntryListItem(CamelModel):
    id: str
    student_id: str
    title: str
    word_count: int
    reading_time_minutes: int
    privacy_level: PrivacyLevel
    is_private: bool
    is_shareable_with_teacher: bool
    is_shareable_with_parent: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_edited_at: Optional[datetime] = None
    published_at: Optional[datetime] = None
    encryption_metadata: ListEncryptionMetadata = Field(default_factory=ListEncryptionMetadata)


class Pagination(CamelModel):
    limit: int
    offset: int
    total: int


class JournalEntryPage(CamelModel):
    entries: List[JournalEntryListItem]
    total: int
    has_more: bool
    pagination: Pagination


class BulkPrivacyResult(CamelModel):
    total_entries: int
    successful: int
    failed: int
    results: List[Dict[str, Any]]


class JournalStatistics(CamelModel):
    total_entries: int
    recent_entries: int
    total_word_count: int
    average_words_per_entry: int
    current_streak: int
    time_window: int
    encryption_enabled: bool = True
    last_entry_date: Optional[datetime] = None


class AccessLogItem(CamelModel):
    id: str
    accessed_by: str
    access_type: str
    access_source: Optional[str] = None
    decryption_successful: bool
    privacy_level_at_access: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    accessed_at: Optional[datetime] = None
