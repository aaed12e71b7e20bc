"""
All models are imported here so they register with ``Base.metadata`` before
``create_all`` runs.
"""
from .journal_entry import JournalEntry, PrivacyLevel
from .encryption_key import EncryptionKey
from .relations import Attachment, EmotionalState, EntryTag, Tag
from .audit import AccessControlAuditLog, JournalAccessLog

__all__ = [
    "JournalEntry",
    "PrivacyLevel",
    "EncryptionKey",
    "EmotionalState",
    "Tag",
    "EntryTag",
    "Attachment",
    "JournalAccessLog",
    "AccessControlAuditLog",
]
