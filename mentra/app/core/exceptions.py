# mentra/app/core/exceptions.py
"""
Error taxonomy for the journal storage layer.

Every error carries a machine-readable ``type`` so the API layer can map it
to a status code without string matching.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class JournalStorageError(Exception):
    """Base class for every error raised by the journal storage layer."""

    error_type = "STORAGE_ERROR"

    def __init__(
        self,
        message: str,
        error_type: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.type = error_type or self.error_type
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()


class JournalValidationError(JournalStorageError):
    error_type = "VALIDATION_ERROR"


class AccessDeniedError(JournalStorageError):
    """A non-owner tried to read a private entry, or to modify any entry."""

    error_type = "ACCESS_DENIED"


class NotFoundError(JournalStorageError):
    error_type = "NOT_FOUND"


class DecryptionError(JournalStorageError):
    """
    Ciphertext could not be decrypted (malformed envelope, wrong key, corruption).

    Never leaves ``JournalEntryRepository.find_by_id``; it is converted into a
    degraded response there.
    """

    error_type = "DECRYPTION_ERROR"


class KeyNotFoundError(JournalStorageError):
    """Key id is syntactically invalid, so no key material can be derived."""

    error_type = "KEY_NOT_FOUND"


class KeyPersistenceError(JournalStorageError):
    error_type = "KEY_PERSISTENCE_ERROR"
