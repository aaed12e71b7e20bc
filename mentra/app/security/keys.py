# mentra/app/security/keys.py
"""
Key issuing and key-material resolution for journal entries.

Key ids are persisted, key bytes are not: ``DerivedKeyProvider`` derives the
material from the process secret and the key id with HKDF-SHA256, so the same
``(secret, key_id)`` always yields the same 32 bytes. A managed key service
can replace it by implementing ``KeyProvider``.
"""
import hashlib
import logging
import re
import secrets
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mentra.app.core.exceptions import KeyNotFoundError, KeyPersistenceError
from mentra.app.models.encryption_key import EncryptionKey

logger = logging.getLogger(__name__)

KEY_LEN = 32
HKDF_SALT = b"mentra/journal-key-salt/v1"

# student_<owner digest>_<epoch ms>_<16 hex chars>
KEY_ID_RE = re.compile(r"^student_[0-9a-f]{16}_\d{10,16}_[0-9a-f]{16}$")


def is_valid_key_id(key_id: str) -> bool:
    return isinstance(key_id, str) and bool(KEY_ID_RE.match(key_id))


def build_key_id(owner_id: str) -> str:
    """
    Return a fresh, unique key id bound to ``owner_id``.

    The owner appears only as a SHA-256 prefix, so any owner id yields the
    same key id syntax; ``EncryptionKey.created_by`` keeps the real owner.
    """
    owner_digest = hashlib.sha256(str(owner_id).encode("utf-8")).hexdigest()[:16]
    millis = int(time.time() * 1000)
    return f"student_{owner_digest}_{millis}_{secrets.token_hex(8)}"


class KeyProvider(ABC):
    """Turns a key id into usable key material."""

    @abstractmethod
    def resolve_key(self, key_id: str) -> bytes:
        raise NotImplementedError


class DerivedKeyProvider(KeyProvider):
    """HKDF-SHA256(process_secret, info=key_id) -> 32 bytes."""

    def __init__(self, process_secret: str):
        if not process_secret:
            raise ValueError("process_secret must not be empty")
        self._secret = process_secret.encode("utf-8")

    def resolve_key(self, key_id: str) -> bytes:
        if not is_valid_key_id(key_id):
            raise KeyNotFoundError(
                "Invalid encryption key id",
                details={"keyId": key_id},
            )
        hk = HKDF(
            algorithm=hashes.SHA256(),
            length=KEY_LEN,
            salt=HKDF_SALT,
            info=key_id.encode("utf-8"),
        )
        return hk.derive(self._secret)


class KeyManager:
    """Issues key records per student and resolves their material."""

    def __init__(self, provider: KeyProvider, algorithm: str = "aes256"):
        self.provider = provider
        self.algorithm = algorithm

    async def generate_key(self, session: AsyncSession, owner_id: str) -> str:
        """
        Insert a new key record for ``owner_id`` into ``session``.

        Runs inside the caller's transaction: if the caller rolls back, the
        key row goes with it.
        """
        owner = str(owner_id)
        key_id = build_key_id(owner)
        try:
            session.add(
                EncryptionKey(
                    key_id=key_id,
                    encryption_algorithm=self.algorithm,
                    key_status="active",
                    created_by=owner,
                    activated_at=datetime.now(timezone.utc),
                )
            )
            await session.flush()
        except SQLAlchemyError as e:
            logger.error("Failed to persist encryption key for student %s: %s", owner, e)
            raise KeyPersistenceError(
                "Failed to persist encryption key",
                details={"ownerId": owner},
            ) from e

        return key_id

    def resolve_key(self, key_id: str) -> bytes:
        return self.provider.resolve_key(key_id)
