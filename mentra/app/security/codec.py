# mentra/app/security/codec.py
"""
Field-level encryption for journal content.

Envelope layout (bytes):

    version (1) || nonce (12) || AES-256-GCM ciphertext + tag

The codec is stateless; key material always comes from ``KeyManager``.
"""
import hashlib
import secrets
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from mentra.app.core.exceptions import DecryptionError

ENVELOPE_VERSION = 1
NONCE_LEN = 12
TAG_LEN = 16
KEY_LEN = 32


class CryptoCodec:
    """AES-256-GCM encrypt / decrypt plus the plaintext integrity digest."""

    method = "aes256"

    def encrypt(self, plaintext: Optional[str], key: bytes) -> Optional[bytes]:
        """Encrypt ``plaintext``; empty or None maps to None, never to a ciphertext."""
        if not plaintext:
            return None
        nonce = secrets.token_bytes(NONCE_LEN)
        ct = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
        return bytes([ENVELOPE_VERSION]) + nonce + ct

    def decrypt(self, ciphertext: Optional[bytes], key: bytes) -> Optional[str]:
        """Inverse of ``encrypt``. Raises DecryptionError on any failure."""
        if ciphertext is None:
            return None

        blob = bytes(ciphertext)
        if len(blob) < 1 + NONCE_LEN + TAG_LEN:
            raise DecryptionError("Ciphertext too short")
        if blob[0] != ENVELOPE_VERSION:
            raise DecryptionError(
                "Unsupported envelope version",
                details={"version": blob[0]},
            )
        if len(key) != KEY_LEN:
            raise DecryptionError("Invalid key length")

        nonce = blob[1:1 + NONCE_LEN]
        try:
            plaintext = AESGCM(key).decrypt(nonce, blob[1 + NONCE_LEN:], None)
            return plaintext.decode("utf-8")
        except (InvalidTag, UnicodeDecodeError) as e:
            raise DecryptionError("Ciphertext failed authentication") from e

    @staticmethod
    def content_hash(plaintext: Optional[str]) -> Optional[str]:
        """SHA-256 hex digest of the unencrypted content."""
        if plaintext is None:
            return None
        return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()

    @classmethod
    def verify_content_hash(cls, plaintext: Optional[str], expected: Optional[str]) -> bool:
        if expected is None:
            return True
        actual = cls.content_hash(plaintext)
        if actual is None:
            return False
        return secrets.compare_digest(actual, expected)
