# mentra/app/models/encryption_key.py
"""
ORM model for journal encryption key records.

Security: no key bytes are stored. Key material is derived from the process
secret and ``key_id`` at use time, so a row only records that the key exists,
who owns it and which algorithm it serves.
"""
from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.sql import func

from mentra.app.db.base import Base


class EncryptionKey(Base):
    __tablename__ = "journal_encryption_keys"

    id = Column(Integer, primary_key=True, autoincrement=True)
    key_id = Column(String(100), unique=True, nullable=False, index=True)

    encryption_algorithm = Column(String(50), default="aes256", nullable=False)
    # active, rotating, retired
    key_status = Column(String(20), default="active", nullable=False)

    # Owning student; keys are never shared across students
    created_by = Column(String(64), nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    activated_at = Column(DateTime(timezone=True), nullable=True)
