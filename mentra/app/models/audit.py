# mentra/app/models/audit.py
"""
Append-only audit tables.

Rows are inserted by ``mentra.app.services.audit.AuditLogger`` and are never
updated or deleted by this service.
"""
import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, Integer, String, Text
from sqlalchemy.sql import func

from mentra.app.db.base import Base


class JournalAccessLog(Base):
    """One row per read / edit / delete of a journal entry."""

    __tablename__ = "journal_access_log"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    # No FK: the trail must outlive whatever happens to the entry row
    journal_entry_id = Column(String(36), nullable=False, index=True)

    accessed_by = Column(String(64), nullable=False)
    # read, edit, delete
    access_type = Column(String(50), nullable=False)
    # web, mobile, api
    access_source = Column(String(100), default="web")

    decryption_successful = Column(Boolean, default=True, nullable=False)
    privacy_level_at_access = Column(String(30), nullable=True)

    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)

    accessed_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)


class AccessControlAuditLog(Base):
    """Every access decision (allowed / denied) taken by the repository."""

    __tablename__ = "access_control_audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=True)
    user_role = Column(String(50), nullable=True)
    resource_type = Column(String(100), nullable=True)
    resource_id = Column(String(100), nullable=True)
    action = Column(String(50), nullable=True)
    result = Column(String(20), default="allowed")
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    additional_data = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_access_control_audit_user_id", "user_id"),
        Index("idx_access_control_audit_created_at", "created_at"),
        Index("idx_access_control_audit_result", "result"),
        Index("idx_access_control_audit_action", "action"),
    )
