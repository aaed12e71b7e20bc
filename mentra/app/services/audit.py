# mentra/app/services/audit.py
"""
Best-effort audit trail for journal access.

Writes run as detached asyncio tasks on their own session, outside the
caller's transaction. A failed write is logged and dropped: audit logging
never fails a read or a write. Under storage pressure the trail can
therefore have gaps.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mentra.app.models.audit import AccessControlAuditLog, JournalAccessLog
from mentra.app.schemas.journal import RequestInfo

logger = logging.getLogger(__name__)

ACCESS_TYPES = ("read", "edit", "delete")


class AuditLogger:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        # Strong references so pending writes are not garbage collected
        self._pending: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    def record(
        self,
        entry_id: str,
        user_id: str,
        access_type: str,
        request_info: Optional[RequestInfo] = None,
        decryption_successful: bool = True,
        privacy_level: Optional[str] = None,
    ) -> None:
        """Schedule one ``journal_access_log`` row; returns immediately."""
        if access_type not in ACCESS_TYPES:
            raise ValueError(f"Unknown access type: {access_type}")
        info = request_info or RequestInfo()
        row = JournalAccessLog(
            journal_entry_id=str(entry_id),
            accessed_by=str(user_id),
            access_type=access_type,
            access_source=info.source,
            ip_address=info.ip_address,
            user_agent=info.user_agent,
            decryption_successful=decryption_successful,
            privacy_level_at_access=privacy_level,
        )
        self._spawn(self._write(row, f"journal access {access_type} on {entry_id}"))

    def record_decision(
        self,
        user_id: str,
        resource_id: str,
        action: str,
        result: str,
        request_info: Optional[RequestInfo] = None,
        additional_data: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Schedule one ``access_control_audit_log`` row (allowed / denied)."""
        info = request_info or RequestInfo()
        row = AccessControlAuditLog(
            user_id=str(user_id),
            user_role=info.user_role,
            resource_type="journal_entry",
            resource_id=str(resource_id),
            action=action,
            result=result,
            ip_address=info.ip_address,
            user_agent=info.user_agent,
            additional_data=additional_data or {},
        )
        self._spawn(self._write(row, f"access decision {action}={result} on {resource_id}"))

    # ------------------------------------------------------------------
    async def _write(self, row, label: str) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(row)
        except Exception as e:
            logger.warning("Failed to write audit row (%s): %s", label, e)

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for every scheduled write (shutdown, tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ------------------------------------------------------------------
    async def list_for_entry(self, entry_id: str, limit: int = 100) -> List[JournalAccessLog]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(JournalAccessLog)
                .where(JournalAccessLog.journal_entry_id == str(entry_id))
                .order_by(JournalAccessLog.accessed_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def list_decisions(self, resource_id: str) -> List[AccessControlAuditLog]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AccessControlAuditLog)
                .where(AccessControlAuditLog.resource_id == str(resource_id))
                .order_by(AccessControlAuditLog.id)
            )
            return list(result.scalars().all())
