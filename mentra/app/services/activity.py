# mentra/app/services/activity.py
"""
Activity tracking seam.

The platform's activity monitor lives outside this service; the repository
only needs something with an async ``track``. Calls always happen after the
transaction has committed.
"""
import logging
from typing import Any, Dict

logger = logging.getLogger(__name__)


class ActivityTracker:
    async def track(self, activity_type: str, student_id: str, details: Dict[str, Any]) -> None:
        raise NotImplementedError


class LoggingActivityTracker(ActivityTracker):
    """Default tracker: one INFO line per event, no plaintext."""

    async def track(self, activity_type: str, student_id: str, details: Dict[str, Any]) -> None:
        logger.info("activity=%s student=%s details=%s", activity_type, student_id, details)
