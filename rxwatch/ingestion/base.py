"""Abstract sync task interface for ingestion jobs."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class BaseSyncTask(ABC):
    """One ingestion job the orchestrator can run.

    ``run`` returns a stats dict on success and raises on failure; the
    orchestrator turns either outcome into metadata and notifications.
    """

    job_id: str

    @abstractmethod
    async def run(self) -> Dict[str, Any]:
        """Run one full sync pass from scratch."""

    async def aclose(self) -> None:
        """Release network clients held by the task."""

    @staticmethod
    def _parse_timestamp(value: Any) -> Optional[datetime]:
        if not value:
            return None
        try:
            if isinstance(value, str):
                value = value.replace("Z", "+00:00")
                parsed = datetime.fromisoformat(value)
            elif isinstance(value, datetime):
                parsed = value
            else:
                return None
        except ValueError:
            return None
        return as_utc(parsed)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive values (SQLite drops the offset on read)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
