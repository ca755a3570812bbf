"""Sync metadata store - one status row per sync job."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from rxwatch.core.logging import get_logger
from rxwatch.models.sync_metadata import SyncMetadata
from rxwatch.schemas.api import SyncJobMetadata

log = get_logger("sync_metadata")


class SyncMetadataStore:
    """Upserts job outcomes; each call uses its own short-lived session."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def record_run(
        self,
        job_id: str,
        *,
        success: bool,
        error: Optional[str] = None,
        finished_at: Optional[datetime] = None,
    ) -> SyncJobMetadata:
        """Record a finished run.

        Success sets ``last_success_at``, clears ``last_error`` and resets the
        failure streak. Failure keeps ``last_success_at`` and increments it.
        """
        now = finished_at or datetime.now(timezone.utc)
        with self.session_factory() as db:
            row = db.get(SyncMetadata, job_id)
            if row is None:
                row = SyncMetadata(job_id=job_id, consecutive_failures=0)
                db.add(row)

            row.last_run_at = now
            if success:
                row.last_success_at = now
                row.last_error = None
                row.consecutive_failures = 0
            else:
                row.last_error = error
                row.consecutive_failures = (row.consecutive_failures or 0) + 1

            db.commit()
            log.debug(f"Sync metadata for {job_id}: success={success} failures={row.consecutive_failures}")
            return SyncJobMetadata.model_validate(row)

    def get(self, job_id: str) -> Optional[SyncJobMetadata]:
        with self.session_factory() as db:
            row = db.get(SyncMetadata, job_id)
            return SyncJobMetadata.model_validate(row) if row else None

    def list(self) -> List[SyncJobMetadata]:
        with self.session_factory() as db:
            rows = db.execute(select(SyncMetadata).order_by(SyncMetadata.job_id)).scalars().all()
            return [SyncJobMetadata.model_validate(row) for row in rows]
