"""Sync state files for incremental ingestion"""

import json
import os
import tempfile
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from rxwatch.core.logging import get_logger
from rxwatch.schemas.dpd import DPDSyncState

log = get_logger("sync_state")


class SyncStateStore:
    """Persists per-job sync state as JSON files"""

    def __init__(self, state_dir: str = ".sync-state"):
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, job_id: str) -> Path:
        return self.state_dir / f"{job_id}.json"

    def load(self, job_id: str) -> Optional[DPDSyncState]:
        """Load state for a job; a missing or unreadable file means no state"""
        state_file = self._path(job_id)
        if not state_file.exists():
            return None
        try:
            return DPDSyncState.model_validate_json(state_file.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            log.warning(f"Ignoring unreadable sync state {state_file}: {exc}")
            return None

    def save(self, job_id: str, state: DPDSyncState) -> None:
        """Write state atomically (temp file + rename)"""
        state_file = self._path(job_id)
        fd, tmp_name = tempfile.mkstemp(dir=self.state_dir, prefix=f".{job_id}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(state.model_dump(mode="json"), f, indent=2)
            os.replace(tmp_name, state_file)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def clear(self, job_id: str) -> None:
        """Delete state for a job"""
        self._path(job_id).unlink(missing_ok=True)
