"""Wires clients, sync tasks, metadata store and notifier into an orchestrator."""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy.orm import sessionmaker

from rxwatch.core.config import settings
from rxwatch.core.logging import get_logger
from rxwatch.core.notify import Notifier
from rxwatch.core.sync_state import SyncStateStore
from rxwatch.ingestion.base import BaseSyncTask
from rxwatch.ingestion.dpd_client import DPDClient
from rxwatch.ingestion.dpd_sync import DPDSyncTask
from rxwatch.ingestion.dsc_client import DSCClient
from rxwatch.ingestion.dsc_sync import DSCSyncTask
from rxwatch.services.orchestrator import SyncOrchestrator
from rxwatch.services.sync_metadata import SyncMetadataStore

log = get_logger("pipeline")


def build_tasks(session_factory: sessionmaker, *, force: bool = False) -> List[BaseSyncTask]:
    tasks: List[BaseSyncTask] = []

    if settings.DSC_ACCOUNTS:
        log.info(f"Using {len(settings.DSC_ACCOUNTS)} DSC account(s)")
        tasks.append(DSCSyncTask(DSCClient.from_settings(), session_factory))
    else:
        log.warning("DSC_ACCOUNTS is empty; the dsc sync job is disabled")

    tasks.append(
        DPDSyncTask(
            DPDClient.from_settings(),
            session_factory,
            SyncStateStore(settings.SYNC_STATE_DIR),
            concurrency=settings.DPD_CONCURRENCY,
            force=force,
        )
    )
    return tasks


def build_orchestrator(
    session_factory: sessionmaker,
    *,
    force: bool = False,
    notifier: Optional[Notifier] = None,
) -> SyncOrchestrator:
    return SyncOrchestrator.from_settings(
        build_tasks(session_factory, force=force),
        SyncMetadataStore(session_factory),
        notifier or Notifier.from_settings(),
    )
