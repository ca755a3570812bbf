"""Sync job orchestration.

Runs ingestion tasks on their cron schedules or on demand, keeps at most one
run per job in flight, records every outcome and retries a failed run once
after a cooldown.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from rxwatch.core.config import settings
from rxwatch.core.logging import get_logger
from rxwatch.core.notify import Notifier
from rxwatch.ingestion.base import BaseSyncTask
from rxwatch.services.sync_metadata import SyncMetadataStore

log = get_logger("orchestrator")


class JobStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ALREADY_RUNNING = "already_running"


@dataclass
class JobResult:
    job_id: str
    status: JobStatus
    stats: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    duration_seconds: float = 0.0
    is_retry: bool = False
    retry_scheduled: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status == JobStatus.SUCCEEDED


class SyncOrchestrator:
    """Owns the running-job guard, the scheduler and pending retries."""

    def __init__(
        self,
        tasks: Iterable[BaseSyncTask],
        metadata_store: SyncMetadataStore,
        notifier: Notifier,
        *,
        retry_delay_seconds: float = 300.0,
        schedules: Optional[Mapping[str, str]] = None,
        timezone: str = "UTC",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._tasks: Dict[str, BaseSyncTask] = {task.job_id: task for task in tasks}
        self.metadata_store = metadata_store
        self.notifier = notifier
        self.retry_delay_seconds = retry_delay_seconds
        self.timezone = timezone
        self._schedules = {job: expr for job, expr in (schedules or {}).items() if job in self._tasks}
        self._sleep = sleep

        self._running: set[str] = set()
        self._retries: Dict[str, asyncio.Task] = {}
        self._scheduler: Optional[AsyncIOScheduler] = None

    @classmethod
    def from_settings(
        cls, tasks: Iterable[BaseSyncTask], metadata_store: SyncMetadataStore, notifier: Notifier
    ) -> "SyncOrchestrator":
        return cls(
            tasks,
            metadata_store,
            notifier,
            retry_delay_seconds=settings.SYNC_RETRY_DELAY_SECONDS,
            schedules=settings.schedules,
            timezone=settings.SCHEDULE_TIMEZONE,
        )

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------
    @property
    def job_ids(self) -> List[str]:
        return list(self._tasks)

    def get_task(self, job_id: str) -> BaseSyncTask:
        try:
            return self._tasks[job_id]
        except KeyError:
            raise ValueError(f"Unknown sync job: {job_id}") from None

    def is_running(self, job_id: str) -> bool:
        return job_id in self._running

    def running_jobs(self) -> List[str]:
        return sorted(self._running)

    def get_schedules(self) -> Dict[str, str]:
        return dict(self._schedules)

    def has_pending_retry(self, job_id: str) -> bool:
        pending = self._retries.get(job_id)
        return pending is not None and not pending.done()

    # -------------------------------------------------------------------------
    # Running jobs
    # -------------------------------------------------------------------------
    async def trigger(self, job_id: str, *, is_retry: bool = False) -> JobResult:
        """Run a job now unless it is already running. Task errors never propagate."""
        task = self.get_task(job_id)

        # Check and mark without awaiting in between
        if job_id in self._running:
            log.info(f"{job_id} is already running; skipping")
            return JobResult(job_id=job_id, status=JobStatus.ALREADY_RUNNING, is_retry=is_retry)
        self._running.add(job_id)

        started = time.monotonic()
        label = f"{job_id} (retry)" if is_retry else job_id
        log.info(f"Starting sync job {label}")
        try:
            try:
                stats = await task.run()
            except Exception as exc:
                duration = time.monotonic() - started
                log.opt(exception=exc).error(f"Sync job {label} failed after {duration:.1f}s: {exc}")
                result = JobResult(
                    job_id=job_id,
                    status=JobStatus.FAILED,
                    error=str(exc) or type(exc).__name__,
                    duration_seconds=duration,
                    is_retry=is_retry,
                )
                self._record(job_id, success=False, error=result.error)
                await self._notify_failure(job_id, exc)
                if not is_retry:
                    result.retry_scheduled = self._schedule_retry(job_id)
                return result

            duration = time.monotonic() - started
            log.info(f"Sync job {label} completed in {duration:.1f}s")
            self._record(job_id, success=True)
            self.notifier.record_success(job_id, {"duration": f"{duration:.1f}s", **(stats or {})})
            return JobResult(
                job_id=job_id,
                status=JobStatus.SUCCEEDED,
                stats=stats or {},
                duration_seconds=duration,
                is_retry=is_retry,
            )
        finally:
            self._running.discard(job_id)

    def _record(self, job_id: str, *, success: bool, error: Optional[str] = None) -> None:
        try:
            self.metadata_store.record_run(job_id, success=success, error=error)
        except Exception as exc:  # noqa: BLE001
            log.error(f"Failed to update sync metadata for {job_id}: {exc}")

    async def _notify_failure(self, job_id: str, exc: Exception) -> None:
        try:
            await self.notifier.record_error(job_id, exc)
        except Exception as notify_exc:  # noqa: BLE001
            log.error(f"Failed to send failure notification for {job_id}: {notify_exc}")

    def _schedule_retry(self, job_id: str) -> bool:
        if self.has_pending_retry(job_id):
            log.info(f"Retry for {job_id} already pending")
            return False
        log.info(f"Scheduling retry for {job_id} in {self.retry_delay_seconds:.0f}s")
        self._retries[job_id] = asyncio.create_task(self._retry_later(job_id))
        return True

    async def _retry_later(self, job_id: str) -> JobResult:
        await self._sleep(self.retry_delay_seconds)
        result = await self.trigger(job_id, is_retry=True)
        if result.status == JobStatus.FAILED:
            log.error(f"Retry for {job_id} failed; waiting for next scheduled run")
        return result

    async def wait_for_retries(self) -> Dict[str, JobResult]:
        """Block until every pending retry has finished and return their results."""
        pending = {job_id: task for job_id, task in self._retries.items() if not task.done()}
        if pending:
            await asyncio.gather(*pending.values())
        return {job_id: task.result() for job_id, task in pending.items()}

    # -------------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------------
    def start(self) -> None:
        if self._scheduler is not None:
            return
        self._scheduler = AsyncIOScheduler(timezone=self.timezone)
        for job_id, expression in self._schedules.items():
            self._scheduler.add_job(
                self.trigger,
                trigger=CronTrigger.from_crontab(expression, timezone=self.timezone),
                args=[job_id],
                id=f"sync-{job_id}",
                replace_existing=True,
                coalesce=True,
                max_instances=1,
            )
            log.info(f"Scheduled {job_id} sync: {expression} ({self.timezone})")
        self._scheduler.start()
        log.info("Sync scheduler started")

    async def shutdown(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        pending = [task for task in self._retries.values() if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._retries.clear()

        for task in self._tasks.values():
            await task.aclose()
        await self.notifier.aclose()
        log.info("Sync orchestrator stopped")
