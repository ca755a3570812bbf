"""Cron routes - Sync schedules and manual triggers."""

import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import ValidationError

from rxwatch.api.deps import get_orchestrator
from rxwatch.core.config import settings
from rxwatch.core.logging import get_logger
from rxwatch.schemas.api import CronStatusResponse, CronTriggerRequest, CronTriggerResponse, JobScheduleOut
from rxwatch.services.orchestrator import JobStatus, SyncOrchestrator

router = APIRouter(prefix="/api/cron", tags=["cron"])
log = get_logger("cron_routes")


@router.get("", response_model=CronStatusResponse)
def cron_status(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Configured schedules and whether each job is running."""
    schedules = orchestrator.get_schedules()
    return CronStatusResponse(
        timezone=orchestrator.timezone,
        jobs=[
            JobScheduleOut(job=job, schedule=schedules.get(job, "manual"), running=orchestrator.is_running(job))
            for job in orchestrator.job_ids
        ],
    )


def _check_secret(authorization: Optional[str]) -> None:
    if not settings.CRON_SECRET:
        raise HTTPException(status_code=500, detail="CRON_SECRET not configured")
    token = (authorization or "").removeprefix("Bearer ")
    if not hmac.compare_digest(token.encode(), settings.CRON_SECRET.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.post("", response_model=CronTriggerResponse)
async def trigger_sync(
    request: Request,
    authorization: Optional[str] = Header(None),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """
    Manually trigger a sync job.

    Body: {"job": "dsc" | "dpd"}
    Header: Authorization: Bearer <CRON_SECRET>

    The job runs to completion before the response is sent. A failed run
    still gets its automatic retry.
    """
    _check_secret(authorization)

    try:
        body = CronTriggerRequest.model_validate(await request.json())
    except (ValueError, ValidationError):
        raise HTTPException(status_code=400, detail="Invalid JSON body")

    if body.job not in orchestrator.job_ids:
        jobs = " or ".join(f'"{job}"' for job in orchestrator.job_ids)
        raise HTTPException(status_code=400, detail=f"Invalid job. Must be {jobs}")

    if orchestrator.is_running(body.job):
        raise HTTPException(status_code=409, detail=f"{body.job} job is already running")

    log.info(f"Manual sync triggered for {body.job}")
    result = await orchestrator.trigger(body.job)
    if result.status == JobStatus.ALREADY_RUNNING:
        raise HTTPException(status_code=409, detail=f"{body.job} job is already running")

    return CronTriggerResponse(
        job=result.job_id,
        status=result.status.value,
        duration_seconds=round(result.duration_seconds, 3),
        stats=result.stats,
        error=result.error,
        retry_scheduled=result.retry_scheduled,
    )
