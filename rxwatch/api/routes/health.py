"""Health routes - System health and sync status."""

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy import select, text
from sqlalchemy.orm import Session

from rxwatch.api.deps import get_db
from rxwatch.models.sync_metadata import SyncMetadata
from rxwatch.schemas.api import HealthResponse, SyncJobMetadata

router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("", response_model=HealthResponse)
def health(request: Request, response: Response, db: Session = Depends(get_db)):
    """
    Health check endpoint for load balancer and uptime checks.

    Checks database connectivity and reports the last outcome of each sync job.
    Returns 503 if the database is unreachable.
    """
    try:
        db.execute(text("SELECT 1"))
        db_status = "ok"
    except Exception as e:
        response.status_code = 503
        return HealthResponse(status="degraded", database=f"down: {e}", running_jobs=[], sync=[])

    rows = db.execute(select(SyncMetadata).order_by(SyncMetadata.job_id)).scalars().all()
    orchestrator = getattr(request.app.state, "orchestrator", None)

    return HealthResponse(
        status="ok",
        database=db_status,
        running_jobs=orchestrator.running_jobs() if orchestrator else [],
        sync=[SyncJobMetadata.model_validate(row) for row in rows],
    )
