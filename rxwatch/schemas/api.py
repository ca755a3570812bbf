from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict


class SyncJobMetadata(BaseModel):
    """Last outcome of one sync job."""

    model_config = ConfigDict(from_attributes=True)

    job_id: str
    last_run_at: datetime
    last_success_at: Optional[datetime] = None
    last_error: Optional[str] = None
    consecutive_failures: int = 0


class HealthResponse(BaseModel):
    status: Literal["ok", "degraded"]
    database: str
    running_jobs: list[str]
    sync: list[SyncJobMetadata]


class JobScheduleOut(BaseModel):
    job: str
    schedule: str
    running: bool


class CronStatusResponse(BaseModel):
    timezone: str
    jobs: list[JobScheduleOut]


class CronTriggerRequest(BaseModel):
    job: str


class CronTriggerResponse(BaseModel):
    job: str
    status: str
    duration_seconds: float
    stats: dict[str, Any] = {}
    error: Optional[str] = None
    retry_scheduled: bool = False


class ReportOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    report_id: int
    din: Optional[str] = None
    kind: str
    status: str
    company_name: Optional[str] = None
    api_created_at: Optional[datetime] = None
    api_updated_at: Optional[datetime] = None


class ReportDetailOut(ReportOut):
    payload: dict


class ReportListResponse(BaseModel):
    total_count: int
    limit: int
    offset: int
    data: list[ReportOut]


class DrugOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    din: str
    drug_code: int
    brand_name: Optional[str] = None
    company_name: Optional[str] = None
    last_update_date: Optional[str] = None
    payload: dict


class DrugDetailResponse(BaseModel):
    drug: Optional[DrugOut] = None
    reports: list[ReportOut]
