"""Report and drug routes - Read-only views over synced data."""

from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from sqlalchemy.orm import Session

from rxwatch.api.deps import get_db
from rxwatch.schemas.api import (
    DrugDetailResponse,
    DrugOut,
    ReportDetailOut,
    ReportListResponse,
    ReportOut,
)
from rxwatch.services.data_service import DataService

router = APIRouter(prefix="/api", tags=["reports"])


@router.get("/reports", response_model=ReportListResponse)
def list_reports(
    status: Optional[str] = Query(None, description="Exact report status, e.g. active_confirmed"),
    kind: Optional[Literal["shortage", "discontinuance"]] = Query(None, description="Report type"),
    din: Optional[str] = Query(None, description="Drug Identification Number"),
    company: Optional[str] = Query(None, description="Company name (case-insensitive partial match)"),
    active: bool = Query(False, description="Only reports still in effect"),
    sort_by: Literal["api_updated_at", "api_created_at", "report_id"] = Query("api_updated_at"),
    limit: int = Query(50, ge=1, le=500, description="Number of records to return (max 500)"),
    offset: int = Query(0, ge=0, description="Number of records to skip"),
    db: Session = Depends(get_db),
):
    """Synced DSC reports, newest first."""
    service = DataService(db)
    reports = service.get_reports(
        status=status,
        kind=kind,
        din=din,
        company=company,
        active_only=active,
        sort_by=sort_by,
        limit=limit,
        offset=offset,
    )
    total = service.count_reports(status=status, kind=kind, din=din, company=company, active_only=active)
    return ReportListResponse(
        total_count=total,
        limit=limit,
        offset=offset,
        data=[ReportOut.model_validate(report) for report in reports],
    )


@router.get("/reports/{report_id}", response_model=ReportDetailOut)
def get_report(report_id: int, db: Session = Depends(get_db)):
    """A single report with its full upstream payload."""
    report = DataService(db).get_report(report_id)
    if report is None:
        raise HTTPException(status_code=404, detail=f"Report {report_id} not found")
    return ReportDetailOut.model_validate(report)


@router.get("/drugs/{din}", response_model=DrugDetailResponse)
def get_drug(
    din: str = Path(..., pattern=r"^\d{8}$", description="8-digit Drug Identification Number"),
    db: Session = Depends(get_db),
):
    """DPD catalog entry for a DIN together with its shortage reports."""
    service = DataService(db)
    drug = service.get_drug(din)
    reports = service.get_reports_for_din(din)
    if drug is None and not reports:
        raise HTTPException(status_code=404, detail=f"Drug {din} not found")
    return DrugDetailResponse(
        drug=DrugOut.model_validate(drug) if drug else None,
        reports=[ReportOut.model_validate(report) for report in reports],
    )
