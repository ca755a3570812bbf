"""Data Service - Read-only queries over the raw report and drug tables."""

from __future__ import annotations

from typing import List, Literal, Optional

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from rxwatch.models.raw import RawDPDDrug, RawDSCReport
from rxwatch.schemas.dsc import ACTIVE_STATUSES

ReportSortField = Literal["api_updated_at", "api_created_at", "report_id"]


class DataService:
    """Handles report and drug lookups - reads from DB only, no writes."""

    def __init__(self, db: Session):
        self.db = db

    # -------------------------------------------------------------------------
    # Reports
    # -------------------------------------------------------------------------
    def _filtered_reports(
        self,
        status: Optional[str] = None,
        kind: Optional[str] = None,
        din: Optional[str] = None,
        company: Optional[str] = None,
        active_only: bool = False,
    ) -> Select:
        stmt = select(RawDSCReport)
        if status:
            stmt = stmt.where(RawDSCReport.status == status)
        if active_only:
            stmt = stmt.where(RawDSCReport.status.in_(ACTIVE_STATUSES))
        if kind:
            stmt = stmt.where(RawDSCReport.kind == kind)
        if din:
            stmt = stmt.where(RawDSCReport.din == din)
        if company:
            stmt = stmt.where(RawDSCReport.company_name.ilike(f"%{company}%"))
        return stmt

    def get_reports(
        self,
        status: Optional[str] = None,
        kind: Optional[str] = None,
        din: Optional[str] = None,
        company: Optional[str] = None,
        active_only: bool = False,
        sort_by: ReportSortField = "api_updated_at",
        limit: int = 50,
        offset: int = 0,
    ) -> List[RawDSCReport]:
        """Get reports with optional filtering, newest first."""
        stmt = self._filtered_reports(status, kind, din, company, active_only)
        column = getattr(RawDSCReport, sort_by)
        stmt = stmt.order_by(column.desc().nullslast(), RawDSCReport.report_id.desc())
        stmt = stmt.limit(limit).offset(offset)
        return list(self.db.execute(stmt).scalars().all())

    def count_reports(
        self,
        status: Optional[str] = None,
        kind: Optional[str] = None,
        din: Optional[str] = None,
        company: Optional[str] = None,
        active_only: bool = False,
    ) -> int:
        filtered = self._filtered_reports(status, kind, din, company, active_only).subquery()
        return self.db.execute(select(func.count()).select_from(filtered)).scalar() or 0

    def get_report(self, report_id: int) -> Optional[RawDSCReport]:
        return self.db.get(RawDSCReport, report_id)

    # -------------------------------------------------------------------------
    # Drugs
    # -------------------------------------------------------------------------
    def get_drug(self, din: str) -> Optional[RawDPDDrug]:
        return self.db.get(RawDPDDrug, din)

    def get_reports_for_din(self, din: str) -> List[RawDSCReport]:
        return self.get_reports(din=din, limit=500)
