"""Drug Shortages Canada report sync.

Normal runs re-read every active report and reconcile the local store with
it. When the newest stored report is older than the gap threshold the run
switches to gap recovery and pages through all reports newest-first until it
reaches ones it has already seen.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from rxwatch.core.errors import AllCredentialsExhausted, UpstreamError
from rxwatch.core.logging import get_logger
from rxwatch.ingestion.base import BaseSyncTask, as_utc
from rxwatch.ingestion.dsc_client import DSCClient
from rxwatch.models.raw import RawDSCReport
from rxwatch.schemas.dsc import ACTIVE_STATUSES, DSCReport, ReportQuery

log = get_logger("ingestion.dsc_sync")

PAGE_SIZE = 100
GAP_THRESHOLD = timedelta(hours=24)


class DSCSyncTask(BaseSyncTask):
    job_id = "dsc"

    def __init__(
        self,
        client: DSCClient,
        session_factory: sessionmaker,
        *,
        page_size: int = PAGE_SIZE,
        gap_threshold: timedelta = GAP_THRESHOLD,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.client = client
        self.session_factory = session_factory
        self.page_size = page_size
        self.gap_threshold = gap_threshold
        self._clock = clock

    async def aclose(self) -> None:
        await self.client.aclose()

    async def run(self) -> Dict[str, Any]:
        stats = {"mode": "active", "new_reports": 0, "updated_reports": 0, "resolved_reports": 0, "api_calls": 0}

        with self.session_factory() as db:
            last_sync = self._last_synced_at(db)
            gap_recovery = last_sync is not None and self._clock() - last_sync > self.gap_threshold

            if gap_recovery:
                log.info(f"Last DSC update {last_sync.isoformat()} is older than {self.gap_threshold}; recovering gap")
                stats["mode"] = "gap_recovery"
                reports = await self._fetch_since(last_sync, stats)
            else:
                if last_sync is None:
                    log.info("No stored DSC reports; fetching all active reports")
                reports = await self._fetch_active(stats)

            log.info(f"Fetched {len(reports)} DSC reports in {stats['api_calls']} calls")
            if not reports:
                return stats

            self._store(db, reports, stats)

            if not gap_recovery:
                await self._verify_vanished(db, {report.id for report in reports}, stats)

        log.info(
            f"DSC sync: new={stats['new_reports']} updated={stats['updated_reports']} "
            f"resolved={stats['resolved_reports']}"
        )
        return stats

    # -------------------------------------------------------------------------
    # Fetchers
    # -------------------------------------------------------------------------
    async def _fetch_active(self, stats: Dict[str, Any]) -> List[DSCReport]:
        reports: List[DSCReport] = []
        for status in ACTIVE_STATUSES:
            offset = 0
            while True:
                page = await self.client.search(
                    ReportQuery(
                        filter_status=status,
                        limit=self.page_size,
                        offset=offset,
                        orderby="updated_date",
                        order="desc",
                    )
                )
                stats["api_calls"] += 1
                reports.extend(page.data)
                log.debug(f"{status}: {offset + len(page.data)}/{page.total}")

                if not page.data or offset + len(page.data) >= page.total:
                    break
                offset += self.page_size
        return reports

    async def _fetch_since(self, since: datetime, stats: Dict[str, Any]) -> List[DSCReport]:
        reports: List[DSCReport] = []
        offset = 0
        while True:
            page = await self.client.search(
                ReportQuery(limit=self.page_size, offset=offset, orderby="updated_date", order="desc")
            )
            stats["api_calls"] += 1

            fresh = [report for report in page.data if self._is_newer(report, since)]
            reports.extend(fresh)
            log.debug(f"Fetched {offset + len(page.data)}/{page.total}, {len(fresh)} new")

            # Results are newest-first, so the first stale report ends the scan
            if len(fresh) < len(page.data) or not page.data or offset + len(page.data) >= page.total:
                break
            offset += self.page_size
        return reports

    def _is_newer(self, report: DSCReport, since: datetime) -> bool:
        updated = self._parse_timestamp(report.updated_date)
        return updated is not None and updated > since

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------
    @staticmethod
    def _last_synced_at(db: Session) -> Optional[datetime]:
        latest = db.execute(select(func.max(RawDSCReport.api_updated_at))).scalar_one_or_none()
        return as_utc(latest) if latest else None

    def _store(self, db: Session, reports: Iterable[DSCReport], stats: Dict[str, Any]) -> None:
        for report in reports:
            row = db.get(RawDSCReport, report.id)
            if row is None:
                row = RawDSCReport(report_id=report.id)
                self._apply(row, report)
                db.add(row)
                stats["new_reports"] += 1
            elif row.status != report.status:
                self._apply(row, report)
                stats["updated_reports"] += 1
        db.commit()

    def _apply(self, row: RawDSCReport, report: DSCReport) -> None:
        row.din = report.din or None
        row.kind = report.kind
        row.status = report.status
        row.company_name = report.company_name
        row.api_created_at = self._parse_timestamp(report.created_date)
        row.api_updated_at = self._parse_timestamp(report.updated_date)
        row.payload = report.raw()

    async def _verify_vanished(self, db: Session, seen_ids: set, stats: Dict[str, Any]) -> None:
        """Re-fetch stored active reports that the active listing no longer returns."""
        stored_active = db.execute(
            select(RawDSCReport).where(RawDSCReport.status.in_(ACTIVE_STATUSES))
        ).scalars().all()
        vanished = [row for row in stored_active if row.report_id not in seen_ids]
        if not vanished:
            return

        log.info(f"Verifying {len(vanished)} active reports missing from the listing")
        for row in vanished:
            try:
                report = await self.client.get_report(row.report_id, row.kind)
            except AllCredentialsExhausted:
                raise
            except UpstreamError as exc:
                log.warning(f"Failed to verify report {row.report_id}: {exc}")
                continue
            finally:
                stats["api_calls"] += 1

            if not report.is_active:
                self._apply(row, report)
                stats["resolved_reports"] += 1
            db.commit()
