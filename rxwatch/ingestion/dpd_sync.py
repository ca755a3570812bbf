"""Drug Product Database catalog sync (incremental mode).

A HEAD request on the drug listing is compared with the Content-Length saved
by the previous run. An unchanged listing is skipped unless the last full
sync is older than ``FULL_SYNC_INTERVAL``. Otherwise only new drugs and drugs
whose ``last_update_date`` moved are refreshed.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from rxwatch.core.errors import UpstreamError
from rxwatch.core.logging import get_logger
from rxwatch.core.sync_state import SyncStateStore
from rxwatch.ingestion.base import BaseSyncTask, as_utc
from rxwatch.ingestion.dpd_client import DPDClient
from rxwatch.models.raw import RawDPDDrug
from rxwatch.schemas.dpd import DPDDrug, DPDDrugDetails, DPDSyncState

log = get_logger("ingestion.dpd_sync")

DIN_LENGTH = 8
FULL_SYNC_INTERVAL = timedelta(days=30)


class DPDSyncTask(BaseSyncTask):
    job_id = "dpd"

    def __init__(
        self,
        client: DPDClient,
        session_factory: sessionmaker,
        state_store: SyncStateStore,
        *,
        concurrency: int = 20,
        force: bool = False,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.client = client
        self.session_factory = session_factory
        self.state_store = state_store
        self.concurrency = concurrency
        self.force = force
        self._clock = clock

    async def aclose(self) -> None:
        await self.client.aclose()

    async def run(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {"skipped": False, "listed": 0, "changed": 0, "updated": 0, "errors": 0}
        now = self._clock()
        previous = self.state_store.load(self.job_id)
        content_length = await self.client.drug_list_size()

        if self._unchanged(previous, content_length, now):
            log.info(f"DPD listing unchanged ({content_length} bytes); skipping")
            self.state_store.save(self.job_id, previous.model_copy(update={"last_sync_at": now}))
            stats["skipped"] = True
            return stats

        listing = await self.client.list_drugs()
        drugs = self._valid_unique(listing)
        stats["listed"] = len(drugs)

        with self.session_factory() as db:
            known = dict(db.execute(select(RawDPDDrug.din, RawDPDDrug.last_update_date)).all())
            changed = [drug for drug in drugs if self._needs_update(drug, known)]
            stats["changed"] = len(changed)
            log.info(f"{len(changed)} new or changed DPD drugs out of {len(drugs)}")

            for drug, details in await self._fetch_details(changed, stats):
                row = db.get(RawDPDDrug, drug.din)
                if row is None:
                    row = RawDPDDrug(din=drug.din)
                    db.add(row)
                row.drug_code = drug.drug_code
                row.brand_name = drug.brand_name
                row.company_name = drug.company_name
                row.last_update_date = drug.last_update_date
                row.payload = {"drug": drug.model_dump(mode="json"), "details": details.model_dump(mode="json")}
                stats["updated"] += 1
            db.commit()

        self.state_store.save(
            self.job_id,
            DPDSyncState(
                last_sync_at=now,
                drugs_count=len(listing),
                last_content_length=content_length,
                last_full_sync_at=now,
            ),
        )
        log.info(f"DPD sync: updated={stats['updated']} errors={stats['errors']}")
        return stats

    def _unchanged(self, previous: Optional[DPDSyncState], content_length: Optional[int], now: datetime) -> bool:
        if self.force or previous is None or not content_length:
            return False
        if not previous.last_content_length or previous.last_full_sync_at is None:
            return False
        if content_length != previous.last_content_length:
            log.info(f"DPD listing size changed: {previous.last_content_length} -> {content_length}")
            return False
        return now - as_utc(previous.last_full_sync_at) < FULL_SYNC_INTERVAL

    @staticmethod
    def _valid_unique(listing: List[DPDDrug]) -> List[DPDDrug]:
        """Drugs with an 8-character DIN, first occurrence wins."""
        seen = set()
        drugs = []
        for drug in listing:
            din = drug.din
            if not din or len(din) != DIN_LENGTH or din in seen:
                continue
            seen.add(din)
            drugs.append(drug)
        return drugs

    def _needs_update(self, drug: DPDDrug, known: Dict[str, Optional[str]]) -> bool:
        if drug.din not in known:
            return True
        if self.force:
            return True
        return bool(drug.last_update_date) and drug.last_update_date != known[drug.din]

    async def _fetch_details(
        self, drugs: List[DPDDrug], stats: Dict[str, Any]
    ) -> List[Tuple[DPDDrug, DPDDrugDetails]]:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def fetch(drug: DPDDrug) -> Optional[Tuple[DPDDrug, DPDDrugDetails]]:
            async with semaphore:
                try:
                    return drug, await self.client.drug_details(drug.drug_code)
                except (UpstreamError, ValidationError) as exc:
                    log.warning(f"Failed to fetch details for DIN {drug.din}: {exc}")
                    stats["errors"] += 1
                    return None

        results = await asyncio.gather(*(fetch(drug) for drug in drugs))
        return [result for result in results if result is not None]
