"""DPD catalog sync tests: change detection, DIN filtering, detail failures"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from rxwatch.core.errors import UpstreamServerError
from rxwatch.core.sync_state import SyncStateStore
from rxwatch.ingestion.dpd_sync import DPDSyncTask
from rxwatch.models.raw import RawDPDDrug
from rxwatch.schemas.dpd import DPDDrug, DPDDrugDetails, DPDSyncState

NOW = datetime(2026, 10, 19, 4, 0, tzinfo=timezone.utc)


def drug(code, din, updated="2026-10-01", brand=None):
    return DPDDrug(
        drug_code=code,
        drug_identification_number=din,
        brand_name=brand or f"BRAND {code}",
        company_name="ACME PHARMA",
        last_update_date=updated,
    )


class FakeDPDClient:
    def __init__(self, listing=(), size=1000, failing=()):
        self.listing = list(listing)
        self.size = size
        self.failing = set(failing)
        self.detail_calls = []
        self.list_calls = 0

    async def drug_list_size(self):
        return self.size

    async def list_drugs(self):
        self.list_calls += 1
        return self.listing

    async def drug_details(self, drug_code):
        self.detail_calls.append(drug_code)
        if drug_code in self.failing:
            raise UpstreamServerError("DPD API server error (500)", status_code=500)
        return DPDDrugDetails(
            ingredients=[{"ingredient_name": f"INGREDIENT {drug_code}"}],
            status={"status": "MARKETED"},
        )

    async def aclose(self):
        pass


@pytest.fixture
def state_store(tmp_path):
    return SyncStateStore(state_dir=str(tmp_path / "state"))


@pytest.fixture
def make_task(session_factory, state_store):
    def factory(client, **kwargs):
        return DPDSyncTask(client, session_factory, state_store, clock=lambda: NOW, **kwargs)

    return factory


def stored(session_factory):
    with session_factory() as db:
        return {row.din: row for row in db.execute(select(RawDPDDrug)).scalars().all()}


class TestDPDSync:
    """Incremental catalog refresh"""

    @pytest.mark.asyncio
    async def test_first_run_fetches_everything(self, make_task, session_factory, state_store):
        """New drugs get their details fetched and stored"""
        client = FakeDPDClient([drug(1, "00000001"), drug(2, "00000002")], size=2048)

        stats = await make_task(client).run()

        assert stats == {"skipped": False, "listed": 2, "changed": 2, "updated": 2, "errors": 0}
        rows = stored(session_factory)
        assert rows["00000001"].payload["details"]["ingredients"][0]["ingredient_name"] == "INGREDIENT 1"
        assert rows["00000002"].payload["drug"]["brand_name"] == "BRAND 2"

        state = state_store.load("dpd")
        assert state.last_content_length == 2048
        assert state.drugs_count == 2

    @pytest.mark.asyncio
    async def test_invalid_and_duplicate_dins_dropped(self, make_task, session_factory):
        """Only 8-character DINs are kept and the first duplicate wins"""
        client = FakeDPDClient([
            drug(1, "00000001", brand="FIRST"),
            drug(2, "00000001", brand="SECOND"),
            drug(3, "1234"),
            drug(4, None),
            drug(5, "00000005"),
        ])

        stats = await make_task(client).run()

        assert stats["listed"] == 2
        assert sorted(client.detail_calls) == [1, 5]
        assert stored(session_factory)["00000001"].brand_name == "FIRST"

    @pytest.mark.asyncio
    async def test_unchanged_listing_is_skipped(self, make_task, state_store):
        """Same Content-Length within the full sync interval skips the run"""
        state_store.save(
            "dpd",
            DPDSyncState(
                last_sync_at=NOW - timedelta(days=1),
                drugs_count=2,
                last_content_length=1000,
                last_full_sync_at=NOW - timedelta(days=5),
            ),
        )
        client = FakeDPDClient([drug(1, "00000001")], size=1000)

        stats = await make_task(client).run()

        assert stats["skipped"] is True
        assert client.list_calls == 0
        state = state_store.load("dpd")
        assert state.last_sync_at == NOW
        assert state.last_full_sync_at == NOW - timedelta(days=5)

    @pytest.mark.asyncio
    async def test_old_full_sync_forces_refresh(self, make_task, state_store):
        """An unchanged listing is still re-read after the full sync interval"""
        state_store.save(
            "dpd",
            DPDSyncState(
                last_sync_at=NOW - timedelta(days=1),
                last_content_length=1000,
                last_full_sync_at=NOW - timedelta(days=31),
            ),
        )
        client = FakeDPDClient([drug(1, "00000001")], size=1000)

        stats = await make_task(client).run()

        assert stats["skipped"] is False
        assert client.list_calls == 1

    @pytest.mark.asyncio
    async def test_only_changed_drugs_refetched(self, make_task, session_factory):
        """Drugs whose last_update_date is unchanged are not re-fetched"""
        await make_task(FakeDPDClient([drug(1, "00000001"), drug(2, "00000002")], size=100)).run()

        client = FakeDPDClient(
            [drug(1, "00000001"), drug(2, "00000002", updated="2026-10-15"), drug(3, "00000003")],
            size=150,
        )
        stats = await make_task(client).run()

        assert stats["changed"] == 2
        assert sorted(client.detail_calls) == [2, 3]
        assert stored(session_factory)["00000002"].last_update_date == "2026-10-15"

    @pytest.mark.asyncio
    async def test_force_refetches_everything(self, make_task, state_store):
        listing = [drug(1, "00000001"), drug(2, "00000002")]
        await make_task(FakeDPDClient(listing, size=100)).run()

        client = FakeDPDClient(listing, size=100)
        stats = await make_task(client, force=True).run()

        assert stats["skipped"] is False
        assert stats["updated"] == 2

    @pytest.mark.asyncio
    async def test_detail_failure_counted_not_raised(self, make_task, session_factory):
        """A failing detail request is an error count, the rest still land"""
        client = FakeDPDClient([drug(1, "00000001"), drug(2, "00000002")], failing={2})

        stats = await make_task(client).run()

        assert stats["errors"] == 1
        assert stats["updated"] == 1
        assert list(stored(session_factory)) == ["00000001"]

    @pytest.mark.asyncio
    async def test_concurrency_limit(self, make_task):
        """Detail requests never exceed the configured concurrency"""
        in_flight = 0
        peak = 0

        class SlowClient(FakeDPDClient):
            async def drug_details(self, drug_code):
                nonlocal in_flight, peak
                in_flight += 1
                peak = max(peak, in_flight)
                await asyncio.sleep(0)
                in_flight -= 1
                return DPDDrugDetails()

        client = SlowClient([drug(i, f"{i:08d}") for i in range(1, 11)])

        stats = await make_task(client, concurrency=3).run()

        assert stats["updated"] == 10
        assert peak <= 3
