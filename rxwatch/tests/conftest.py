"""Shared fixtures: in-memory database, fake upstream payloads, instant sleeps"""

import os
import tempfile

# Settings are read at import time, so the test environment must exist first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_DIR"] = tempfile.mkdtemp(prefix="rxwatch-logs-")
os.environ["SYNC_ENABLED"] = "false"
os.environ["DSC_ACCOUNTS"] = "[]"
os.environ["NOTIFY_WEBHOOK_URL"] = ""
os.environ["CRON_SECRET"] = "test-secret"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from rxwatch.models import Base
from rxwatch.schemas.dsc import DSCCredential


@pytest.fixture
def engine():
    """In-memory SQLite shared across connections"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def credentials():
    return [
        DSCCredential(email="first@example.com", password="pw-1"),
        DSCCredential(email="second@example.com", password="pw-2"),
        DSCCredential(email="third@example.com", password="pw-3"),
    ]


class SleepRecorder:
    """Async sleep replacement that records delays instead of waiting"""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def sleeper():
    return SleepRecorder()


def make_report(report_id, status="active_confirmed", kind="shortage", updated="2026-10-18T12:00:00Z", **extra):
    """DSC report payload as returned by /search and /shortages/{id}"""
    payload = {
        "id": report_id,
        "din": f"{report_id:08d}",
        "type": {"id": 1 if kind == "shortage" else 2, "label": kind},
        "status": status,
        "company_name": "ACME PHARMA",
        "created_date": "2026-10-01T08:00:00Z",
        "updated_date": updated,
        "en_drug_brand_name": f"DRUG {report_id}",
    }
    payload.update(extra)
    return payload
