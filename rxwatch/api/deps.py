"""API dependencies"""

from typing import Generator

from fastapi import HTTPException, Request
from sqlalchemy.orm import Session

from rxwatch.core.db import SessionLocal
from rxwatch.services.orchestrator import SyncOrchestrator


def get_db() -> Generator[Session, None, None]:
    """Database dependency"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_orchestrator(request: Request) -> SyncOrchestrator:
    """Orchestrator built during application startup"""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Sync pipeline is not initialized")
    return orchestrator
