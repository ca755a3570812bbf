from pathlib import Path
from contextlib import asynccontextmanager

from alembic import command
from alembic.config import Config
from fastapi import FastAPI

from rxwatch.api.middleware import RateLimitMiddleware
from rxwatch.api.routes import cron_router, health_router, reports_router
from rxwatch.core.config import settings
from rxwatch.core.db import SessionLocal
from rxwatch.core.logging import get_logger
from rxwatch.core.rate_limit import SlidingWindowRateLimiter
from rxwatch.services.pipeline import build_orchestrator


log = get_logger("app")


def run_migrations() -> None:
    """Execute Alembic migrations programmatically on startup."""
    project_root = Path(__file__).resolve().parent.parent
    alembic_cfg = Config(str(project_root / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(project_root / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", settings.DATABASE_URL)
    alembic_cfg.attributes["configure_logger"] = False
    log.info("Running Alembic migrations to head")
    command.upgrade(alembic_cfg, "head")
    log.info("Alembic migrations applied")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Log environment mode
    log.info(f"Starting application in {settings.ENV.upper()} mode")
    if settings.is_production:
        log.info("Production mode: Debug disabled, docs disabled, stricter logging")
    else:
        log.info("Development mode: Debug enabled, docs available")

    # Startup
    try:
        run_migrations()
    except Exception:
        log.exception("Failed to apply migrations on startup")
        raise

    orchestrator = build_orchestrator(SessionLocal)
    app.state.orchestrator = orchestrator

    if settings.SYNC_ENABLED:
        log.info("Starting sync scheduler...")
        orchestrator.start()
    else:
        log.info("Scheduled sync is disabled (SYNC_ENABLED=false)")

    yield

    # Shutdown
    log.info("Shutting down services...")
    await orchestrator.shutdown()
    app.state.orchestrator = None
    log.info("Application shutdown complete")


def create_app(use_lifespan: bool = True) -> FastAPI:
    application = FastAPI(
        title="RxWatch Sync",
        description="Drug shortage ingestion pipeline for Drug Shortages Canada and the Drug Product Database",
        version="1.0.0",
        lifespan=lifespan if use_lifespan else None,
        # Disable docs in production for security
        docs_url="/docs" if settings.docs_enabled else None,
        redoc_url="/redoc" if settings.docs_enabled else None,
        openapi_url="/openapi.json" if settings.docs_enabled else None,
        # Debug mode only in development
        debug=settings.debug_enabled,
    )

    application.state.orchestrator = None
    application.state.rate_limiter = SlidingWindowRateLimiter.from_settings()
    application.middleware("http")(RateLimitMiddleware(application.state.rate_limiter))

    application.include_router(health_router)
    application.include_router(cron_router)
    application.include_router(reports_router)
    return application


app = create_app()
