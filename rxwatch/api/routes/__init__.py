from rxwatch.api.routes.cron import router as cron_router
from rxwatch.api.routes.health import router as health_router
from rxwatch.api.routes.reports import router as reports_router

__all__ = ["cron_router", "health_router", "reports_router"]
