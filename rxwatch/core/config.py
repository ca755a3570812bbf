from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from rxwatch.schemas.dsc import DSCCredential


class Settings(BaseSettings):
    # Environment mode: dev or prod
    ENV: Literal["dev", "prod"] = "dev"

    # Database
    DATABASE_URL: str

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"

    # Drug Shortages Canada API
    DSC_API_URL: str = "https://www.drugshortagescanada.ca/api/v1"
    DSC_ACCOUNTS: list[DSCCredential] = []  # JSON list of {"email", "password"}
    DSC_TIMEOUT_SECONDS: float = 60.0
    DSC_MAX_ATTEMPTS: int = 3
    DSC_LOGIN_ATTEMPTS: int = 3
    DSC_BACKOFF_BASE_SECONDS: float = 1.0
    DSC_BACKOFF_MAX_SECONDS: float = 30.0
    DSC_BACKOFF_JITTER_SECONDS: float = 1.0

    # Health Canada Drug Product Database
    DPD_API_URL: str = "https://health-products.canada.ca/api/drug"
    DPD_TIMEOUT_SECONDS: float = 60.0
    DPD_CONCURRENCY: int = 20

    # Sync scheduling (cron syntax)
    SYNC_ENABLED: bool = True
    DSC_SCHEDULE: str = "*/15 * * * *"  # every 15 minutes
    DPD_SCHEDULE: str = "0 4 * * *"  # daily at 4am
    SCHEDULE_TIMEZONE: str = "America/Toronto"
    SYNC_RETRY_DELAY_SECONDS: float = 5 * 60
    SYNC_STATE_DIR: str = ".sync-state"

    # Failure notifications
    NOTIFY_WEBHOOK_URL: str | None = None
    AUDIT_LOG_MAX_BYTES: int = 10 * 1024 * 1024  # 10 MB
    AUDIT_LOG_BACKUPS: int = 3

    # Inbound API rate limiting (per client IP)
    RATE_LIMIT_REQUESTS: int = 120
    RATE_LIMIT_WINDOW_SECONDS: float = 60.0

    # Shared secret for manual sync triggers
    CRON_SECRET: str | None = None

    # Docs Configuration
    DOCS_ENABLED: bool | None = None  # Override docs setting (None = auto based on ENV)

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",  # ignore unrelated keys in local .env
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENV == "prod"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENV == "dev"

    @property
    def debug_enabled(self) -> bool:
        """Debug mode is only enabled in development."""
        return self.is_development

    @property
    def effective_log_level(self) -> str:
        """Return appropriate log level based on environment."""
        if self.is_production:
            # In production, minimum INFO level (ignore DEBUG)
            return self.LOG_LEVEL if self.LOG_LEVEL.upper() != "DEBUG" else "INFO"
        return self.LOG_LEVEL

    @property
    def docs_enabled(self) -> bool:
        """Swagger/ReDoc docs enabled based on environment or override."""
        if self.DOCS_ENABLED is not None:
            return self.DOCS_ENABLED
        return self.is_development

    @property
    def schedules(self) -> dict[str, str]:
        """Cron expression per sync job id."""
        return {"dsc": self.DSC_SCHEDULE, "dpd": self.DPD_SCHEDULE}


settings = Settings()
