"""Application logging with Loguru.

Two kinds of sinks exist:
- application sinks (stdout and ``LOG_DIR/app.log``) for everything
- audit sinks, plain-text files that only receive records bound to them
  (used for the sync failure log)
"""

import logging
import sys
import uuid
from pathlib import Path
from typing import Any, Tuple

from loguru import logger

from rxwatch.core.config import settings

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | {extra[name]}:{function}:{line} | {message}"

AUDIT_KEY = "audit_sink"

LEVEL_ALIASES = {"WARN": "WARNING", "FATAL": "CRITICAL"}
KNOWN_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}

# Third-party loggers routed through Loguru
INTERCEPTED = ["uvicorn", "uvicorn.error", "uvicorn.access", "apscheduler"]

_logging_configured = False


class InterceptHandler(logging.Handler):
    """Redirect stdlib logs to Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_name == "emit":
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _normalize_level(value: str) -> str:
    level = (value or "INFO").strip().upper()
    level = LEVEL_ALIASES.get(level, level)
    return level if level in KNOWN_LEVELS else "INFO"


def _is_application_record(record: Any) -> bool:
    return AUDIT_KEY not in record["extra"]


def configure_logging() -> None:
    global _logging_configured

    if _logging_configured:
        return
    _logging_configured = True

    log_dir = Path(settings.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)
    level = _normalize_level(settings.effective_log_level)

    logger.remove()
    logger.configure(extra={"name": "rxwatch"})
    logger.add(
        sys.stdout,
        level=level,
        format=LOG_FORMAT,
        filter=_is_application_record,
        backtrace=False,
        diagnose=False,
    )
    logger.add(
        log_dir / "app.log",
        level=level,
        format=LOG_FORMAT,
        filter=_is_application_record,
        rotation="10 MB",
        retention="14 days",
        enqueue=True,
        backtrace=False,
        diagnose=False,
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for logger_name in INTERCEPTED:
        logging.getLogger(logger_name).handlers = [InterceptHandler()]
        logging.getLogger(logger_name).propagate = False

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def add_audit_sink(path: Path, *, max_bytes: int, backups: int) -> Tuple[Any, int]:
    """Open a size-rotated file that only receives messages from the returned logger.

    At most ``backups`` rotated files are kept next to the live one. Returns
    the bound logger and the sink id to pass to ``logger.remove``.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    sink_key = uuid.uuid4().hex
    sink_id = logger.add(
        path,
        format="{message}",
        level="INFO",
        filter=lambda record: record["extra"].get(AUDIT_KEY) == sink_key,
        rotation=max_bytes,
        retention=backups,
        encoding="utf-8",
    )
    return logger.bind(**{AUDIT_KEY: sink_key}), sink_id


def get_logger(name: str) -> logger.__class__:
    return logger.bind(name=name)


configure_logging()
