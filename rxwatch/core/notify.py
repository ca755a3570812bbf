"""Failure notifications for sync jobs.

Every failure is appended to a rotating audit log (``logs/cron-errors.log``)
and, when ``NOTIFY_WEBHOOK_URL`` is set, posted to a Discord/Slack webhook.
Delivery problems are recorded in the audit log and never raised to the
caller.
"""

from __future__ import annotations

import asyncio
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Literal, Mapping, Optional

import httpx
from loguru import logger
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt

from rxwatch.core.config import settings
from rxwatch.core.errors import NotificationDeliveryFailure
from rxwatch.core.logging import add_audit_sink, get_logger

log = get_logger("notify")

AUDIT_DETAILS_LIMIT = 2000
WEBHOOK_DETAILS_LIMIT = 1000
TRUNCATION_MARKER = "\n... (truncated)"

ERROR_COLOR = 0xFF0000
SUCCESS_COLOR = 0x00FF00


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class NotificationEvent:
    job: str
    outcome: Literal["success", "error"]
    message: str
    details: Optional[str] = None
    timestamp: str = field(default_factory=_utc_timestamp)

    def audit_line(self) -> str:
        line = f"[{self.timestamp}] {self.job} {self.outcome.upper()}: {self.message}"
        if self.details:
            line += f"\n  {self.details[:AUDIT_DETAILS_LIMIT]}"
        return line


def build_webhook_payload(event: NotificationEvent) -> Dict[str, Any]:
    """Discord embed plus a Slack-compatible ``text`` field."""
    failed = event.outcome == "error"
    emoji = "\U0001F6A8" if failed else "\u2705"
    title = f"{emoji} RxWatch Sync: {event.job}"

    details = event.details or ""
    if len(details) > WEBHOOK_DETAILS_LIMIT:
        details = details[:WEBHOOK_DETAILS_LIMIT] + TRUNCATION_MARKER

    return {
        "text": f"{title}\n{event.message}",
        "embeds": [
            {
                "title": title,
                "description": event.message,
                "color": ERROR_COLOR if failed else SUCCESS_COLOR,
                "fields": [{"name": "Details", "value": details}] if details else [],
                "timestamp": event.timestamp,
            }
        ],
    }


class Notifier:
    """Audit log writer and webhook dispatcher shared by all sync jobs."""

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        *,
        log_dir: str = "logs",
        log_name: str = "cron-errors.log",
        max_bytes: int = 10 * 1024 * 1024,
        backups: int = 3,
        attempts: int = 3,
        backoff_base: float = 1.0,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.webhook_url = webhook_url
        self.attempts = attempts
        self.backoff_base = backoff_base
        self._sleep = sleep
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)

        self.audit_path = Path(log_dir) / log_name
        # Each notifier gets its own sink so parallel instances stay separate
        self._audit, self._sink_id = add_audit_sink(self.audit_path, max_bytes=max_bytes, backups=backups)

    @classmethod
    def from_settings(cls, **kwargs: Any) -> "Notifier":
        options: Dict[str, Any] = {
            "log_dir": settings.LOG_DIR,
            "max_bytes": settings.AUDIT_LOG_MAX_BYTES,
            "backups": settings.AUDIT_LOG_BACKUPS,
        }
        options.update(kwargs)
        return cls(settings.NOTIFY_WEBHOOK_URL, **options)

    async def aclose(self) -> None:
        await self._http.aclose()
        if self._sink_id is not None:
            logger.remove(self._sink_id)
            self._sink_id = None

    async def record_failure(self, job: str, message: str, details: Optional[str] = None) -> bool:
        """Audit and dispatch a failure. Returns False only if the webhook could not be delivered.

        Never raises: audit and delivery problems are logged and reported
        through the return value.
        """
        event = NotificationEvent(job=job, outcome="error", message=message, details=details)
        self._write_audit(event.audit_line())
        log.error(f"{job} failed: {message}")

        if not self.webhook_url:
            return True
        try:
            await self._deliver(build_webhook_payload(event))
        except NotificationDeliveryFailure as exc:
            log.error(f"Webhook notification for {job} failed after {self.attempts} attempts: {exc}")
        except Exception as exc:  # noqa: BLE001
            log.opt(exception=exc).error(f"Webhook notification for {job} could not be sent: {exc!r}")
        else:
            return True
        self._write_audit(f"[{_utc_timestamp()}] WEBHOOK_FAILURE: Failed to send notification for {job}")
        return False

    def _write_audit(self, line: str) -> None:
        try:
            self._audit.info(line)
        except Exception as exc:  # noqa: BLE001
            log.error(f"Failed to write audit log {self.audit_path}: {exc}")

    async def record_error(self, job: str, exc: BaseException) -> bool:
        details = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return await self.record_failure(job, str(exc) or type(exc).__name__, details)

    def record_success(self, job: str, stats: Optional[Mapping[str, Any]] = None) -> None:
        summary = ", ".join(f"{key}: {value}" for key, value in (stats or {}).items())
        log.info(f"{job} SUCCESS: {summary}")

    async def _deliver(self, payload: Dict[str, Any]) -> None:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=self._wait,
            retry=retry_if_exception_type(NotificationDeliveryFailure),
            sleep=self._sleep,
            reraise=True,
        )
        await retrying(self._post_once, payload)

    def _wait(self, retry_state: RetryCallState) -> float:
        # attempt_number is 1-based: the first resend waits base * 2
        return self.backoff_base * (2**retry_state.attempt_number)

    async def _post_once(self, payload: Dict[str, Any]) -> None:
        try:
            response = await self._http.post(self.webhook_url, json=payload)
        except httpx.HTTPError as exc:
            log.warning(f"Webhook notification error: {exc}")
            raise NotificationDeliveryFailure(str(exc)) from exc
        if not response.is_success:
            log.warning(f"Webhook notification failed: HTTP {response.status_code}")
            raise NotificationDeliveryFailure(f"HTTP {response.status_code}")
