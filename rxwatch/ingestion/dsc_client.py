"""Drug Shortages Canada API client.

Features:
- Pool of accounts; rotation on 401/403/429 without spending a retry
- Exponential backoff with jitter on 5xx, timeouts and network errors
- Typed report responses (unknown fields preserved)

API docs: https://www.drugshortagescanada.ca/blog/52
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt

from rxwatch.core.config import settings
from rxwatch.core.errors import (
    AllCredentialsExhausted,
    AuthFailure,
    MalformedResponse,
    RateLimited,
    TransientNetworkError,
    UpstreamError,
    UpstreamRequestError,
    UpstreamServerError,
)
from rxwatch.core.logging import get_logger
from rxwatch.ingestion.retry import exponential_wait, is_retryable, log_before_sleep
from rxwatch.schemas.dsc import DSCCredential, DSCReport, DSCSearchResponse, ReportKind, ReportQuery

log = get_logger("ingestion.dsc_client")

# Statuses answered by switching to another account and re-sending at once
ROTATE_STATUSES = frozenset({401, 403, 429})

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass(frozen=True)
class Session:
    token: str
    credential_index: int


class DSCClient:
    """Authenticated access to the DSC API for one process.

    Session state (token and credential index) is shared by every caller of
    the instance; all changes to it happen under ``self._lock``.
    """

    def __init__(
        self,
        credentials: Sequence[DSCCredential],
        *,
        base_url: str = "https://www.drugshortagescanada.ca/api/v1",
        timeout: float = 60.0,
        max_attempts: int = 3,
        login_attempts: int = 3,
        backoff_base: float = 1.0,
        backoff_max: float = 30.0,
        backoff_jitter: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if not credentials:
            raise ValueError("At least one DSC account is required")
        self._credentials: List[DSCCredential] = list(credentials)
        self._index = 0
        self._session: Optional[Session] = None
        # Credential index a run of rotations started from
        self._rotation_origin: Optional[int] = None
        self._lock = asyncio.Lock()

        self.max_attempts = max_attempts
        self.login_attempts = login_attempts
        self._wait = exponential_wait(backoff_base, backoff_max, backoff_jitter)
        self._sleep = sleep
        self._http = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls, **kwargs: Any) -> "DSCClient":
        options: Dict[str, Any] = {
            "base_url": settings.DSC_API_URL,
            "timeout": settings.DSC_TIMEOUT_SECONDS,
            "max_attempts": settings.DSC_MAX_ATTEMPTS,
            "login_attempts": settings.DSC_LOGIN_ATTEMPTS,
            "backoff_base": settings.DSC_BACKOFF_BASE_SECONDS,
            "backoff_max": settings.DSC_BACKOFF_MAX_SECONDS,
            "backoff_jitter": settings.DSC_BACKOFF_JITTER_SECONDS,
        }
        options.update(kwargs)
        return cls(settings.DSC_ACCOUNTS, **options)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "DSCClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # -------------------------------------------------------------------------
    # Session management
    # -------------------------------------------------------------------------
    @property
    def current_account(self) -> str:
        return self._credentials[self._index].email

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def account_count(self) -> int:
        return len(self._credentials)

    @property
    def session(self) -> Optional[Session]:
        return self._session

    async def login(self, start_index: Optional[int] = None) -> str:
        """Authenticate, trying each account once starting at ``start_index``."""
        async with self._lock:
            return await self._login(self._index if start_index is None else start_index)

    async def rotate_account(self) -> str:
        """Switch to the next account and authenticate with it."""
        async with self._lock:
            return await self._rotate()

    async def _login(self, start_index: int, stop_index: Optional[int] = None) -> str:
        count = len(self._credentials)
        if not 0 <= start_index < count:
            raise ValueError(f"No account at index {start_index}")

        failures: List[str] = []
        for offset in range(count):
            index = (start_index + offset) % count
            if index == stop_index:
                break
            credential = self._credentials[index]
            try:
                token = await self._retrying(self.login_attempts, f"login {credential.email}")(
                    self._login_once, credential
                )
            except UpstreamError as exc:
                log.warning(f"Login failed for {credential.email}: {exc}")
                failures.append(f"{credential.email}: {exc}")
                continue

            self._session = Session(token=token, credential_index=index)
            self._index = index
            log.info(f"Logged in to DSC as {credential.email}")
            return token

        self._session = None
        raise AllCredentialsExhausted(f"All DSC accounts failed to log in ({'; '.join(failures)})")

    async def _login_once(self, credential: DSCCredential) -> str:
        response = await self._send(
            "POST",
            "login",
            data={"email": credential.email, "password": credential.password.get_secret_value()},
        )
        if not response.is_success:
            raise self._status_error(response, f"login for {credential.email}")
        token = response.headers.get("auth-token")
        if not token:
            raise AuthFailure(f"No auth-token received for {credential.email}")
        return token

    async def _rotate(self) -> str:
        if self._rotation_origin is None:
            self._rotation_origin = self._index
        next_index = (self._index + 1) % len(self._credentials)
        if next_index == self._rotation_origin:
            self._rotation_origin = None
            self._session = None
            raise AllCredentialsExhausted("All DSC accounts exhausted by rotation")
        log.warning(f"Rotating DSC account away from {self.current_account}")
        try:
            return await self._login(next_index, stop_index=self._rotation_origin)
        except AllCredentialsExhausted:
            self._rotation_origin = None
            raise

    async def _ensure_session(self) -> Session:
        async with self._lock:
            if self._session is None:
                # A fresh login starts a new rotation streak
                self._rotation_origin = None
                await self._login(self._index)
            return self._session

    async def _rotate_from(self, stale: Session) -> Session:
        async with self._lock:
            # Another caller already replaced the token this call was rejected with
            if self._session is None or self._session.token == stale.token:
                await self._rotate()
            return self._session

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------
    async def request(self, path: str, params: Optional[Dict[str, str]] = None) -> Any:
        """Authenticated GET returning the decoded JSON body."""
        return await self._retrying(self.max_attempts, f"GET {path}")(self._request_once, path, params or {})

    async def _request_once(self, path: str, params: Dict[str, str]) -> Any:
        session = await self._ensure_session()
        response = await self._get(path, params, session)

        if response.status_code in ROTATE_STATUSES:
            log.warning(f"DSC returned {response.status_code} for {path}; rotating account")
            session = await self._rotate_from(session)
            response = await self._get(path, params, session)

        if not response.is_success:
            raise self._status_error(response, path)

        async with self._lock:
            self._rotation_origin = None
        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponse(f"JSON parse error for {path}: {exc}", response.status_code) from exc

    async def _get(self, path: str, params: Dict[str, str], session: Session) -> httpx.Response:
        return await self._send("GET", path, params=params, headers={"auth-token": session.token})

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._http.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransientNetworkError(f"Timed out calling {path}") from exc
        except httpx.TransportError as exc:
            raise TransientNetworkError(f"Network error calling {path}: {exc}") from exc

    def _retrying(self, attempts: int, label: str) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=self._wait,
            retry=retry_if_exception(is_retryable),
            before_sleep=log_before_sleep(label),
            sleep=self._sleep,
            reraise=True,
        )

    @staticmethod
    def _status_error(response: httpx.Response, what: str) -> UpstreamError:
        status = response.status_code
        message = f"DSC request failed: {what} - {status}"
        if status == 429:
            return RateLimited(message, status)
        if status in (401, 403):
            return AuthFailure(message, status)
        if status >= 500:
            return UpstreamServerError(message, status)
        return UpstreamRequestError(message, status)

    @staticmethod
    def _validate(model: Type[ModelT], payload: Any, path: str) -> ModelT:
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            raise MalformedResponse(f"Unexpected response shape for {path}: {exc}") from exc

    # -------------------------------------------------------------------------
    # Endpoints
    # -------------------------------------------------------------------------
    async def search(self, query: Optional[ReportQuery] = None) -> DSCSearchResponse:
        """Search reports with pagination."""
        payload = await self.request("search", (query or ReportQuery()).to_params())
        return self._validate(DSCSearchResponse, payload, "search")

    async def get_shortage(self, report_id: int) -> DSCReport:
        path = f"shortages/{report_id}"
        return self._validate(DSCReport, await self.request(path), path)

    async def get_discontinuance(self, report_id: int) -> DSCReport:
        path = f"discontinuances/{report_id}"
        return self._validate(DSCReport, await self.request(path), path)

    async def get_report(self, report_id: int, kind: ReportKind) -> DSCReport:
        if kind == "shortage":
            return await self.get_shortage(report_id)
        return await self.get_discontinuance(report_id)
