"""Health Canada Drug Product Database (DPD) client.

The DPD API is public, so there is no session handling; calls are retried
with a linear backoff on transient failures.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from pydantic import ValidationError
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_incrementing

from rxwatch.core.config import settings
from rxwatch.core.errors import (
    MalformedResponse,
    TransientNetworkError,
    UpstreamError,
    UpstreamRequestError,
    UpstreamServerError,
)
from rxwatch.core.logging import get_logger
from rxwatch.ingestion.retry import is_retryable, log_before_sleep
from rxwatch.schemas.dpd import DPDDrug, DPDDrugDetails

log = get_logger("ingestion.dpd_client")

DRUG_LIST_PATH = "drugproduct/"


class DPDClient:
    def __init__(
        self,
        *,
        base_url: str = "https://health-products.canada.ca/api/drug",
        timeout: float = 60.0,
        max_attempts: int = 3,
        retry_step: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_attempts = max_attempts
        self._retry_step = retry_step
        self._sleep = sleep
        self._http = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls, **kwargs: Any) -> "DPDClient":
        options: Dict[str, Any] = {"base_url": settings.DPD_API_URL, "timeout": settings.DPD_TIMEOUT_SECONDS}
        options.update(kwargs)
        return cls(**options)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def fetch_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_incrementing(start=self._retry_step, increment=self._retry_step),
            retry=retry_if_exception(is_retryable),
            before_sleep=log_before_sleep(f"DPD {path}"),
            sleep=self._sleep,
            reraise=True,
        )
        return await retrying(self._fetch_once, path, params or {})

    async def _fetch_once(self, path: str, params: Dict[str, Any]) -> Any:
        try:
            response = await self._http.get(path, params=params)
        except httpx.TimeoutException as exc:
            raise TransientNetworkError(f"Timed out calling DPD {path}") from exc
        except httpx.TransportError as exc:
            raise TransientNetworkError(f"Network error calling DPD {path}: {exc}") from exc

        if response.status_code >= 500:
            raise UpstreamServerError(f"DPD request failed: {path} - {response.status_code}", response.status_code)
        if not response.is_success:
            raise UpstreamRequestError(f"DPD request failed: {path} - {response.status_code}", response.status_code)
        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponse(f"JSON parse error for DPD {path}: {exc}") from exc

    async def drug_list_size(self) -> Optional[int]:
        """Content-Length of the full drug listing, or None if unavailable.

        The server only reports a length for uncompressed responses.
        """
        try:
            response = await self._http.head(DRUG_LIST_PATH, headers={"Accept-Encoding": "identity"})
        except httpx.HTTPError as exc:
            log.warning(f"HEAD {DRUG_LIST_PATH} failed: {exc}")
            return None
        length = response.headers.get("content-length")
        if not response.is_success or not length or not length.isdigit():
            return None
        return int(length)

    async def list_drugs(self) -> List[DPDDrug]:
        payload = await self.fetch_json(DRUG_LIST_PATH)
        if not isinstance(payload, list):
            raise MalformedResponse("DPD drug list is not a JSON array")
        try:
            return [DPDDrug.model_validate(item) for item in payload]
        except ValidationError as exc:
            raise MalformedResponse(f"Unexpected DPD drug list entry: {exc}") from exc

    async def drug_details(self, drug_code: int) -> DPDDrugDetails:
        """Fetch the per-drug detail endpoints; an unavailable one yields an empty value."""
        params = {"id": drug_code}
        ingredients, forms, routes, therapeutics, status = await asyncio.gather(
            self._optional("activeingredient/", params),
            self._optional("form/", params),
            self._optional("route/", params),
            self._optional("therapeuticclass/", params),
            self._optional("status/", params),
        )
        if isinstance(status, list):
            status = status[0] if status else None
        return DPDDrugDetails(
            ingredients=ingredients if isinstance(ingredients, list) else [],
            forms=forms if isinstance(forms, list) else [],
            routes=routes if isinstance(routes, list) else [],
            therapeutics=therapeutics if isinstance(therapeutics, list) else [],
            status=status if isinstance(status, dict) else None,
        )

    async def _optional(self, path: str, params: Dict[str, Any]) -> Any:
        try:
            return await self.fetch_json(path, params)
        except UpstreamError as exc:
            log.debug(f"DPD {path} unavailable for {params}: {exc}")
            return None
