"""Error taxonomy for the ingestion pipeline.

Upstream errors carry a ``retryable`` flag that drives the backoff loops in
the API clients. Everything that is not retryable is terminal for the call
that raised it.
"""

from __future__ import annotations

from typing import Optional


class UpstreamError(Exception):
    """Base class for failures talking to an upstream data service."""

    retryable = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AuthFailure(UpstreamError):
    """Credentials rejected (401/403) or no token issued."""


class RateLimited(UpstreamError):
    """Upstream answered 429."""

    retryable = True


class TransientNetworkError(UpstreamError):
    """Timeout, aborted or reset connection."""

    retryable = True


class UpstreamServerError(UpstreamError):
    """Upstream answered with a 5xx status."""

    retryable = True


class UpstreamRequestError(UpstreamError):
    """Upstream rejected the request (4xx other than auth or rate limiting)."""


class MalformedResponse(UpstreamError):
    """Response body could not be parsed or did not match the expected shape."""


class AllCredentialsExhausted(UpstreamError):
    """Every configured credential failed; the client cannot continue."""


class NotificationDeliveryFailure(Exception):
    """A webhook notification could not be delivered."""
