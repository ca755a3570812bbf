"""Per-client rate limiting for /api routes."""

from fastapi import Request
from fastapi.responses import JSONResponse

from rxwatch.core.logging import get_logger
from rxwatch.core.rate_limit import SlidingWindowRateLimiter

log = get_logger("rate_limit")

API_PREFIX = "/api/"
EXEMPT_PATHS = frozenset({"/api/health"})


def client_identifier(request: Request) -> str:
    """First X-Forwarded-For hop, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


class RateLimitMiddleware:
    def __init__(self, limiter: SlidingWindowRateLimiter):
        self.limiter = limiter

    async def __call__(self, request: Request, call_next):
        path = request.url.path
        if not path.startswith(API_PREFIX) or path.rstrip("/") in EXEMPT_PATHS:
            return await call_next(request)

        identifier = client_identifier(request)
        result = self.limiter.hit(identifier)
        headers = {
            "X-RateLimit-Limit": str(result.max_requests),
            "X-RateLimit-Remaining": str(result.remaining),
        }

        if not result.allowed:
            log.warning(f"Rate limit exceeded for {identifier} on {path}")
            return JSONResponse(
                status_code=429,
                content={"error": "Too many requests. Please try again later."},
                headers={**headers, "Retry-After": str(result.retry_after)},
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response
