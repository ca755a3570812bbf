"""Inbound rate limiting tests"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from rxwatch.api.middleware import RateLimitMiddleware
from rxwatch.core.rate_limit import SlidingWindowRateLimiter


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestSlidingWindow:
    """Sliding-window admission"""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    def test_admits_up_to_limit(self, clock):
        """The N+1th request inside the window is rejected"""
        limiter = SlidingWindowRateLimiter(max_requests=3, window_seconds=60, clock=clock)

        results = [limiter.hit("1.2.3.4") for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert results[2].remaining == 0
        assert results[3].retry_after == 60

    def test_resumes_after_window(self, clock):
        """Requests are admitted again once old ones leave the window"""
        limiter = SlidingWindowRateLimiter(max_requests=2, window_seconds=60, clock=clock)
        limiter.hit("a")
        clock.now += 30
        limiter.hit("a")
        assert not limiter.hit("a").allowed

        clock.now += 30
        result = limiter.hit("a")
        assert result.allowed
        assert result.current_count == 2

    def test_retry_after_tracks_oldest_request(self, clock):
        """Retry-After is the time until the oldest request expires"""
        limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=60, clock=clock)
        limiter.hit("a")
        clock.now += 45

        assert limiter.hit("a").retry_after == 15

    def test_request_one_window_old_has_expired(self, clock):
        """The window is half-open: a request exactly one window old no longer counts"""
        limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=60, clock=clock)
        limiter.hit("a")

        clock.now += 59.999
        assert not limiter.hit("a").allowed
        clock.now += 0.001
        result = limiter.hit("a")
        assert result.allowed
        assert result.current_count == 1

    def test_reset_forgets_all_identifiers(self, clock):
        limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=60, clock=clock)
        limiter.hit("a")
        limiter.reset()

        assert limiter.tracked_identifiers() == 0
        assert limiter.hit("a").allowed

    def test_identifiers_are_independent(self, clock):
        """One client exhausting its budget does not affect another"""
        limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=60, clock=clock)
        assert limiter.hit("a").allowed
        assert not limiter.hit("a").allowed
        assert limiter.hit("b").allowed

    def test_idle_identifiers_are_collected(self, clock):
        """Identifiers idle for a full window are dropped on the next sweep"""
        limiter = SlidingWindowRateLimiter(max_requests=5, window_seconds=60, gc_interval_seconds=60, clock=clock)
        for ip in ("a", "b", "c"):
            limiter.hit(ip)
        assert limiter.tracked_identifiers() == 3

        clock.now += 61
        limiter.hit("d")
        assert limiter.tracked_identifiers() == 1

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            SlidingWindowRateLimiter(max_requests=0)
        with pytest.raises(ValueError):
            SlidingWindowRateLimiter(window_seconds=0)


class TestRateLimitMiddleware:
    """Middleware applied to /api routes"""

    @pytest.fixture
    def client(self):
        app = FastAPI()
        limiter = SlidingWindowRateLimiter(max_requests=2, window_seconds=60)
        app.middleware("http")(RateLimitMiddleware(limiter))

        @app.get("/api/reports")
        def reports():
            return {"ok": True}

        @app.get("/api/health")
        def health():
            return {"ok": True}

        @app.get("/other")
        def other():
            return {"ok": True}

        return TestClient(app)

    def test_rejects_with_429(self, client):
        """Third request from the same IP is rejected with Retry-After"""
        headers = {"X-Forwarded-For": "10.0.0.1, 172.16.0.1"}
        assert client.get("/api/reports", headers=headers).status_code == 200
        assert client.get("/api/reports", headers=headers).status_code == 200

        response = client.get("/api/reports", headers=headers)
        assert response.status_code == 429
        assert response.json() == {"error": "Too many requests. Please try again later."}
        assert int(response.headers["Retry-After"]) > 0

    def test_keys_by_first_forwarded_hop(self, client):
        """Different client IPs behind the same proxy get separate budgets"""
        for _ in range(2):
            client.get("/api/reports", headers={"X-Forwarded-For": "10.0.0.1"})

        response = client.get("/api/reports", headers={"X-Forwarded-For": "10.0.0.2"})
        assert response.status_code == 200
        assert response.headers["X-RateLimit-Remaining"] == "1"

    def test_real_ip_header(self, client):
        """X-Real-IP is used when there is no X-Forwarded-For"""
        for _ in range(2):
            client.get("/api/reports", headers={"X-Real-IP": "10.0.0.9"})
        assert client.get("/api/reports", headers={"X-Real-IP": "10.0.0.9"}).status_code == 429

    def test_health_is_exempt(self, client):
        """Health checks are never limited"""
        for _ in range(5):
            assert client.get("/api/health").status_code == 200

    def test_non_api_paths_are_exempt(self, client):
        for _ in range(5):
            assert client.get("/other").status_code == 200
