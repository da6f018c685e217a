"""Tests for the in-memory fixed-window rate limiter."""

from __future__ import annotations

from ogpreview.modules.rate_limiter.service import (
    UNKNOWN_CLIENT,
    RateLimiterService,
    client_id_from_headers,
)


class TestClientId:
    def test_first_forwarded_for_entry(self) -> None:
        headers = {"x-forwarded-for": "203.0.113.7, 10.0.0.1", "x-real-ip": "198.51.100.2"}
        assert client_id_from_headers(headers) == "203.0.113.7"

    def test_falls_back_to_real_ip_then_cloudflare(self) -> None:
        assert client_id_from_headers({"x-real-ip": "198.51.100.2"}) == "198.51.100.2"
        assert client_id_from_headers({"cf-connecting-ip": "192.0.2.9"}) == "192.0.2.9"

    def test_unknown_client(self) -> None:
        assert client_id_from_headers({}) == UNKNOWN_CLIENT


class TestRateLimiter:
    def test_allows_up_to_the_limit(self) -> None:
        limiter = RateLimiterService(window_seconds=60, max_requests=3)

        decisions = [limiter.check("client", now=1000.0) for _ in range(4)]

        assert [d.allowed for d in decisions] == [True, True, True, False]
        assert [d.remaining for d in decisions] == [2, 1, 0, 0]
        assert decisions[0].reset_at == 1060.0

    def test_clients_are_counted_separately(self) -> None:
        limiter = RateLimiterService(window_seconds=60, max_requests=1)

        assert limiter.check("a", now=0.0).allowed
        assert limiter.check("b", now=0.0).allowed
        assert not limiter.check("a", now=1.0).allowed

    def test_window_resets(self) -> None:
        limiter = RateLimiterService(window_seconds=60, max_requests=1)

        limiter.check("client", now=0.0)
        assert not limiter.check("client", now=59.0).allowed
        assert limiter.check("client", now=60.0).allowed

    def test_headers(self) -> None:
        limiter = RateLimiterService(window_seconds=60, max_requests=5)

        decision = limiter.check("client", now=100.2)

        assert decision.headers == {
            "X-RateLimit-Limit": "5",
            "X-RateLimit-Remaining": "4",
            "X-RateLimit-Reset": "161",
        }

    def test_sweep_drops_expired_windows(self) -> None:
        limiter = RateLimiterService(window_seconds=60, max_requests=5)
        limiter.check("old", now=0.0)
        limiter.check("fresh", now=50.0)

        removed = limiter.sweep(now=70.0)

        assert removed == 1
        assert len(limiter) == 1
