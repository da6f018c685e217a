import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass

from ogpreview.config.settings import settings
from ogpreview.modules.rate_limiter.schemas import RateLimitDecision

logger = logging.getLogger(__name__)

UNKNOWN_CLIENT = "unknown"


@dataclass
class _Window:
    count: int
    reset_at: float


def client_id_from_headers(headers: Mapping[str, str]) -> str:
    """Identify a client behind proxies: X-Forwarded-For, X-Real-IP, CF-Connecting-IP."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return headers.get("x-real-ip") or headers.get("cf-connecting-ip") or UNKNOWN_CLIENT


class RateLimiterService:
    """Fixed-window, per-client request counter kept in process memory."""

    def __init__(self, window_seconds: float | None = None, max_requests: int | None = None) -> None:
        self.window_seconds = window_seconds or settings.rate_limit_window_seconds
        self.max_requests = max_requests or settings.rate_limit_max_requests
        self._windows: dict[str, _Window] = {}

    def check(self, client_id: str, now: float | None = None) -> RateLimitDecision:
        now = time.time() if now is None else now
        window = self._windows.get(client_id)

        if window is None or now >= window.reset_at:
            window = _Window(count=1, reset_at=now + self.window_seconds)
            self._windows[client_id] = window
        else:
            window.count += 1

        allowed = window.count <= self.max_requests
        if not allowed:
            logger.warning("Rate limit exceeded for %s", client_id)
        return RateLimitDecision(
            allowed=allowed,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - window.count),
            reset_at=window.reset_at,
        )

    def sweep(self, now: float | None = None) -> int:
        """Drop expired windows; returns how many were removed."""
        now = time.time() if now is None else now
        expired = [key for key, window in self._windows.items() if now >= window.reset_at]
        for key in expired:
            del self._windows[key]
        if expired:
            logger.debug("Swept %d expired rate-limit windows", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._windows)


rate_limiter_service = RateLimiterService()
