"""
rate_limit.py — Per-IP fixed-window request limits
==================================================
Uses slowapi with in-memory, fixed-window storage: every client IP gets a
counter and a reset timestamp, and the count resets entirely at the window
boundary. Counters live in process memory and start empty after a restart.

Two tiers:
  • api  – 100 requests / 15 minutes (default for every route)
  • auth – 5 attempts / 15 minutes (login, signup, password reset)

`RateLimiter` exposes the same fixed window for programmatic checks
outside a route decorator (e.g. per-user two-factor attempts).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from limits import parse
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter
from slowapi import Limiter
from starlette.requests import Request

from .config import settings


def client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, else the socket peer, else 'unknown'."""
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


API_LIMIT = settings.api_rate_limit
AUTH_LIMIT = settings.auth_rate_limit

limiter = Limiter(
    key_func=client_ip,
    default_limits=[API_LIMIT],
    storage_uri="memory://",
    strategy="fixed-window",
    enabled=settings.rate_limit_enabled,
)


@dataclass
class RateLimitResult:
    success: bool
    remaining: int
    reset_time: Optional[float] = None  # epoch seconds, set when refused


class RateLimiter:
    """Fixed-window counter keyed by an arbitrary string."""

    def __init__(self, limit: str, namespace: str = "default"):
        self.limit = parse(limit)
        self.namespace = namespace
        self._storage = MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self._storage)

    def check(self, key: str) -> RateLimitResult:
        if not self._strategy.hit(self.limit, self.namespace, key):
            stats = self._strategy.get_window_stats(self.limit, self.namespace, key)
            return RateLimitResult(success=False, remaining=0, reset_time=stats.reset_time)
        stats = self._strategy.get_window_stats(self.limit, self.namespace, key)
        return RateLimitResult(success=True, remaining=stats.remaining)

    def reset(self) -> None:
        self._storage.reset()
