"""
Fixed-window rate limiter for authentication endpoints.

Process-local counterpart of a Redis counter with expiry: each
(client, scope) pair gets ``limit`` requests per window. Counters live in a
``TTLCacheStore`` and expire with their window, so idle clients cost nothing
once their window has passed.
"""

import asyncio
import time
from typing import Any, Callable, Dict

from fastapi import Request

from service_reporting.app.caching.ttl_store import MISS, TTLCacheStore
from shared.errors import RateLimitError
from shared.logging import get_logger


class FixedWindowRateLimiter:
    """In-memory fixed-window request counter.

    ``trust_proxy_headers`` decides whether ``X-Forwarded-For`` and
    ``X-Real-IP`` identify the client. Leave it off unless the service sits
    behind a proxy that overwrites those headers: otherwise any caller can
    pick a fresh identity per request and never hit the limit.
    """

    def __init__(self,
                 limit: int,
                 window_seconds: float,
                 clock: Callable[[], float] = time.monotonic,
                 trust_proxy_headers: bool = False):
        self.limit = limit
        self.window_seconds = window_seconds
        self.trust_proxy_headers = trust_proxy_headers
        self._clock = clock
        # key -> (window_start, count), expiring when the window closes
        self._windows = TTLCacheStore(clock=clock)
        self._next_purge = clock() + window_seconds
        self._lock = asyncio.Lock()
        self.logger = get_logger("reporting.rate_limiter")

    def _make_key(self, client_id: str, scope: str) -> str:
        return f"rate_limit:{client_id}:{scope}"

    def _purge(self, now: float) -> None:
        # At most once per window; every counter older than that has expired
        if now < self._next_purge:
            return
        removed = self._windows.purge_expired()
        self._next_purge = now + self.window_seconds
        if removed:
            self.logger.debug("Expired rate limit windows purged", removed=removed, remaining=len(self._windows))

    async def check_rate_limit(self, client_id: str, scope: str = "auth") -> Dict[str, Any]:
        """Count one request and report whether it is allowed."""
        key = self._make_key(client_id, scope)
        async with self._lock:
            now = self._clock()
            self._purge(now)

            window = self._windows.get(key)
            window_start, count = (now, 0) if window is MISS else window

            reset_in = max(0, int(round(window_start + self.window_seconds - now)))
            if count >= self.limit:
                self.logger.warning(
                    "Rate limit exceeded",
                    client_id=client_id,
                    scope=scope,
                    current_count=count,
                    limit=self.limit
                )
                return {
                    "allowed": False,
                    "current_count": count,
                    "limit": self.limit,
                    "reset_in_seconds": reset_in,
                    "retry_after": reset_in
                }

            count += 1
            self._windows.set(key, (window_start, count), window_start + self.window_seconds - now)
            return {
                "allowed": True,
                "current_count": count,
                "limit": self.limit,
                "remaining": max(0, self.limit - count),
                "reset_in_seconds": reset_in
            }

    def tracked_windows(self) -> int:
        """Number of counters currently held, live or not yet purged."""
        return len(self._windows)

    def reset(self, client_id: str, scope: str = "auth") -> None:
        self._windows.delete(self._make_key(client_id, scope))

    async def enforce(self, request: Request) -> Dict[str, Any]:
        """FastAPI dependency: raise ``RateLimitError`` when over the limit."""
        result = await self.check_rate_limit(client_id(request, self.trust_proxy_headers))
        if not result["allowed"]:
            raise RateLimitError(details={"retry_after": result["retry_after"]})
        return result


def client_id(request: Request, trust_proxy_headers: bool = False) -> str:
    """Client address; proxy headers count only when they are trusted."""
    if trust_proxy_headers:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip

    return request.client.host if request.client else "unknown"
