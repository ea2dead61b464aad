"""
HTTP response cache middleware.

Read requests on routes listed in the TTL table are answered from the TTL
store when a live entry exists. Otherwise the request proceeds, and a
successful (2xx) body is stored under the request key and counted as a miss
before the response is returned. Error responses and raised exceptions are
never cached or counted.
Mutating requests pass through without touching the store.
"""

from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from shared.logging import get_logger, log_context
from shared.metrics import MetricsCollector

from .keys import request_cache_key
from .policies import route_ttl
from .ttl_store import MISS, TTLCacheStore

CACHEABLE_METHODS = frozenset({"GET"})
CACHE_HEADER = "X-Cache"


class ResponseCacheMiddleware(BaseHTTPMiddleware):
    """Cache-aside for successful read responses."""

    def __init__(self,
                 app,
                 store: TTLCacheStore,
                 metrics: Optional[MetricsCollector] = None,
                 ttl_for_path: Callable[[str], Optional[int]] = route_ttl):
        super().__init__(app)
        self.store = store
        self.metrics = metrics
        self.ttl_for_path = ttl_for_path
        self.logger = get_logger("reporting.response_cache")

    async def dispatch(self, request: Request, call_next):
        if request.method not in CACHEABLE_METHODS:
            return await call_next(request)

        ttl = self.ttl_for_path(request.url.path)
        if not ttl:
            return await call_next(request)

        with log_context(cache_layer="response"):
            return await self._serve(request, call_next, ttl)

    async def _serve(self, request: Request, call_next, ttl: int):
        key = request_cache_key(request.url.path, request.query_params.multi_items())
        cached = self.store.get(key)
        if cached is not MISS:
            self._record(hit=True)
            self.logger.debug("Response cache hit", path=request.url.path)
            return Response(
                content=cached["body"],
                status_code=cached["status_code"],
                media_type=cached["media_type"],
                headers={CACHE_HEADER: "HIT"},
            )

        response = await call_next(request)
        if not 200 <= response.status_code < 300:
            self.logger.debug("Response not cached", path=request.url.path, status_code=response.status_code)
            return response

        # Only a response that fills the cache counts as a miss
        self._record(hit=False)

        body = b"".join([chunk async for chunk in response.body_iterator])
        media_type = response.headers.get("content-type", "application/json")
        self.store.set(key, {
            "body": body,
            "status_code": response.status_code,
            "media_type": media_type,
        }, ttl)
        self.logger.debug("Response cached", path=request.url.path, ttl=ttl, size=len(body))

        headers = dict(response.headers)
        headers[CACHE_HEADER] = "MISS"
        return Response(
            content=body,
            status_code=response.status_code,
            headers=headers,
        )

    def _record(self, hit: bool):
        if self.metrics:
            self.metrics.record_cache_access("response", hit)
