"""
Vendor data client boundary.

Every data provider is reached through ``fetch_rows(source, query)``,
which returns the raw rows for one query or raises
``ExternalServiceError``. Sources: ``ads``, ``analytics``,
``search_console``, ``sheets``, ``mail`` and ``hosting``.
"""

import copy
from contextlib import nullcontext
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple, Union

import httpx

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import ExternalServiceError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, RetryError, retry_async

SOURCES = ("ads", "analytics", "search_console", "sheets", "mail", "hosting")

Responder = Callable[[Dict[str, Any]], List[Any]]


class VendorClient(Protocol):
    async def fetch_rows(self, source: str, query: Dict[str, Any]) -> List[Any]:
        ...

    async def aclose(self) -> None:
        ...


class HttpVendorClient:
    """Client for the vendor data proxy.

    Posts the query to ``{base_url}/{source}/query`` and expects
    ``{"rows": [...]}``. Transport errors and 5xx answers are retried, and
    every retry is counted per source; each source has its own circuit
    breaker wrapping its retrying call.
    """

    def __init__(self,
                 base_url: str,
                 timeout: float = 10.0,
                 retry_attempts: int = 2,
                 failure_threshold: int = 5,
                 recovery_timeout: float = 30.0,
                 metrics: Optional[MetricsCollector] = None,
                 retry_config: Optional[RetryConfig] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.metrics = metrics
        self.logger = get_logger("reporting.vendor_client")
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._posts: Dict[str, Callable[..., Any]] = {}
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )

        self.retry_config = retry_config or RetryConfig(
            max_attempts=retry_attempts,
            base_delay=0.5,
            max_delay=5.0,
            exponential_base=2.0,
            jitter=True
        )

    def _breaker(self, source: str) -> CircuitBreaker:
        if source not in self._breakers:
            self._breakers[source] = CircuitBreaker(
                failure_threshold=self.failure_threshold,
                recovery_timeout=self.recovery_timeout,
                name=f"vendor.{source}",
                counts_as_failure=_outage,
            )
        return self._breakers[source]

    def _retrying_post(self, source: str) -> Callable[..., Any]:
        if source not in self._posts:
            def on_retry(attempt: int, error: BaseException) -> None:
                if self.metrics:
                    self.metrics.record_upstream_retry(source)

            self._posts[source] = retry_async(self.retry_config, on_retry=on_retry)(self._post)
        return self._posts[source]

    async def _post(self, source: str, query: Dict[str, Any]) -> httpx.Response:
        response = await self._client.post(f"/{source}/query", json=query)
        response.raise_for_status()
        return response

    async def fetch_rows(self, source: str, query: Dict[str, Any]) -> List[Any]:
        """Fetch raw rows for one query."""
        timer = (
            self.metrics.time_operation("upstream_call_duration_seconds", source=source)
            if self.metrics else nullcontext()
        )
        try:
            with timer:
                response = await self._breaker(source).call(self._retrying_post(source), source, query)
        except CircuitBreakerOpenException as e:
            raise self._failure(source, "circuit open", e)
        except RetryError as e:
            last = e.last_exception
            if isinstance(last, httpx.HTTPStatusError):
                raise self._failure(source, f"status {last.response.status_code}", last)
            raise self._failure(source, "unavailable", last)
        except httpx.HTTPStatusError as e:
            raise self._failure(source, f"status {e.response.status_code}", e)
        except httpx.HTTPError as e:
            raise self._failure(source, "request failed", e)

        try:
            payload = response.json()
        except ValueError as e:
            raise self._failure(source, "malformed response", e)

        rows = payload.get("rows") if isinstance(payload, dict) else None
        if rows is None:
            return []
        if not isinstance(rows, list):
            raise self._failure(source, "malformed response", TypeError("rows is not a list"))

        self.logger.debug("Vendor rows fetched", source=source, rows=len(rows))
        return rows

    def _failure(self, source: str, reason: str, error: Exception) -> ExternalServiceError:
        self.logger.error("Vendor call failed", source=source, reason=reason, error=str(error))
        if self.metrics:
            self.metrics.record_upstream_error(source)
        return ExternalServiceError(source, reason, details={"error": str(error)})

    def get_breaker_states(self) -> Dict[str, Dict[str, Any]]:
        return {source: breaker.get_state() for source, breaker in self._breakers.items()}

    async def aclose(self) -> None:
        await self._client.aclose()


class StaticVendorClient:
    """In-process vendor client serving canned rows.

    ``responses`` maps a source to either a list of rows or a callable
    taking the query and returning rows. Unknown sources return no rows.
    Every call is recorded in ``calls`` as ``(source, query)``.
    """

    def __init__(self, responses: Optional[Dict[str, Union[List[Any], Responder]]] = None):
        self.responses: Dict[str, Union[List[Any], Responder]] = dict(responses or {})
        self.calls: List[Tuple[str, Dict[str, Any]]] = []

    async def fetch_rows(self, source: str, query: Dict[str, Any]) -> List[Any]:
        self.calls.append((source, dict(query)))
        response = self.responses.get(source, [])
        rows = response(query) if callable(response) else response
        return copy.deepcopy(list(rows))

    def calls_for(self, source: str) -> List[Dict[str, Any]]:
        return [query for called, query in self.calls if called == source]

    async def aclose(self) -> None:
        return None


def _outage(error: BaseException) -> bool:
    """A 4xx answer means the query was rejected, not that the source is down."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code >= 500
    return True


def by_query_field(field: str, responses: Dict[str, List[Any]]) -> Responder:
    """Responder selecting canned rows by one query field (e.g. ``range``)."""
    def respond(query: Dict[str, Any]) -> List[Any]:
        return responses.get(str(query.get(field)), [])
    return respond
