"""
Retry policy for vendor data calls.

Only transient failures are retried: transport errors and 5xx answers from
the vendor proxy. A 4xx answer means the query itself is wrong and is raised
on the first attempt. Callers can observe each retry through ``on_retry``,
which the vendor client uses to count retries per source.
"""

import asyncio
import functools
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx

from shared.logging import get_logger

BACKOFF_STRATEGIES = ("exponential", "linear", "fixed")

RetryPredicate = Callable[[BaseException], bool]
RetryHook = Callable[[int, BaseException], None]


@dataclass
class RetryConfig:
    """Attempt budget and backoff between attempts."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True
    backoff_strategy: str = "exponential"

    def __post_init__(self):
        self.max_attempts = max(1, self.max_attempts)
        if self.backoff_strategy not in BACKOFF_STRATEGIES:
            raise ValueError(f"Unknown backoff strategy '{self.backoff_strategy}'")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed ``attempt`` (1-based)."""
        if self.backoff_strategy == "exponential":
            delay = self.base_delay * (self.exponential_base ** (attempt - 1))
        elif self.backoff_strategy == "linear":
            delay = self.base_delay * attempt
        else:
            delay = self.base_delay

        delay = min(delay, self.max_delay)
        if self.jitter:
            spread = delay * 0.1
            delay += random.uniform(-spread, spread)
        return max(0.0, delay)


class RetryError(Exception):
    """Raised when every attempt failed with a transient error."""
    def __init__(self, message: str, last_exception: BaseException, attempts: int):
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts


def is_transient(error: BaseException) -> bool:
    """Transport failures and 5xx responses are worth another attempt."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code >= 500
    return isinstance(error, httpx.TransportError)


def retry_async(config: Optional[RetryConfig] = None,
                retry_if: RetryPredicate = is_transient,
                on_retry: Optional[RetryHook] = None,
                sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep) -> Callable:
    """Decorate an async callable with the retry policy.

    Errors rejected by ``retry_if`` propagate unchanged. When the last
    attempt fails with a retryable error, ``RetryError`` is raised from it.
    """
    config = config or RetryConfig()

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        name = getattr(func, "__name__", "call")
        logger = get_logger("reporting.retry")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            for attempt in range(1, config.max_attempts + 1):
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    if not retry_if(e):
                        raise
                    if attempt == config.max_attempts:
                        logger.error(
                            "All retry attempts exhausted",
                            function=name,
                            attempts=attempt,
                            error=str(e)
                        )
                        raise RetryError(
                            f"{name} failed after {attempt} attempts",
                            last_exception=e,
                            attempts=attempt
                        ) from e

                    delay = config.delay_for(attempt)
                    if on_retry:
                        on_retry(attempt, e)
                    logger.warning(
                        "Transient failure, retrying",
                        function=name,
                        attempt=attempt,
                        delay=round(delay, 3),
                        error=str(e)
                    )
                    await sleep(delay)
                else:
                    if attempt > 1:
                        logger.info("Retry succeeded", function=name, attempt=attempt)
                    return result

        return wrapper

    return decorator
