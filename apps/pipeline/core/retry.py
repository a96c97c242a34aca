"""Bounded exponential-backoff retry for the pipeline's external calls."""

import asyncio
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import httpx
import openai
import structlog

from packages.ingestion_engine.errors import (
    PipelineError,
    RetryExhaustedError,
    TransientError,
    sanitize_error_message,
)

logger = structlog.get_logger()

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

_TRANSIENT_MESSAGE = re.compile(
    r"network|timeout|timed out|ECONNREFUSED|ECONNRESET|ETIMEDOUT|ENOTFOUND|"
    r"rate limit|\b(429|500|502|503|504)\b",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay: float = 1.0
    backoff_multiplier: float = 2.0
    max_delay: float = 32.0

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        return min(self.initial_delay * self.backoff_multiplier ** (attempt - 1), self.max_delay)

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            initial_delay=settings.RETRY_INITIAL_DELAY,
            backoff_multiplier=settings.RETRY_BACKOFF_MULTIPLIER,
            max_delay=settings.RETRY_MAX_DELAY,
        )


def is_transient_error(error: BaseException) -> bool:
    """True for network-class failures worth another attempt."""
    if isinstance(error, TransientError):
        return True
    if isinstance(error, PipelineError):
        return False
    if isinstance(error, (httpx.TransportError, asyncio.TimeoutError)):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in RETRYABLE_STATUS_CODES
    if isinstance(error, (openai.APIConnectionError, openai.RateLimitError, openai.InternalServerError)):
        return True
    if isinstance(error, openai.APIStatusError):
        return error.status_code in RETRYABLE_STATUS_CODES
    if isinstance(error, openai.OpenAIError):
        return False
    return bool(_TRANSIENT_MESSAGE.search(str(error)))


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    *,
    operation: str = "external_call",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Await ``fn()`` until it succeeds, a non-transient error occurs, or attempts run out.

    Raises:
        RetryExhaustedError: every attempt failed with a transient error.
        Exception: the first non-transient error, unchanged.
    """
    policy = policy or RetryPolicy()
    last_error: Optional[BaseException] = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await fn()
        except Exception as exc:
            if not is_transient_error(exc):
                raise
            last_error = exc
            if attempt == policy.max_attempts:
                break
            delay = policy.delay_for(attempt)
            logger.warning(
                "retrying_external_call",
                operation=operation,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                delay_seconds=delay,
                error=sanitize_error_message(str(exc)),
            )
            await sleep(delay)

    raise RetryExhaustedError(
        f"{operation} failed after {policy.max_attempts} attempts: "
        f"{sanitize_error_message(str(last_error))}",
        attempts=policy.max_attempts,
        last_error=last_error,
    ) from last_error


def retrying(policy: RetryPolicy, operation: str, sleep=asyncio.sleep):
    """Call wrapper for CurrencyConverter and AICategorizer."""

    async def wrapper(fn):
        return await retry_async(fn, policy, operation=operation, sleep=sleep)

    return wrapper
