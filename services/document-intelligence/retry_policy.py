"""Shared retry with exponential backoff for rate-limited remote calls.

Every OCR provider and AI model funnels its remote requests through
with_retry, so the backoff schedule lives in one place:
attempt 1 runs immediately, attempt k waits base_delay * 2^(k-2).
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

THROTTLING_CODES = {
    "ThrottlingException",
    "ProvisionedThroughputExceededException",
    "TooManyRequestsException",
    "LimitExceededException",
}


class RateLimited(Exception):
    """Remote service asked us to slow down (HTTP 429 or equivalent). Retryable."""


class RetryExhausted(Exception):
    """All attempts failed with retryable errors."""

    def __init__(self, operation: str, attempts: int, last_error: BaseException | None):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{operation} failed after {attempts} attempts: {last_error}")


def is_rate_limited(exc: BaseException) -> bool:
    """Classify rate-limit failures from our own code, httpx, ollama and botocore."""
    if isinstance(exc, RateLimited):
        return True

    for attr in ("status_code", "status"):
        if getattr(exc, attr, None) == 429:
            return True

    response = getattr(exc, "response", None)
    if isinstance(response, dict):
        code = response.get("Error", {}).get("Code")
        return code in THROTTLING_CODES

    return getattr(response, "status_code", None) == 429


def raise_for_status(resp, name: str, error_cls: type[Exception]) -> None:
    """Map an HTTP response to RateLimited (429) or error_cls (any other error status)."""
    if resp.status_code == 429:
        raise RateLimited(f"{name} returned 429")
    if resp.status_code >= 400:
        raise error_cls(f"{name} returned HTTP {resp.status_code}: {resp.text[:200]}")


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    name: str,
    max_attempts: int | None = None,
    is_retryable: Callable[[BaseException], bool] = is_rate_limited,
    base_delay: float | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run operation, retrying retryable failures with exponential backoff.

    Non-retryable errors propagate on first occurrence. When the last attempt
    fails, raises RetryExhausted chained from the underlying error.
    """
    attempts = max_attempts if max_attempts is not None else settings.RETRY_ATTEMPTS
    delay = base_delay if base_delay is not None else settings.RETRY_BASE_DELAY

    retrying = AsyncRetrying(
        retry=retry_if_exception(is_retryable),
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=delay, exp_base=2),
        sleep=sleep,
        before_sleep=lambda state: logger.warning(
            "%s rate limited, retrying in %.1fs (attempt %d/%d)",
            name,
            state.next_action.sleep,  # type: ignore[union-attr]
            state.attempt_number,
            attempts,
        ),
    )

    # tenacity only awaits coroutine functions; callers may pass a plain
    # callable that returns an awaitable (e.g. lambda: asyncio.to_thread(...))
    async def attempt() -> T:
        return await operation()

    try:
        return await retrying(attempt)
    except RetryError as e:
        last_error = e.last_attempt.exception()
        logger.error("%s gave up after %d attempts: %s", name, e.last_attempt.attempt_number, last_error)
        raise RetryExhausted(name, e.last_attempt.attempt_number, last_error) from last_error
