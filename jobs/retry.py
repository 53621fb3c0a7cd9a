"""
Backoff Retrier

Bounded retry with exponential delay for a single fallible async call.

    delay(attempt) = base_delay_ms * 2 ** attempt     (attempt is 0-based)

At most ``retries + 1`` attempts. The last error propagates unchanged
once attempts run out or ``should_retry`` declines.
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

import httpx

T = TypeVar("T")

logger = logging.getLogger(__name__)


def retry_always(error: BaseException) -> bool:
    return True


def is_timeout(error: BaseException) -> bool:
    """Retry predicate: timeout-classified errors only."""
    return isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError))


def is_transport_error(error: BaseException) -> bool:
    """Retry predicate: network/transport failures only (never HTTP 4xx)."""
    return isinstance(error, httpx.TransportError)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    retries: int = 3,
    base_delay_ms: int = 250,
    should_retry: Callable[[BaseException], bool] = retry_always,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run ``operation`` with bounded exponential backoff.

    Args:
        operation: Zero-arg coroutine factory (called once per attempt)
        retries: Extra attempts after the first
        base_delay_ms: Delay before the second attempt
        should_retry: Predicate on the raised error
        sleep: Awaitable sleep (injectable for tests)

    Returns:
        The first successful result

    Raises:
        The last error raised by ``operation``
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            if attempt >= retries or not should_retry(e):
                raise
            delay_ms = base_delay_ms * (2 ** attempt)
            logger.debug(
                f"Retrying after {type(e).__name__} (attempt {attempt + 1}/{retries + 1}, {delay_ms}ms)"
            )
            await sleep(delay_ms / 1000.0)
            attempt += 1
