"""
imagegen_core - Retry and Deadline Utilities
============================================

Retry patterns built on tenacity, plus a deadline helper for polling loops.

Retries are only ever applied to idempotent reads (image downloads, history
polls). Submissions are never retried: the core makes no exactly-once promise
and a retried submit could queue the same work twice.

Usage:
    from imagegen_core.retry import async_retrying, run_with_deadline

    retrying = async_retrying(settings.retry, exceptions=NetworkError)
    response = await retrying(client.get, url)

    result = await run_with_deadline(
        poll_until_done(), 300.0, lambda: GenerationTimeoutError(timeout=300.0)
    )
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar, Union

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_exponential_jitter,
)

from .config import RetryConfig, get_settings
from .logging_config import get_logger

logger = get_logger(__name__)

__all__ = [
    "async_retrying",
    "run_with_deadline",
]

T = TypeVar("T")
ExceptionTypes = Union[type[Exception], tuple[type[Exception], ...]]


def async_retrying(
    config: RetryConfig | None = None,
    *,
    max_attempts: int | None = None,
    jitter: bool | None = None,
    exceptions: ExceptionTypes = Exception,
) -> AsyncRetrying:
    """
    Build a tenacity ``AsyncRetrying`` controller from retry settings.

    Args:
        config: Retry section of the settings (default: global settings)
        max_attempts: Override for the number of attempts
        jitter: Override for jittered backoff
        exceptions: Exception types that trigger a retry

    Example:
        async for attempt in async_retrying(settings.retry, exceptions=NetworkError):
            with attempt:
                data = await client.get(url)
    """
    config = config or get_settings().retry
    attempts = max(1, max_attempts or config.max_retries)
    use_jitter = config.backoff_jitter if jitter is None else jitter

    if use_jitter:
        wait_strategy = wait_exponential_jitter(
            initial=config.backoff_base,
            max=config.backoff_max,
            jitter=config.backoff_base,
        )
    else:
        wait_strategy = wait_exponential(multiplier=config.backoff_base, max=config.backoff_max)

    return AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_strategy,
        retry=retry_if_exception_type(exceptions),
        before_sleep=before_sleep_log(logger, logging.INFO),
        reraise=True,
    )


async def run_with_deadline(
    awaitable: Awaitable[T],
    timeout: float,
    on_timeout: Callable[[], Exception],
) -> T:
    """
    Await ``awaitable`` for at most ``timeout`` seconds.

    On expiry the inner task is cancelled and the exception built by
    ``on_timeout`` is raised instead, so a hanging HTTP call and a slow poll
    loop resolve the same way.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        raise on_timeout() from None
