"""
Bounded retry for single Google API calls.

Handles transient failures (timeouts, connection drops, 5xx) inside one
logical call. Sustained quota exhaustion across calls is the rate
limiter's job, so 4xx responses are never retried here.
"""

import asyncio
import logging
from typing import Any, Callable, TypeVar

from googleapiclient.errors import HttpError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from app.config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class GoogleCallTimeoutError(TimeoutError):
    """Raised when a single provider call exceeds its timeout."""

    pass


def error_status(exc: BaseException) -> int | None:
    """
    Extract the HTTP status of a provider error, if it carries one.

    Works for googleapiclient HttpError and for errors exposing a numeric
    `status_code`, `status` or `code` attribute.
    """
    if isinstance(exc, HttpError):
        try:
            return int(exc.resp.status)
        except (AttributeError, TypeError, ValueError):
            return None

    for attr in ("status_code", "status", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def is_transient_error(exc: BaseException) -> bool:
    """True for errors worth retrying within a single call."""
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError, ConnectionError)):
        return True
    status = error_status(exc)
    return status is not None and status >= 500


async def call_with_retry(
    func: Callable[..., T],
    *args: Any,
    attempts: int | None = None,
    timeout: float | None = None,
    initial: float | None = None,
    maximum: float | None = None,
    **kwargs: Any,
) -> T:
    """
    Run a blocking provider call in a worker thread with timeout and retry.

    Args:
        func: Blocking callable (e.g. a googleapiclient request's execute)
        attempts: Max attempts, including the first
        timeout: Per-attempt timeout in seconds
        initial: First backoff wait in seconds
        maximum: Cap on a single backoff wait

    Returns:
        Whatever func returns

    Raises:
        GoogleCallTimeoutError: If the final attempt timed out
        Exception: The last error, when not transient or retries are exhausted
    """
    settings = get_settings()
    attempts = attempts if attempts is not None else settings.google_retry_attempts
    timeout = timeout if timeout is not None else settings.google_call_timeout_seconds
    initial = initial if initial is not None else settings.google_retry_initial_seconds
    maximum = maximum if maximum is not None else settings.google_retry_max_seconds

    async for attempt in AsyncRetrying(
        retry=retry_if_exception(is_transient_error),
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_exponential_jitter(initial=initial, max=maximum, jitter=initial),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    ):
        with attempt:
            try:
                return await asyncio.wait_for(
                    asyncio.to_thread(func, *args, **kwargs),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                raise GoogleCallTimeoutError(
                    f"Google API call timed out after {timeout}s"
                )
