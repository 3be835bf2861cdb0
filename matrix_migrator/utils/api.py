"""
API utilities for the Matrix account migration tool: error classification
and retry with exponential backoff around session calls.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from matrix_migrator.constants import (
    BACKOFF_FACTOR,
    DEFAULT_CALL_TIMEOUT_SECONDS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY,
    HTTP_REQUEST_TIMEOUT,
    HTTP_RATE_LIMIT,
    HTTP_SERVER_ERROR_MIN,
    M_LIMIT_EXCEEDED,
    MAX_RETRY_DELAY,
)
from matrix_migrator.exceptions import (
    PermanentProtocolError,
    ProtocolError,
    TransientProtocolError,
)
from matrix_migrator.utils.logging import log_with_context

T = TypeVar("T")


def classify_http_error(
    status: int, errcode: Optional[str] = None, message: str = "", retry_after_ms: Any = None
) -> ProtocolError:
    """Turn an HTTP failure into a transient or permanent protocol error.

    Client errors (4xx) are permanent except rate limits (429) and request
    timeouts (408); server errors (5xx) are transient.
    """
    text = message or f"HTTP {status}"
    if errcode:
        text = f"{errcode}: {text}"

    if status == HTTP_RATE_LIMIT or errcode == M_LIMIT_EXCEEDED:
        retry_after = None
        if isinstance(retry_after_ms, (int, float)):
            retry_after = retry_after_ms / 1000.0
        return TransientProtocolError(
            text, status=status, errcode=errcode, retry_after=retry_after
        )
    if status == HTTP_REQUEST_TIMEOUT or status >= HTTP_SERVER_ERROR_MIN:
        return TransientProtocolError(text, status=status, errcode=errcode)
    return PermanentProtocolError(text, status=status, errcode=errcode)


def backoff_delay(
    attempt: int,
    retry_delay: float = DEFAULT_RETRY_DELAY,
    retry_after: Optional[float] = None,
) -> float:
    """Delay before retry number ``attempt`` (0-based), capped at MAX_RETRY_DELAY.

    A server-supplied ``retry_after`` hint wins when it is longer.
    """
    delay = min(retry_delay * (BACKOFF_FACTOR**attempt), MAX_RETRY_DELAY)
    if retry_after is not None:
        delay = max(delay, min(retry_after, MAX_RETRY_DELAY))
    return delay


async def call_with_timeout(
    call: Callable[[], Awaitable[T]],
    timeout: Optional[float] = DEFAULT_CALL_TIMEOUT_SECONDS,
    description: str = "call",
) -> T:
    """Await a single protocol call, converting a timeout into a transient error."""
    try:
        return await asyncio.wait_for(call(), timeout=timeout)
    except asyncio.TimeoutError:
        raise TransientProtocolError(f"{description} timed out after {timeout}s")


async def call_with_retry(
    call: Callable[[], Awaitable[T]],
    *,
    description: str = "call",
    max_retries: int = DEFAULT_MAX_RETRIES,
    retry_delay: float = DEFAULT_RETRY_DELAY,
    call_timeout: Optional[float] = DEFAULT_CALL_TIMEOUT_SECONDS,
    deadline: Optional[float] = None,
    room: Optional[str] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run ``call`` with a per-call timeout, retrying transient failures.

    Permanent failures are raised immediately. Transient failures are
    retried up to ``max_retries`` times with exponential backoff. When
    ``deadline`` (an event loop timestamp) would be passed by the next
    wait, the last error is raised instead of sleeping past it.

    Raises:
        PermanentProtocolError: on the first permanent failure
        TransientProtocolError: when retries are exhausted
    """
    loop = asyncio.get_running_loop()
    attempt = 0
    while True:
        try:
            return await call_with_timeout(call, call_timeout, description)
        except PermanentProtocolError as e:
            log_with_context(
                logging.WARNING,
                f"{description} failed permanently, not retried: {e}",
                room=room,
            )
            raise
        except TransientProtocolError as e:
            if attempt >= max_retries:
                log_with_context(
                    logging.ERROR,
                    f"{description}: max retries reached. Last error: {e}",
                    room=room,
                )
                raise

            sleep_time = backoff_delay(attempt, retry_delay, e.retry_after)
            if deadline is not None and loop.time() + sleep_time > deadline:
                log_with_context(
                    logging.ERROR,
                    f"{description}: run time budget exhausted. Last error: {e}",
                    room=room,
                )
                raise

            log_with_context(
                logging.WARNING,
                f"{description} failed ({e}). Retrying in {sleep_time:.1f} seconds...",
                room=room,
            )
            await sleep(sleep_time)
            attempt += 1
