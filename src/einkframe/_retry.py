"""Bounded retry with backoff for async operations."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

T = TypeVar("T")

_logger = logging.getLogger(__name__)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    delay: float,
    backoff: float = 1.0,
    max_delay: float | None = None,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    label: str = "operation",
    logger: logging.Logger | None = None,
) -> T:
    """Run *operation* up to *attempts* times.

    Sleeps *delay* seconds after the first failure, multiplied by *backoff*
    after every further failure (capped at *max_delay*). Exceptions outside
    *retry_on* propagate immediately; the last retryable exception
    propagates once the budget is spent.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    log = logger or _logger
    wait = delay
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except retry_on as exc:
            if attempt == attempts:
                log.warning("%s failed after %d attempt(s): %s", label, attempts, exc)
                raise
            log.info("%s failed (attempt %d of %d): %s", label, attempt, attempts, exc)
            log.debug("%s failure detail", label, exc_info=True)
        await asyncio.sleep(wait)
        wait = wait * backoff
        if max_delay is not None:
            wait = min(wait, max_delay)
    raise AssertionError("unreachable")  # pragma: no cover
