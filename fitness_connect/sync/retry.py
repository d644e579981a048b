"""Bounded exponential backoff for transient provider failures."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from fitness_connect.config_loader import RetryPolicy
from fitness_connect.errors import TransientError

logger = logging.getLogger("fitness_connect.sync.retry")

T = TypeVar("T")


async def retry_transient(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "operation",
) -> tuple[T, int]:
    """Await ``operation()`` until it succeeds or the attempt cap is reached.

    Only TransientError is retried; anything else propagates at once.  The
    delay after attempt ``n`` is ``base * 2**(n-1)`` capped at the policy max.

    Returns:
        (result, attempts used).

    Raises:
        TransientError: The last error, with ``attempts`` set, once the cap is hit.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation(), attempt
        except TransientError as exc:
            exc.attempts = attempt
            if attempt >= policy.max_attempts:
                logger.error("%s failed after %d attempt(s): %s", label, attempt, exc)
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "%s attempt %d/%d failed (%s), retrying in %.1fs",
                label,
                attempt,
                policy.max_attempts,
                exc,
                delay,
            )
            await sleep(delay)
