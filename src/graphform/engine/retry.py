"""Bounded exponential backoff for provider calls and eventual-consistency waits."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from graphform.errors import RetryableError, RetryExhaustedError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how long to retry.

    ``max_attempts`` counts the first call. Only exceptions that are instances
    of ``retry_on`` are retried; anything else propagates immediately.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    retry_on: tuple[type[BaseException], ...] = (RetryableError,)

    def delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        return min(self.base_delay * (2**attempt), self.max_delay)

    def should_retry(self, attempt: int, exc: BaseException) -> bool:
        if attempt + 1 >= self.max_attempts:
            return False
        return isinstance(exc, self.retry_on)


NO_RETRY = RetryPolicy(max_attempts=1)


async def retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    label: str = "call",
) -> T:
    """Await ``fn()`` until it succeeds or the policy gives up.

    Non-retryable errors propagate unchanged. A retryable error on the last
    attempt is re-raised as is, so callers see the provider's own error.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as e:
            if not policy.should_retry(attempt, e):
                raise
            delay = policy.delay(attempt)
            attempt += 1
            logger.warning(
                "%s failed (%s), retrying in %.1fs (attempt %d/%d)",
                label,
                e,
                delay,
                attempt + 1,
                policy.max_attempts,
            )
            await asyncio.sleep(delay)


async def poll_until(
    fn: Callable[[], Awaitable[T]],
    done: Callable[[T], bool],
    policy: RetryPolicy,
    *,
    label: str = "poll",
) -> T:
    """Poll ``fn()`` until ``done(result)`` holds.

    Retryable errors raised by ``fn`` count as "not done yet". Raises
    ``RetryExhaustedError`` once ``max_attempts`` polls have been made.
    """
    last_error: BaseException | None = None
    for attempt in range(policy.max_attempts):
        try:
            result = await fn()
        except Exception as e:
            if not isinstance(e, policy.retry_on):
                raise
            last_error = e
        else:
            if done(result):
                return result
            last_error = None
        if attempt + 1 < policy.max_attempts:
            delay = policy.delay(attempt)
            logger.debug("%s not ready, polling again in %.1fs", label, delay)
            await asyncio.sleep(delay)
    raise RetryExhaustedError(policy.max_attempts, last_error)
