"""Bounded exponential-backoff retries for transient pipeline errors.

Only exceptions whose class sets ``retryable = True`` (see
:mod:`kb_sync.exceptions`) are retried.  :class:`~kb_sync.exceptions.RateLimited`
errors that carry a ``retry_after`` hint wait exactly that long instead of
the exponential schedule.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)
from tenacity.wait import wait_base

from kb_sync.config import Settings, settings
from kb_sync.exceptions import RateLimited, SyncError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration.

    Attributes
    ----------
    max_attempts:
        Total attempts including the first one.
    initial_wait:
        First backoff delay in seconds; doubles on every retry.
    max_wait:
        Upper bound for a single backoff delay.
    jitter:
        Maximum random seconds added to each delay.
    """

    max_attempts: int = 5
    initial_wait: float = 1.0
    max_wait: float = 30.0
    jitter: float = 1.0

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> RetryPolicy:
        return cls(
            max_attempts=cfg.max_attempts,
            initial_wait=cfg.retry_initial_wait,
            max_wait=cfg.retry_max_wait,
        )


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, SyncError) and exc.retryable


class wait_retry_after(wait_base):
    """Honour ``RateLimited.retry_after``; otherwise defer to *fallback*."""

    def __init__(self, fallback: wait_base) -> None:
        self.fallback = fallback

    def __call__(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, RateLimited) and exc.retry_after is not None:
            return max(exc.retry_after, 0.0)
        return self.fallback(retry_state)


def _log_before_sleep(description: str, policy: RetryPolicy) -> Callable[[RetryCallState], None]:
    def _log(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "%s failed (attempt %d/%d), retrying in %.1fs: %s",
            description,
            retry_state.attempt_number,
            policy.max_attempts,
            retry_state.next_action.sleep if retry_state.next_action else 0.0,
            exc,
        )

    return _log


async def call_with_retry(
    fn: Callable[..., Awaitable[T]],
    *args,
    policy: RetryPolicy,
    description: str,
    **kwargs,
) -> T:
    """Await ``fn(*args, **kwargs)``, retrying transient errors per *policy*.

    The last exception is re-raised unchanged once attempts are exhausted;
    non-retryable errors propagate on the first failure.
    """
    retrying = AsyncRetrying(
        retry=retry_if_exception(is_retryable),
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_retry_after(
            wait_exponential(multiplier=policy.initial_wait, max=policy.max_wait) + wait_random(0, policy.jitter)
        ),
        before_sleep=_log_before_sleep(description, policy),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await fn(*args, **kwargs)
    raise AssertionError("unreachable")  # pragma: no cover
