"""Unit tests for the retry helper."""

from __future__ import annotations

import warnings
from unittest.mock import MagicMock

import pytest
from conftest import NO_WAIT
from tenacity import wait_fixed

from kb_sync.exceptions import ConstraintViolation, RateLimited, StoreUnavailable
from kb_sync.retry import RetryPolicy, call_with_retry, wait_retry_after


def _flaky(failures: list[Exception]):
    calls = []

    async def fn(value):
        calls.append(value)
        if failures:
            raise failures.pop(0)
        return value

    return fn, calls


@pytest.mark.asyncio
async def test_retryable_errors_are_retried() -> None:
    fn, calls = _flaky([StoreUnavailable("blip"), StoreUnavailable("blip")])
    assert await call_with_retry(fn, 7, policy=NO_WAIT, description="op") == 7
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_fatal_errors_propagate_immediately() -> None:
    fn, calls = _flaky([ConstraintViolation("bad")])
    with pytest.raises(ConstraintViolation):
        await call_with_retry(fn, 1, policy=NO_WAIT, description="op")
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_backoff_emits_no_deprecation_warnings() -> None:
    policy = RetryPolicy(max_attempts=2, initial_wait=0.001, max_wait=0.001, jitter=0)
    fn, _ = _flaky([StoreUnavailable("blip")])
    with warnings.catch_warnings():
        warnings.simplefilter("error", DeprecationWarning)
        assert await call_with_retry(fn, 1, policy=policy, description="op") == 1


def test_retry_after_overrides_backoff() -> None:
    wait = wait_retry_after(wait_fixed(5))
    state = MagicMock()
    state.outcome.exception.return_value = RateLimited("slow down", retry_after=2)
    assert wait(state) == 2.0

    state.outcome.exception.return_value = StoreUnavailable("blip")
    assert wait(state) == 5
