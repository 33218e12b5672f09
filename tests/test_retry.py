"""Tests for tmplrig bounded retry helpers."""

import pytest

from tmplrig.retry import retry, retry_async


def test_retry_returns_first_accepted_value():
    values = iter([1, 2, 3, 4])
    outcome = retry(lambda: next(values), attempts=5, predicate=lambda v: v == 3)
    assert outcome.succeeded
    assert outcome.value == 3
    assert outcome.attempts == 3


def test_retry_gives_up_after_attempts_and_keeps_last_value():
    calls = []

    def func():
        calls.append(1)
        return len(calls)

    outcome = retry(func, attempts=3, predicate=lambda v: False)
    assert not outcome.succeeded
    assert outcome.attempts == 3
    assert outcome.value == 3
    assert len(calls) == 3


def test_retry_counts_listed_exceptions_as_failed_attempts():
    failures = []

    def func():
        raise OSError("busy")

    outcome = retry(func, attempts=2, retry_on=(OSError,), on_failure=lambda a, v, e: failures.append((a, e)))
    assert not outcome.succeeded
    assert [a for a, _ in failures] == [1, 2]
    assert isinstance(outcome.error, OSError)
    assert len(outcome.errors) == 2


def test_retry_propagates_unlisted_exceptions():
    def func():
        raise KeyError("nope")

    with pytest.raises(KeyError):
        retry(func, attempts=3, retry_on=(OSError,))


def test_retry_sleeps_only_between_attempts():
    sleeps = []
    retry(lambda: None, attempts=3, delay=0.5, predicate=lambda v: False, sleep=sleeps.append)
    assert sleeps == [0.5, 0.5]


def test_retry_delay_first_sleeps_before_every_attempt():
    sleeps = []
    retry(lambda: None, attempts=3, delay=1.0, delay_first=True, predicate=lambda v: False, sleep=sleeps.append)
    assert sleeps == [1.0, 1.0, 1.0]


def test_retry_rejects_zero_attempts():
    with pytest.raises(ValueError):
        retry(lambda: None, attempts=0)


@pytest.mark.asyncio
async def test_retry_async_succeeds_after_failures():
    state = {"n": 0}

    async def func():
        state["n"] += 1
        if state["n"] < 3:
            raise ConnectionError("refused")
        return "ok"

    outcome = await retry_async(func, attempts=5, delay=0.01, retry_on=(ConnectionError,))
    assert outcome.succeeded
    assert outcome.value == "ok"
    assert outcome.attempts == 3
