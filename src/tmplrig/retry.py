"""Bounded retry helpers.

Every polling loop in the harness (HTTP readiness, package restore,
directory cleanup) goes through these so that each one has a fixed attempt
ceiling and a fixed delay between attempts.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass
class RetryOutcome(Generic[T]):
    """Result of a bounded retry loop."""
    succeeded: bool
    attempts: int
    value: Optional[T] = None
    error: Optional[BaseException] = None
    errors: list[BaseException] = field(default_factory=list)


def _accepts(predicate: Optional[Callable[[Any], bool]], value: Any) -> bool:
    if predicate is None:
        return True
    return bool(predicate(value))


def retry(
    func: Callable[[], T],
    *,
    attempts: int,
    delay: float = 0.0,
    predicate: Optional[Callable[[T], bool]] = None,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    on_failure: Optional[Callable[[int, Optional[T], Optional[BaseException]], None]] = None,
    delay_first: bool = False,
    sleep: Callable[[float], None] = time.sleep,
) -> RetryOutcome[T]:
    """Call ``func`` until ``predicate`` accepts its value or attempts run out.

    Exceptions listed in ``retry_on`` count as a failed attempt; anything
    else propagates. ``on_failure(attempt, value, error)`` is called after
    every failed attempt, including the last one. The delay is only slept
    between attempts unless ``delay_first`` is set.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    outcome: RetryOutcome[T] = RetryOutcome(succeeded=False, attempts=0)
    for attempt in range(1, attempts + 1):
        if delay and (delay_first or attempt > 1):
            sleep(delay)
        outcome.attempts = attempt
        value: Optional[T] = None
        error: Optional[BaseException] = None
        try:
            value = func()
        except retry_on as e:
            error = e
            outcome.errors.append(e)
        outcome.value = value
        outcome.error = error
        if error is None and _accepts(predicate, value):
            outcome.succeeded = True
            return outcome
        if on_failure:
            on_failure(attempt, value, error)
    return outcome


async def retry_async(
    func: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    delay: float = 0.0,
    predicate: Optional[Callable[[T], bool]] = None,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    on_failure: Optional[Callable[[int, Optional[T], Optional[BaseException]], None]] = None,
    delay_first: bool = False,
) -> RetryOutcome[T]:
    """Coroutine counterpart of :func:`retry`."""
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    outcome: RetryOutcome[T] = RetryOutcome(succeeded=False, attempts=0)
    for attempt in range(1, attempts + 1):
        if delay and (delay_first or attempt > 1):
            await asyncio.sleep(delay)
        outcome.attempts = attempt
        value: Optional[T] = None
        error: Optional[BaseException] = None
        try:
            value = await func()
        except retry_on as e:
            error = e
            outcome.errors.append(e)
        outcome.value = value
        outcome.error = error
        if error is None and _accepts(predicate, value):
            outcome.succeeded = True
            return outcome
        if on_failure:
            on_failure(attempt, value, error)
    return outcome
