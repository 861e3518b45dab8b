"""Bounded retry policy for waiting on an eventually consistent search index."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

import structlog

LOGGER = structlog.get_logger("path_coverage")

T = TypeVar("T")

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class RetryPolicy:
    """Wall-clock budget, spacing between attempts and an optional attempt cap.

    At least one attempt is always made, even with a zero budget.
    """

    budget_ms: int
    interval_ms: int = 2000
    backoff: float = 1.0
    max_attempts: int | None = None

    def __post_init__(self) -> None:
        if self.budget_ms < 0:
            raise ValueError("budget_ms must not be negative")
        if self.interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        if self.backoff < 1.0:
            raise ValueError("backoff must be >= 1.0")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")


async def poll_until(
    fetch: Callable[[], Awaitable[T]],
    done: Callable[[T], bool],
    policy: RetryPolicy,
    give_up: T,
    *,
    clock: Clock = time.monotonic,
    sleep: Sleeper = asyncio.sleep,
) -> T:
    """Call ``fetch`` until ``done`` accepts its result or the policy is exhausted.

    A ``fetch`` that raises counts as "not yet". When the budget runs out the
    ``give_up`` value is returned instead of raising.
    """

    started = clock()
    deadline = started + policy.budget_ms / 1000
    interval = policy.interval_ms / 1000
    attempt = 0
    while True:
        attempt += 1
        try:
            result = await fetch()
        except Exception as exc:
            LOGGER.warning("poll_attempt_failed", attempt=attempt, error=f"{type(exc).__name__}: {exc}")
        else:
            if done(result):
                LOGGER.debug("poll_satisfied", attempt=attempt, elapsed_ms=round((clock() - started) * 1000))
                return result

        if policy.max_attempts is not None and attempt >= policy.max_attempts:
            break
        remaining = deadline - clock()
        if remaining <= 0:
            break
        await sleep(min(interval, remaining))
        interval *= policy.backoff

    LOGGER.debug("poll_exhausted", attempts=attempt, budget_ms=policy.budget_ms)
    return give_up
