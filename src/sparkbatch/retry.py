"""Retry bookkeeping, jittered backoff and bounded polling.

Design goals:
- Explicit state (a ``RetryContext`` per logical request)
- Bounded: nothing here loops forever
- Randomized backoff scaled by attempt, not fixed exponential
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
import logging
import math
import random
from typing import TYPE_CHECKING, TypeVar

from sparkbatch._http import RETRY_AFTER_HEADERS, RETRY_RANDOMIZATION_FACTOR
from sparkbatch.errors import RetryTimeoutError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryContext:
    """Attempt counter for one logical request."""

    attempt: int = 0
    base_interval_s: float = 1.0
    max_attempts: int = 2

    def __post_init__(self) -> None:
        """Validate invariants to keep retry behavior predictable."""
        if self.attempt < 0:
            raise ValueError("RetryContext.attempt must be >= 0")
        if self.base_interval_s < 0:
            raise ValueError("RetryContext.base_interval_s must be >= 0")
        if self.max_attempts < 0:
            raise ValueError("RetryContext.max_attempts must be >= 0")

    @property
    def can_retry(self) -> bool:
        return self.attempt < self.max_attempts

    def next(self) -> RetryContext:
        return replace(self, attempt=self.attempt + 1)


def backoff_delay_s(
    attempt: int,
    base_interval_s: float = 1.0,
    *,
    jitter_factor: float = RETRY_RANDOMIZATION_FACTOR,
    rand: Callable[[], float] = random.random,
) -> float:
    """Return the delay before retry number *attempt*, in seconds.

    ``ceil(attempt * base_interval * 1000 * U(0, jitter_factor))`` milliseconds.
    The first retry (attempt 0) does not wait.
    """
    if attempt <= 0 or base_interval_s <= 0 or jitter_factor <= 0:
        return 0.0
    randomization = rand() * jitter_factor
    return math.ceil(attempt * base_interval_s * 1000 * randomization) / 1000


def retry_after_s(headers: Mapping[str, str]) -> float | None:
    """Read a server-supplied retry hint (seconds) from response headers."""
    for name in RETRY_AFTER_HEADERS:
        raw = headers.get(name)
        if not isinstance(raw, str) or not raw.strip():
            continue
        try:
            seconds = float(raw)
        except ValueError:
            continue
        if math.isfinite(seconds) and seconds >= 0:
            return seconds
    return None


async def poll_until(
    check: Callable[[], Awaitable[T]],
    *,
    done: Callable[[T], bool],
    max_attempts: int,
    base_interval_s: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    what: str = "job",
) -> T:
    """Re-run *check* with backoff until *done* accepts its result.

    Raises ``RetryTimeoutError`` after *max_attempts* unfinished checks; the
    last seen result is attached to the error.
    """
    attempt = 0
    last: T | None = None
    while attempt < max_attempts:
        last = await check()
        if done(last):
            return last

        attempt += 1
        if attempt >= max_attempts:
            break
        logger.info(
            "waiting for %s to complete (attempt %d of %d)", what, attempt, max_attempts
        )
        delay = backoff_delay_s(attempt, base_interval_s)
        if delay > 0:
            await sleep(delay)

    raise RetryTimeoutError(
        f"{what} status timed out after {attempt} attempts",
        attempts=attempt,
        last_result=last,
        hint="Increase max_attempts or poll again later.",
    )
