"""Bounded exponential backoff for transient infrastructure errors.

Only exceptions listed in ``retry_on`` are retried. Application-level
failures (failed health checks, policy violations) must not be passed
through here.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Delays grow base, base*2, base*4 ... capped at MAX_BACKOFF_SECONDS.
DEFAULT_ATTEMPTS = 3
DEFAULT_BACKOFF_FACTOR = 2.0
MAX_BACKOFF_SECONDS = 30.0


class RetryExhausted(RuntimeError):
    """All attempts failed with a retryable error."""

    def __init__(self, description: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(
            f"{description} failed after {attempts} attempt(s): {last_error}"
        )
        self.attempts = attempts
        self.last_error = last_error


def backoff_delays(
    attempts: int,
    base_delay: float,
    factor: float = DEFAULT_BACKOFF_FACTOR,
    max_delay: float = MAX_BACKOFF_SECONDS,
) -> list[float]:
    """Delays slept between attempts (one fewer than ``attempts``)."""
    return [min(base_delay * factor**i, max_delay) for i in range(max(attempts - 1, 0))]


def retry_call(
    func: Callable[[], T],
    *,
    retry_on: tuple[type[BaseException], ...],
    attempts: int = DEFAULT_ATTEMPTS,
    base_delay: float = 1.0,
    factor: float = DEFAULT_BACKOFF_FACTOR,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "operation",
    on_attempt: Callable[[int], None] | None = None,
) -> T:
    """Call *func* until it succeeds or *attempts* retryable failures occur.

    Raises ``RetryExhausted`` (chained from the last error) when every
    attempt fails with one of ``retry_on``. Any other exception
    propagates immediately.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    delays = backoff_delays(attempts, base_delay, factor)
    last_error: BaseException | None = None

    for attempt in range(1, attempts + 1):
        if on_attempt is not None:
            on_attempt(attempt)
        try:
            return func()
        except retry_on as exc:
            last_error = exc
            if attempt == attempts:
                break
            delay = delays[attempt - 1]
            logger.warning(
                "%s attempt %d/%d failed: %s; retrying in %.1fs",
                description,
                attempt,
                attempts,
                exc,
                delay,
            )
            sleep(delay)

    assert last_error is not None
    raise RetryExhausted(description, attempts, last_error) from last_error
