"""Exponential backoff helpers shared by the poll loop and message retries."""

from __future__ import annotations

import asyncio

DEFAULT_BASE = 2
DEFAULT_CAP_ATTEMPTS = 29


def next_retry_interval(
    attempt: int,
    min_wait: float,
    max_wait: float,
    *,
    base: int = DEFAULT_BASE,
    cap_attempts: int = DEFAULT_CAP_ATTEMPTS,
) -> float:
    """Return ``min(max_wait, min_wait * base ** min(attempt, cap_attempts))``.

    Attempts at or below zero yield ``min_wait``.
    """

    if attempt <= 0:
        return min(min_wait, max_wait)
    exponent = min(int(attempt), cap_attempts)
    return min(max_wait, min_wait * base**exponent)


class Retrier:
    """Backoff calculator bound to a fixed ``[min_wait, max_wait]`` range."""

    def __init__(
        self,
        min_wait: float,
        max_wait: float,
        *,
        base: int = DEFAULT_BASE,
        cap_attempts: int = DEFAULT_CAP_ATTEMPTS,
    ) -> None:
        self.min_wait = min_wait
        self.max_wait = max_wait
        self.base = base
        self.cap_attempts = cap_attempts

    def next_try_interval(self, attempt: int) -> float:
        return next_retry_interval(
            attempt,
            self.min_wait,
            self.max_wait,
            base=self.base,
            cap_attempts=self.cap_attempts,
        )

    def __repr__(self) -> str:
        return f"Retrier(min_wait={self.min_wait}, max_wait={self.max_wait})"


async def wait(seconds: float) -> None:
    """Suspend the current task for ``seconds``."""

    await asyncio.sleep(max(seconds, 0))
