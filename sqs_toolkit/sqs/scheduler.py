"""Daily processing window for scheduled consumers."""

from __future__ import annotations

import math
from datetime import datetime, time, timedelta
from typing import Any, Callable, Dict, Optional

from sqs_toolkit.core.config import SchedulerConfig

Clock = Callable[[], datetime]


def _window_start(now: datetime, start: time) -> datetime:
    return now.replace(
        hour=start.hour,
        minute=start.minute,
        second=start.second,
        microsecond=0,
    )


def is_within_window(now: datetime, start: time, duration: float) -> bool:
    """True when ``now`` falls in a ``[start, start + duration)`` window.

    Yesterday's window is checked too, so windows may span midnight.
    """

    length = timedelta(seconds=duration)
    today = _window_start(now, start)
    for window_start in (today, today - timedelta(days=1)):
        if window_start <= now < window_start + length:
            return True
    return False


def next_window_start(now: datetime, start: time, duration: float) -> datetime:
    """The start of the current window, or of the next one at or after ``now``."""

    window_start = _window_start(now, start)
    if now >= window_start + timedelta(seconds=duration):
        window_start += timedelta(days=1)
    return window_start


def next_visibility_timeout(now: datetime, start: time, duration: float, max_visibility: float) -> int:
    """Seconds to hide a message received at ``now``; ``0`` inside the window."""

    if is_within_window(now, start, duration):
        return 0
    until_start = (next_window_start(now, start, duration) - now).total_seconds()
    return int(min(max_visibility, math.ceil(until_start)))


class ProcessingWindow:
    """Evaluates a consumer's daily schedule against a clock."""

    def __init__(self, config: SchedulerConfig, clock: Optional[Clock] = None) -> None:
        self.scheduled = config.scheduled
        self.start = config.start_time_of_day
        self.duration = config.duration
        self.max_visibility_timeout = config.max_visibility_timeout
        self._clock = clock or datetime.now
        self.next_start: Optional[datetime] = None

    def now(self) -> datetime:
        return self._clock().replace(microsecond=0)

    def visibility_timeout(self, now: Optional[datetime] = None) -> int:
        now = now or self.now()
        self.next_start = next_window_start(now, self.start, self.duration)
        return next_visibility_timeout(now, self.start, self.duration, self.max_visibility_timeout)

    def is_consuming(self, now: Optional[datetime] = None) -> bool:
        if not self.scheduled:
            return True
        return self.visibility_timeout(now) == 0

    def describe(self) -> Dict[str, Any]:
        return {
            "scheduled": self.scheduled,
            "start": self.start.isoformat(),
            "duration_seconds": self.duration,
            "max_visibility_timeout_seconds": self.max_visibility_timeout,
            "next_start": self.next_start.isoformat() if self.next_start else None,
        }
