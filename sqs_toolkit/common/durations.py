"""Human readable duration parsing ("2 hours", "10 seconds", "1h 30m")."""

from __future__ import annotations

import math
import re
from datetime import timedelta
from typing import Union

DurationLike = Union[int, float, str, timedelta]

_UNIT_SECONDS = {
    "ms": 0.001,
    "millisecond": 0.001,
    "milliseconds": 0.001,
    "s": 1,
    "sec": 1,
    "secs": 1,
    "second": 1,
    "seconds": 1,
    "m": 60,
    "min": 60,
    "mins": 60,
    "minute": 60,
    "minutes": 60,
    "h": 3600,
    "hr": 3600,
    "hrs": 3600,
    "hour": 3600,
    "hours": 3600,
    "d": 86400,
    "day": 86400,
    "days": 86400,
    "w": 604800,
    "week": 604800,
    "weeks": 604800,
}

_WORD_NUMBERS = {
    "a": 1,
    "an": 1,
    "one": 1,
    "two": 2,
    "three": 3,
    "four": 4,
    "five": 5,
    "six": 6,
    "seven": 7,
    "eight": 8,
    "nine": 9,
    "ten": 10,
    "twelve": 12,
}

_TOKEN = re.compile(r"(\d+(?:\.\d+)?|[a-z]+)\s*([a-z]+)")


def read_duration(value: DurationLike) -> int:
    """Convert a duration expression into whole seconds.

    Numbers (and numeric strings) are taken as seconds. Strings may combine
    several ``<amount> <unit>`` terms, e.g. ``"1 hour and 30 minutes"``.
    """

    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, timedelta):
        return int(value.total_seconds())
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            raise ValueError(f"Duration must be finite: {value!r}")
        if value < 0:
            raise ValueError(f"Duration must not be negative: {value!r}")
        return int(value)

    text = str(value).strip().lower()
    if not text:
        raise ValueError("Duration must not be empty")
    try:
        return read_duration(float(text))
    except ValueError:
        pass

    text = text.replace(",", " ").replace(" and ", " ")
    total = 0.0
    position = 0
    for match in _TOKEN.finditer(text):
        if text[position:match.start()].strip():
            raise ValueError(f"Invalid duration: {value!r}")
        amount, unit = match.groups()
        if amount in _WORD_NUMBERS:
            number = float(_WORD_NUMBERS[amount])
        else:
            try:
                number = float(amount)
            except ValueError:
                raise ValueError(f"Invalid duration: {value!r}") from None
        if unit not in _UNIT_SECONDS:
            raise ValueError(f"Unknown duration unit {unit!r} in {value!r}")
        total += number * _UNIT_SECONDS[unit]
        position = match.end()

    if position == 0 or text[position:].strip():
        raise ValueError(f"Invalid duration: {value!r}")
    return int(total)
