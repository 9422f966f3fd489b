"""Named TTL presets for cache call sites."""

from datetime import timedelta
from enum import Enum
from typing import Any, Union


class TTL(int, Enum):
    """Common cache durations, in seconds."""

    FIVE_MINUTES = 5 * 60
    FIFTEEN_MINUTES = 15 * 60
    HOUR = 60 * 60
    DAY = 24 * 60 * 60
    WEEK = 7 * 24 * 60 * 60


Duration = Union[int, float, timedelta]


def to_seconds(duration: Duration) -> float:
    """Convert a duration (seconds, timedelta or TTL preset) to seconds.

    Raises:
        ValueError: If the duration is negative
    """
    if isinstance(duration, timedelta):
        seconds = duration.total_seconds()
    else:
        seconds = float(duration)
    if seconds < 0:
        raise ValueError(f"TTL must not be negative, got {seconds}")
    return seconds


def parse_ttl(value: Any) -> Any:
    """Accept a preset name ("HOUR", "five_minutes") in place of raw seconds.

    Anything that is not a preset name is returned untouched for normal
    validation.
    """
    if isinstance(value, str):
        name = value.strip().upper().replace("-", "_")
        if name in TTL.__members__:
            return TTL[name]
    return value
