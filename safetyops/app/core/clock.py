"""Time helpers shared by the lifecycle services and the metrics engine."""

import math
from datetime import date, datetime, time, timezone
from typing import Callable, Optional, Union

Clock = Callable[[], datetime]

_SECONDS_PER_DAY = 60 * 60 * 24


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Union[datetime, date, None]) -> Optional[datetime]:
    """Normalise dates and naive datetimes to aware UTC datetimes."""
    if value is None:
        return None
    if not isinstance(value, datetime):
        value = datetime.combine(value, time.min)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def elapsed_days_ceil(start: Union[datetime, date], end: Union[datetime, date]) -> int:
    """Whole days from start to end, any partial day counting as one."""
    seconds = (as_utc(end) - as_utc(start)).total_seconds()
    return math.ceil(seconds / _SECONDS_PER_DAY)


def elapsed_days_floor(start: Union[datetime, date], end: Union[datetime, date]) -> int:
    """Whole days from start to end, partial days dropped."""
    seconds = (as_utc(end) - as_utc(start)).total_seconds()
    return math.floor(seconds / _SECONDS_PER_DAY)
