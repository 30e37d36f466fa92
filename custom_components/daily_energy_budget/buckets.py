"""Hour bucket construction for local calendar days."""
from __future__ import annotations

import logging
import math
from datetime import date, datetime, timedelta, timezone, tzinfo
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

_LOGGER = logging.getLogger(__name__)

HOUR = timedelta(hours=1)


@lru_cache(maxsize=16)
def get_time_zone(time_zone: str | None) -> tzinfo:
    """Resolve an IANA time zone id, falling back to UTC."""
    if not time_zone:
        return timezone.utc
    try:
        return ZoneInfo(time_zone)
    except (ZoneInfoNotFoundError, ValueError):
        _LOGGER.warning(f"Unknown time zone '{time_zone}', using UTC")
        return timezone.utc


def parse_instant(value) -> datetime | None:
    """Parse a datetime or ISO string into an aware UTC datetime.

    Returns None for anything unparsable. Naive values are taken as UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    elif isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
        # Epoch milliseconds
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def bucket_key(instant: datetime) -> str:
    """Canonical storage key for a bucket start."""
    return instant.astimezone(timezone.utc).isoformat()


def floor_to_hour(instant: datetime) -> datetime:
    """Floor an instant to the start of its UTC hour."""
    return instant.astimezone(timezone.utc).replace(minute=0, second=0, microsecond=0)


def get_date_key(instant: datetime, tz: tzinfo) -> str:
    """Local calendar date (YYYY-MM-DD) of an instant."""
    return instant.astimezone(tz).date().isoformat()


def get_day_start(date_key: str | date, tz: tzinfo) -> datetime:
    """UTC instant of local midnight for a date.

    When midnight does not exist locally (DST jump at 00:00) the first
    existing instant of the day is returned.
    """
    day = date.fromisoformat(date_key) if isinstance(date_key, str) else date_key
    local_midnight = datetime(day.year, day.month, day.day, tzinfo=tz)
    return local_midnight.astimezone(timezone.utc)


def get_next_day_start(day_start: datetime, tz: tzinfo) -> datetime:
    """UTC instant of the following local midnight."""
    local_date = day_start.astimezone(tz).date()
    return get_day_start(local_date + timedelta(days=1), tz)


def get_hour_of_day(instant: datetime, tz: tzinfo) -> int:
    """Recurring local hour-of-day (0-23) used for profile lookups.

    Both occurrences of a repeated fall-back hour map to the same index.
    """
    return instant.astimezone(tz).hour


def build_day_buckets(
    day_start: datetime, next_day_start: datetime, tz: tzinfo
) -> tuple[list[datetime], list[str]]:
    """Hour bucket starts and local labels spanning [day_start, next_day_start)."""
    span_hours = (next_day_start - day_start).total_seconds() / 3600
    count = max(1, int(round(span_hours)))
    starts = [day_start + HOUR * i for i in range(count)]
    labels = [start.astimezone(tz).strftime("%H:%M") for start in starts]
    return starts, labels


def get_bucket_index(instant: datetime, day_start: datetime, count: int) -> int:
    """Bucket index of an instant, clamped to [0, count-1]."""
    if count <= 0:
        return 0
    index = math.floor((instant - day_start).total_seconds() / 3600)
    return min(max(index, 0), count - 1)


def get_bucket_progress(instant: datetime, bucket_start: datetime, bucket_end: datetime) -> float:
    """Fraction (0-1) of a bucket that has elapsed at an instant."""
    span = (bucket_end - bucket_start).total_seconds()
    if span <= 0:
        return 0.0
    elapsed = (instant - bucket_start).total_seconds()
    return min(max(elapsed / span, 0.0), 1.0)
