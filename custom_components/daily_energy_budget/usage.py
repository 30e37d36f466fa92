"""Access to raw hourly usage history and the per-cycle day context."""
from __future__ import annotations

import math
from datetime import datetime

from .buckets import (
    build_day_buckets,
    get_bucket_index,
    get_bucket_progress,
    get_date_key,
    get_day_start,
    get_next_day_start,
    get_time_zone,
    parse_instant,
)


def _finite(value) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return float(value)


def _index_hourly(raw) -> dict[datetime, float]:
    """Parse a {iso_key: kWh} mapping, dropping bad keys and values."""
    indexed = {}
    if not isinstance(raw, dict):
        return indexed
    for key, value in raw.items():
        instant = parse_instant(key)
        number = _finite(value)
        if instant is None or number is None:
            continue
        indexed[instant] = number
    return indexed


def _index_periods(raw) -> list[tuple[datetime, datetime]]:
    periods = []
    if not isinstance(raw, list):
        return periods
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        start = parse_instant(entry.get("start"))
        end = parse_instant(entry.get("end"))
        if start is None or end is None or end <= start:
            continue
        periods.append((start, end))
    return periods


class UsageHistory:
    """Parsed view over the raw usage-history mapping.

    Built once per update cycle; lookups are by UTC bucket start.
    """

    def __init__(self, raw: dict | None = None) -> None:
        raw = raw if isinstance(raw, dict) else {}
        self.totals = _index_hourly(raw.get("buckets"))
        self.controlled = _index_hourly(raw.get("controlled_buckets"))
        self.uncontrolled = _index_hourly(raw.get("uncontrolled_buckets"))
        self.planned = _index_hourly(raw.get("daily_budget_caps"))
        self.unreliable_periods = _index_periods(raw.get("unreliable_periods"))

    @classmethod
    def from_raw(cls, raw) -> UsageHistory:
        if isinstance(raw, UsageHistory):
            return raw
        return cls(raw)

    def total(self, start: datetime) -> float | None:
        return self.totals.get(start)

    def split(self, start: datetime) -> tuple[float, float | None, float | None] | None:
        """Return (total, controlled, uncontrolled) for a bucket.

        The controlled value is clamped to [0, total]; a missing side is the
        complement of the known side. Both sides are None when neither is known.
        """
        total = self.totals.get(start)
        if total is None:
            return None
        controlled = self.controlled.get(start)
        uncontrolled = self.uncontrolled.get(start)
        if controlled is not None:
            controlled = min(max(controlled, 0.0), max(total, 0.0))
            return total, controlled, max(total - controlled, 0.0)
        if uncontrolled is not None:
            uncontrolled = min(max(uncontrolled, 0.0), max(total, 0.0))
            return total, max(total - uncontrolled, 0.0), uncontrolled
        return total, None, None

    def overlaps_unreliable(self, start: datetime, end: datetime) -> bool:
        return any(p_start < end and p_end > start for p_start, p_end in self.unreliable_periods)

    def bucket_usage(self, bucket_starts: list[datetime]) -> list[float]:
        return [max(self.totals.get(start, 0.0), 0.0) for start in bucket_starts]

    def bucket_planned(self, bucket_starts: list[datetime]) -> list[float]:
        return [max(self.planned.get(start, 0.0), 0.0) for start in bucket_starts]


def build_day_context(now: datetime, time_zone: str | None, usage_history) -> dict:
    """Derive the day context for the local day containing now."""
    tz = get_time_zone(time_zone)
    history = UsageHistory.from_raw(usage_history)
    date_key = get_date_key(now, tz)
    day_start = get_day_start(date_key, tz)
    next_day_start = get_next_day_start(day_start, tz)
    bucket_starts, bucket_labels = build_day_buckets(day_start, next_day_start, tz)
    count = len(bucket_starts)
    current_index = get_bucket_index(now, day_start, count)
    current_end = bucket_starts[current_index + 1] if current_index + 1 < count else next_day_start
    bucket_usage = history.bucket_usage(bucket_starts)

    return {
        "now": now,
        "time_zone": time_zone,
        "tz": tz,
        "date_key": date_key,
        "day_start": day_start,
        "next_day_start": next_day_start,
        "bucket_starts": bucket_starts,
        "bucket_labels": bucket_labels,
        "bucket_usage": bucket_usage,
        "current_index": current_index,
        "current_progress": get_bucket_progress(now, bucket_starts[current_index], current_end),
        "used_now_kwh": sum(bucket_usage[: current_index + 1]),
        "history": history,
    }
