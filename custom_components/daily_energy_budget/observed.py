"""Observed Peak/Floor Model.

Per hour-of-day max/min energy for controlled and uncontrolled load, fully
recomputed from a trailing window of raw history.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, tzinfo

from .buckets import floor_to_hour, get_hour_of_day
from .const import OBSERVED_WINDOW_DAYS
from .usage import UsageHistory

_LOGGER = logging.getLogger(__name__)

OBSERVED_KEYS = (
    "observed_max_uncontrolled_kwh",
    "observed_max_controlled_kwh",
    "observed_min_uncontrolled_kwh",
    "observed_min_controlled_kwh",
)


def _clamp_min_by_max(mins: list[float], maxes: list[float]) -> list[float]:
    clamped = []
    for min_value, max_value in zip(mins, maxes):
        if min_value <= 0:
            clamped.append(0.0)
        elif max_value > 0 and min_value > max_value:
            clamped.append(max_value)
        else:
            clamped.append(min_value)
    return clamped


def compute_observed_stats(
    usage_history,
    tz: tzinfo,
    window_start: datetime,
    window_end: datetime,
) -> dict:
    """Per-hour max/min over [window_start, window_end).

    Buckets with a non-positive total are ignored. Without a known split the
    whole total counts as uncontrolled. Minimums consider positive values only
    and default to 0.
    """
    history = UsageHistory.from_raw(usage_history)
    hourly_uncontrolled = [[] for _ in range(24)]
    hourly_controlled = [[] for _ in range(24)]
    window_buckets = 0

    for start, total in history.totals.items():
        if start < window_start or start >= window_end or total <= 0:
            continue
        _, controlled, uncontrolled = history.split(start)
        if controlled is None:
            controlled = 0.0
            uncontrolled = total
        hour = get_hour_of_day(start, tz)
        hourly_uncontrolled[hour].append(uncontrolled)
        hourly_controlled[hour].append(controlled)
        window_buckets += 1

    max_uncontrolled = [max(values, default=0.0) for values in hourly_uncontrolled]
    max_controlled = [max(values, default=0.0) for values in hourly_controlled]
    min_uncontrolled = [min((v for v in values if v > 0), default=0.0) for values in hourly_uncontrolled]
    min_controlled = [min((v for v in values if v > 0), default=0.0) for values in hourly_controlled]

    return {
        "observed_max_uncontrolled_kwh": max_uncontrolled,
        "observed_max_controlled_kwh": max_controlled,
        "observed_min_uncontrolled_kwh": _clamp_min_by_max(min_uncontrolled, max_uncontrolled),
        "observed_min_controlled_kwh": _clamp_min_by_max(min_controlled, max_controlled),
        "window_bucket_count": window_buckets,
    }


def _has_any_positive(values) -> bool:
    return isinstance(values, list) and any(
        isinstance(v, (int, float)) and v > 0 for v in values
    )


def build_empty_observed() -> dict:
    return {key: [0.0] * 24 for key in OBSERVED_KEYS}


def ensure_observed_stats(state: dict, usage_history, tz: tzinfo, now: datetime) -> bool:
    """Backfill observed stats in place when the stored arrays are empty.

    Max and min are backfilled independently. Returns True when state changed.
    """
    has_max = _has_any_positive(state.get("observed_max_uncontrolled_kwh")) or _has_any_positive(
        state.get("observed_max_controlled_kwh")
    )
    has_min = _has_any_positive(state.get("observed_min_uncontrolled_kwh")) or _has_any_positive(
        state.get("observed_min_controlled_kwh")
    )
    if has_max and has_min:
        return False

    window_end = floor_to_hour(now)
    window_start = window_end - timedelta(days=OBSERVED_WINDOW_DAYS)
    stats = compute_observed_stats(usage_history, tz, window_start, window_end)

    keys = []
    if not has_max:
        keys += ["observed_max_uncontrolled_kwh", "observed_max_controlled_kwh"]
    if not has_min:
        keys += ["observed_min_uncontrolled_kwh", "observed_min_controlled_kwh"]

    changed = False
    for key in keys:
        if state.get(key) != stats[key]:
            state[key] = stats[key]
            changed = True

    if changed:
        _LOGGER.info(f"Backfilled observed stats (window buckets {stats['window_bucket_count']})")
    return changed


def refresh_observed_stats(state: dict, usage_history, tz: tzinfo, window_end: datetime) -> int:
    """Unconditionally recompute observed stats for the window ending at window_end."""
    window_start = window_end - timedelta(days=OBSERVED_WINDOW_DAYS)
    stats = compute_observed_stats(usage_history, tz, window_start, window_end)
    for key in OBSERVED_KEYS:
        state[key] = stats[key]
    return stats["window_bucket_count"]
