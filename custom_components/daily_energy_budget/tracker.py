"""Hourly usage tracker fed from cumulative energy meters."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta

from .buckets import bucket_key, floor_to_hour, parse_instant
from .const import DEFAULT_MAX_ENERGY_DELTA, HISTORY_RETENTION_DAYS

_LOGGER = logging.getLogger(__name__)


class _MeterState:
    """Last accepted reading of one cumulative meter."""

    def __init__(self) -> None:
        self.last_value = None

    def delta(self, value: float) -> float | None:
        """Energy since the previous reading, None when it cannot be trusted."""
        previous = self.last_value
        self.last_value = value
        if previous is None:
            return 0.0
        delta = value - previous
        if delta < 0 or delta > DEFAULT_MAX_ENERGY_DELTA:
            return None
        return delta


class UsageTracker:
    """Accumulates meter deltas into UTC hour buckets.

    Meter resets, implausible jumps and unavailable readings open an
    unreliable period so the affected day is not learned from.
    """

    def __init__(self) -> None:
        self.buckets = {}
        self.controlled_buckets = {}
        self.daily_budget_caps = {}
        self.unreliable_periods = []
        self._total_meter = _MeterState()
        self._controlled_meter = _MeterState()
        self._gap_start = None

    def record_reading(
        self, now: datetime, total_kwh: float | None, controlled_kwh: float | None = None,
        track_controlled: bool = False,
    ) -> None:
        """Record the current cumulative meter readings (kWh)."""
        if total_kwh is None:
            self._open_gap(now)
            return

        key = bucket_key(floor_to_hour(now))
        delta = self._total_meter.delta(total_kwh)
        if delta is None:
            _LOGGER.warning(f"Energy meter jumped to {total_kwh:.3f} kWh, marking period unreliable")
            self._open_gap(now)
            self._close_gap(now)
            if track_controlled and controlled_kwh is not None:
                self._controlled_meter.last_value = controlled_kwh
            return
        self._close_gap(now)
        self.buckets[key] = self.buckets.get(key, 0.0) + delta

        if not track_controlled:
            return
        if controlled_kwh is None:
            return
        controlled_delta = self._controlled_meter.delta(controlled_kwh)
        if controlled_delta is None:
            _LOGGER.debug(f"Controlled meter jumped to {controlled_kwh:.3f} kWh, skipping delta")
            return
        # Controlled load can never exceed the total for the hour
        current = self.controlled_buckets.get(key, 0.0) + controlled_delta
        self.controlled_buckets[key] = min(current, self.buckets[key])

    def _open_gap(self, now: datetime) -> None:
        if self._gap_start is None:
            self._gap_start = now

    def _close_gap(self, now: datetime) -> None:
        if self._gap_start is None:
            return
        end = max(now, self._gap_start + timedelta(seconds=1))
        self.unreliable_periods.append({"start": self._gap_start.isoformat(), "end": end.isoformat()})
        self._gap_start = None

    def record_planned(self, snapshot: dict | None) -> None:
        """Remember the committed plan for the bucket in progress."""
        if not snapshot:
            return
        buckets = snapshot.get("buckets", {})
        index = snapshot.get("current_bucket_index", -1)
        starts = buckets.get("start_utc") or []
        planned = buckets.get("planned_kwh") or []
        if not snapshot.get("budget", {}).get("enabled"):
            return
        if 0 <= index < len(starts) and index < len(planned):
            self.daily_budget_caps[starts[index]] = planned[index]

    def prune(self, now: datetime) -> int:
        """Drop buckets and periods older than the retention window."""
        cutoff = now - timedelta(days=HISTORY_RETENTION_DAYS)
        removed = 0
        for mapping in (self.buckets, self.controlled_buckets, self.daily_budget_caps):
            stale = [k for k in mapping if (parse_instant(k) or cutoff) < cutoff]
            for k in stale:
                del mapping[k]
            removed += len(stale)
        kept = [
            p for p in self.unreliable_periods
            if (parse_instant(p.get("end")) or cutoff) >= cutoff
        ]
        removed += len(self.unreliable_periods) - len(kept)
        self.unreliable_periods = kept
        if removed:
            _LOGGER.debug(f"Pruned {removed} usage entries older than {cutoff.isoformat()}")
        return removed

    def as_history(self) -> dict:
        """Usage history mapping consumed by the planning engine."""
        periods = list(self.unreliable_periods)
        if self._gap_start is not None:
            periods.append({"start": self._gap_start.isoformat(), "end": "9999-12-31T00:00:00+00:00"})
        return {
            "buckets": dict(self.buckets),
            "controlled_buckets": dict(self.controlled_buckets),
            "unreliable_periods": periods,
            "daily_budget_caps": dict(self.daily_budget_caps),
        }

    def to_dict(self) -> dict:
        return {
            "buckets": self.buckets,
            "controlled_buckets": self.controlled_buckets,
            "daily_budget_caps": self.daily_budget_caps,
            "unreliable_periods": self.unreliable_periods,
            "last_total_kwh": self._total_meter.last_value,
            "last_controlled_kwh": self._controlled_meter.last_value,
        }

    def load(self, data) -> None:
        """Restore from storage, skipping malformed sections."""
        if not isinstance(data, dict):
            _LOGGER.warning("Stored usage tracker data is not a dictionary. Skipping.")
            return
        for attr in ("buckets", "controlled_buckets", "daily_budget_caps"):
            value = data.get(attr)
            if isinstance(value, dict):
                setattr(self, attr, dict(value))
            elif value is not None:
                _LOGGER.warning(f"Stored {attr} is not a dictionary. Skipping.")
        periods = data.get("unreliable_periods")
        if isinstance(periods, list):
            self.unreliable_periods = [p for p in periods if isinstance(p, dict)]
        last_total = data.get("last_total_kwh")
        if isinstance(last_total, (int, float)) and not isinstance(last_total, bool):
            self._total_meter.last_value = float(last_total)
        last_controlled = data.get("last_controlled_kwh")
        if isinstance(last_controlled, (int, float)) and not isinstance(last_controlled, bool):
            self._controlled_meter.last_value = float(last_controlled)
