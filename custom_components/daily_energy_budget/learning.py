"""Learning Manager Service."""
from __future__ import annotations

import logging
from datetime import datetime, tzinfo

from .allocation import normalize_weights
from .buckets import build_day_buckets, get_hour_of_day, get_next_day_start, parse_instant
from .const import (
    LEARNING_STATUS_MISSING_TOTALS,
    LEARNING_STATUS_NO_DAY_START,
    LEARNING_STATUS_UNRELIABLE,
    LEARNING_STATUS_UPDATED,
    LEARNING_STATUS_ZERO_USAGE,
)
from .observed import refresh_observed_stats
from .plan_state import reset_plan
from .profile import build_fallback_profile, is_valid_profile
from .usage import UsageHistory

_LOGGER = logging.getLogger(__name__)


class LearningManager:
    """Folds finished days into the learned usage profile."""

    def finalize_day(
        self,
        # State (Mutable)
        state: dict,
        # Inputs
        tz: tzinfo,
        usage_history,
        previous_date_key: str,
        previous_day_start: str | None,
        default_profile: list[float],
        now: datetime,
    ) -> dict:
        """Finalize learning for the day that just ended.

        Mutates state in place and returns a result dictionary:
        {
            "learning_status": str,
            "total_kwh": float,
            "used_controlled_data": bool,
            "window_bucket_count": int,
            "should_force_persist": bool,
        }
        """
        history = UsageHistory.from_raw(usage_history)
        result = {
            "learning_status": LEARNING_STATUS_NO_DAY_START,
            "total_kwh": 0.0,
            "used_controlled_data": False,
            "window_bucket_count": 0,
            "should_force_persist": False,
        }

        day_start = parse_instant(previous_day_start)
        if day_start is None:
            return result

        # Observed stats are refreshed on every rollover, learned or not
        result["window_bucket_count"] = refresh_observed_stats(state, history, tz, now)
        result["should_force_persist"] = True
        reset_plan(state)

        next_day_start = get_next_day_start(day_start, tz)
        if history.overlaps_unreliable(day_start, next_day_start):
            result["learning_status"] = LEARNING_STATUS_UNRELIABLE
            _LOGGER.info(f"Skipping learning for {previous_date_key} (incomplete data)")
            return result

        bucket_starts, _ = build_day_buckets(day_start, next_day_start, tz)
        hourly_uncontrolled = [0.0] * 24
        hourly_controlled = [0.0] * 24
        has_totals = False
        used_controlled_data = False

        for start in bucket_starts:
            split = history.split(start)
            if split is None:
                continue
            has_totals = True
            total, controlled, uncontrolled = split
            hour = get_hour_of_day(start, tz)
            if controlled is None:
                hourly_uncontrolled[hour] += max(total, 0.0)
            else:
                used_controlled_data = True
                hourly_uncontrolled[hour] += uncontrolled
                hourly_controlled[hour] += controlled

        if not has_totals:
            result["learning_status"] = LEARNING_STATUS_MISSING_TOTALS
            _LOGGER.info(f"Skipping learning for {previous_date_key} (missing totals)")
            return result

        total_uncontrolled = sum(hourly_uncontrolled)
        total_controlled = sum(hourly_controlled)
        total_kwh = total_uncontrolled + total_controlled
        result["total_kwh"] = total_kwh
        if total_kwh <= 0:
            result["learning_status"] = LEARNING_STATUS_ZERO_USAGE
            _LOGGER.info(f"Skipping learning for {previous_date_key} (0 kWh)")
            return result

        sample_count = max(0, state.get("profile_sample_count", 0))
        split_sample_count = max(0, state.get("profile_split_sample_count", 0))

        if total_uncontrolled > 0:
            state["profile_uncontrolled"] = self._fold_day(
                state.get("profile_uncontrolled"),
                sample_count,
                normalize_weights(hourly_uncontrolled),
                default_profile,
            )
        if total_controlled > 0:
            state["profile_controlled"] = self._fold_day(
                state.get("profile_controlled"),
                split_sample_count,
                normalize_weights(hourly_controlled),
                default_profile,
            )

        previous_share = state.get("profile_controlled_share", 0.0)
        day_share = total_controlled / total_kwh
        share = (previous_share * sample_count + day_share) / (sample_count + 1)
        state["profile_controlled_share"] = min(max(share, 0.0), 1.0)
        state["profile_sample_count"] = sample_count + 1
        if used_controlled_data:
            state["profile_split_sample_count"] = split_sample_count + 1

        result["learning_status"] = LEARNING_STATUS_UPDATED
        result["used_controlled_data"] = used_controlled_data
        source = "split" if used_controlled_data else "total"
        _LOGGER.info(
            f"Finalized {previous_date_key} ({total_kwh:.2f} kWh {source}, "
            f"window buckets {result['window_bucket_count']})"
        )
        return result

    def _fold_day(
        self, profile, sample_count: int, day_weights: list[float], default_profile: list[float]
    ) -> dict:
        """Running mean of the stored weights and one day's normalized shape."""
        if not is_valid_profile(profile):
            profile = build_fallback_profile(default_profile)
        next_count = sample_count + 1
        weights = [
            (value * sample_count + day_weights[hour]) / next_count
            for hour, value in enumerate(profile["weights"])
        ]
        return {"weights": normalize_weights(weights), "sample_count": next_count}
