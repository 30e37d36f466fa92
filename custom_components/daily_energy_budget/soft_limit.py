"""Burst-rate soft limits derived from hourly and daily budgets.

The hourly capacity limit is capped to the sustainable rate during the last
minutes of the hour. The daily plan's limit never is: the daily budget is a
soft constraint and only the hourly cap guards against end-of-hour bursts.
Both use the same floor on remaining time.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta

from .const import END_OF_HOUR_CAP_MINUTES, SOFT_LIMIT_MIN_REMAINING_MINUTES

_LOGGER = logging.getLogger(__name__)

MIN_REMAINING_HOURS = SOFT_LIMIT_MIN_REMAINING_MINUTES / 60
SHORTFALL_MIN_REMAINING_HOURS = 0.01


def _finite_non_negative(value) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
        return max(0.0, float(value))
    return 0.0


def _hour_remaining(hour_start: datetime, now: datetime) -> float:
    """Hours left in the hour that started at hour_start."""
    hour_end = hour_start + timedelta(hours=1)
    bounded = min(max(now, hour_start), hour_end)
    return (hour_end - bounded).total_seconds() / 3600


def compute_hourly_soft_limit(
    limit_kw: float, margin_kw: float, used_kwh: float, hour_start: datetime, now: datetime
) -> dict:
    """Allowed power (kW) to stay inside this hour's capacity budget."""
    net_budget_kwh = max(0.0, _finite_non_negative(limit_kw) - _finite_non_negative(margin_kw))
    if net_budget_kwh <= 0:
        return {"allowed_kw": 0.0, "burst_rate_kw": 0.0, "hourly_budget_exhausted": False}

    remaining_hours_raw = _hour_remaining(hour_start, now)
    remaining_hours = max(remaining_hours_raw, MIN_REMAINING_HOURS)
    remaining_kwh = max(0.0, net_budget_kwh - _finite_non_negative(used_kwh))
    burst_rate_kw = remaining_kwh / remaining_hours

    # Sustainable rate only in the last minutes of the hour
    if remaining_hours_raw * 60 <= END_OF_HOUR_CAP_MINUTES:
        allowed_kw = min(burst_rate_kw, net_budget_kwh)
    else:
        allowed_kw = burst_rate_kw

    _LOGGER.debug(
        f"Hourly soft limit: budget={net_budget_kwh:.3f}kWh remaining={remaining_kwh:.3f}kWh "
        f"timeLeft={remaining_hours:.3f}h burst={burst_rate_kw:.3f}kW capped={allowed_kw:.3f}kW"
    )
    return {
        "allowed_kw": allowed_kw,
        "burst_rate_kw": burst_rate_kw,
        "hourly_budget_exhausted": remaining_kwh <= 0,
    }


def compute_daily_soft_limit(
    planned_kwh: float, used_kwh: float, bucket_start: datetime, bucket_end: datetime, now: datetime
) -> float:
    """Allowed power (kW) to finish the current bucket on its planned kWh.

    No end-of-hour capping is applied here.
    """
    planned = _finite_non_negative(planned_kwh)
    if planned <= 0 or bucket_end <= bucket_start:
        return 0.0
    bounded_now = min(max(now, bucket_start), bucket_end)
    remaining_hours = max((bucket_end - bounded_now).total_seconds() / 3600, MIN_REMAINING_HOURS)
    remaining_kwh = max(0.0, planned - _finite_non_negative(used_kwh))
    burst_rate_kw = remaining_kwh / remaining_hours
    _LOGGER.debug(
        f"Daily soft limit: budget={planned:.3f}kWh remaining={remaining_kwh:.3f}kWh "
        f"timeLeft={remaining_hours:.3f}h burst={burst_rate_kw:.3f}kW"
    )
    return max(0.0, burst_rate_kw)


def compute_shortfall_threshold(
    limit_kw: float, margin_kw: float, used_kwh: float, hour_start: datetime, now: datetime
) -> float:
    """Uncapped burst rate: the real limit before the hourly budget is exceeded."""
    net_budget_kwh = max(0.0, _finite_non_negative(limit_kw) - _finite_non_negative(margin_kw))
    if net_budget_kwh <= 0:
        return 0.0
    remaining_hours = max(_hour_remaining(hour_start, now), SHORTFALL_MIN_REMAINING_HOURS)
    remaining_kwh = max(0.0, net_budget_kwh - _finite_non_negative(used_kwh))
    return remaining_kwh / remaining_hours
