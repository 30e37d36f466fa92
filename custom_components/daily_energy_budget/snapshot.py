"""Budget state and snapshot assembly."""
from __future__ import annotations

import math

from .buckets import bucket_key
from .profile import get_confidence


def _finite(value, default: float = 0.0) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
        return float(value)
    return default


def build_allowed_cum_kwh(planned_kwh: list[float], daily_budget_kwh: float) -> list[float]:
    """Running sum of the plan, capped at the daily budget."""
    if daily_budget_kwh <= 0:
        return [0.0] * len(planned_kwh)
    allowed = []
    total = 0.0
    for value in planned_kwh:
        total += value
        allowed.append(min(total, daily_budget_kwh))
    return allowed


def build_weights_from_plan(planned_kwh: list[float]) -> list[float]:
    total = sum(planned_kwh)
    if total <= 0:
        return [0.0] * len(planned_kwh)
    return [value / total for value in planned_kwh]


def interpolate_allowed_now(allowed_cum_kwh: list[float], current_index: int, progress: float) -> float:
    """Allowed cumulative kWh at the current instant within the bucket."""
    progress = min(max(progress, 0.0), 1.0)
    if not allowed_cum_kwh:
        return 0.0
    if current_index <= 0:
        return allowed_cum_kwh[0] * progress
    previous = allowed_cum_kwh[min(current_index - 1, len(allowed_cum_kwh) - 1)]
    current = allowed_cum_kwh[current_index] if current_index < len(allowed_cum_kwh) else previous
    return previous + (current - previous) * progress


def compute_plan_deviation(
    enabled: bool,
    planned_kwh: list[float],
    daily_budget_kwh: float,
    current_index: int,
    progress: float,
    used_now_kwh: float,
) -> dict:
    allowed_cum = build_allowed_cum_kwh(planned_kwh, daily_budget_kwh)
    allowed_now = interpolate_allowed_now(allowed_cum, current_index, progress) if enabled else 0.0
    return {
        "allowed_cum_kwh": allowed_cum,
        "allowed_now_kwh": allowed_now,
        "deviation_kwh": used_now_kwh - allowed_now if enabled else 0.0,
    }


def compute_budget_state(
    context: dict,
    enabled: bool,
    daily_budget_kwh: float,
    planned_kwh: list[float],
    profile_sample_count,
) -> dict:
    deviation = compute_plan_deviation(
        enabled,
        planned_kwh,
        daily_budget_kwh,
        context["current_index"],
        context["current_progress"],
        context["used_now_kwh"],
    )
    used_now = context["used_now_kwh"]
    return {
        "planned_weight": build_weights_from_plan(planned_kwh),
        "allowed_cum_kwh": deviation["allowed_cum_kwh"],
        "allowed_now_kwh": deviation["allowed_now_kwh"],
        "remaining_kwh": daily_budget_kwh - used_now if enabled else 0.0,
        "deviation_kwh": deviation["deviation_kwh"],
        "exceeded": enabled and (used_now > daily_budget_kwh or deviation["deviation_kwh"] > 0),
        "confidence": get_confidence(profile_sample_count),
    }


def build_snapshot(
    *,
    context: dict,
    settings: dict,
    enabled: bool,
    planned_kwh: list[float],
    plan_data: dict,
    budget: dict,
    frozen: bool,
    plan_mode: str,
) -> dict:
    """Assemble a fresh payload for one day. Callers must not mutate it."""
    count = len(context["bucket_starts"])
    planned_uncontrolled = plan_data.get("planned_uncontrolled_kwh")
    planned_controlled = plan_data.get("planned_controlled_kwh")
    if not planned_uncontrolled or len(planned_uncontrolled) != count:
        planned_uncontrolled = list(planned_kwh)
        planned_controlled = [0.0] * count
    prices = plan_data.get("prices") or [None] * count
    price_factors = plan_data.get("price_factors") or [None] * count

    return {
        "date_key": context["date_key"],
        "time_zone": context["time_zone"],
        "now_utc": bucket_key(context["now"]),
        "day_start_utc": bucket_key(context["day_start"]),
        "current_bucket_index": context["current_index"],
        "budget": {
            "enabled": enabled,
            "daily_budget_kwh": _finite(settings.get("daily_budget_kwh")),
            "price_shaping_enabled": bool(settings.get("price_shaping_enabled")),
            "controlled_usage_weight": _finite(settings.get("controlled_usage_weight")),
            "price_shaping_flex_share": _finite(settings.get("price_shaping_flex_share")),
        },
        "state": {
            "used_now_kwh": _finite(context["used_now_kwh"]),
            "allowed_now_kwh": _finite(budget["allowed_now_kwh"]),
            "remaining_kwh": _finite(budget["remaining_kwh"]),
            "deviation_kwh": _finite(budget["deviation_kwh"]),
            "exceeded": bool(budget["exceeded"]),
            "frozen": bool(frozen),
            "plan_mode": plan_mode,
            "confidence": _finite(budget["confidence"]),
            "price_shaping_active": bool(plan_data.get("price_shaping_active")),
            "effective_flex_share": _finite(plan_data.get("effective_flex_share")),
            "price_spread_factor": _finite(plan_data.get("price_spread_factor")),
        },
        "buckets": {
            "start_utc": [bucket_key(start) for start in context["bucket_starts"]],
            "start_local_labels": list(context["bucket_labels"]),
            "planned_weight": [_finite(v) for v in budget["planned_weight"]],
            "planned_kwh": [_finite(v) for v in planned_kwh],
            "actual_kwh": [_finite(v) for v in context["bucket_usage"]],
            "allowed_cum_kwh": [_finite(v) for v in budget["allowed_cum_kwh"]],
            "price": list(prices),
            "price_factor": list(price_factors),
            "planned_uncontrolled_kwh": [_finite(v) for v in planned_uncontrolled],
            "planned_controlled_kwh": [_finite(v) for v in planned_controlled],
        },
    }
