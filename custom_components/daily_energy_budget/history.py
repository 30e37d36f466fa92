"""Past-day history and future-day preview views."""
from __future__ import annotations

from datetime import datetime, timedelta

from .buckets import build_day_buckets, get_date_key, get_next_day_start, get_time_zone
from .const import PLAN_MODE_UNLOCKED
from .planner import build_plan
from .prices import build_price_factors
from .snapshot import build_snapshot, compute_budget_state
from .usage import UsageHistory


def _build_context(
    day_start: datetime,
    time_zone: str | None,
    bucket_usage: list[float] | None,
    current_index: int,
    progress: float,
    now: datetime,
) -> dict:
    tz = get_time_zone(time_zone)
    next_day_start = get_next_day_start(day_start, tz)
    bucket_starts, bucket_labels = build_day_buckets(day_start, next_day_start, tz)
    usage = bucket_usage if bucket_usage is not None else [0.0] * len(bucket_starts)
    return {
        "now": now,
        "time_zone": time_zone,
        "tz": tz,
        "date_key": get_date_key(day_start, tz),
        "day_start": day_start,
        "next_day_start": next_day_start,
        "bucket_starts": bucket_starts,
        "bucket_labels": bucket_labels,
        "bucket_usage": usage,
        "current_index": current_index,
        "current_progress": progress,
        "used_now_kwh": sum(usage),
    }


def build_history(
    *,
    day_start: datetime,
    time_zone: str | None,
    usage_history,
    prices=None,
    price_optimization_enabled: bool = True,
    price_shaping_enabled: bool = False,
    profile_sample_count=0,
) -> dict | None:
    """Reconstruct a finished day from recorded plan and usage.

    Returns None when the day has neither planned nor actual data.
    """
    history = UsageHistory.from_raw(usage_history)
    context = _build_context(day_start, time_zone, None, 0, 1.0, day_start)
    bucket_starts = context["bucket_starts"]
    bucket_usage = history.bucket_usage(bucket_starts)
    planned_kwh = history.bucket_planned(bucket_starts)
    if not any(v > 0 for v in planned_kwh) and not any(v > 0 for v in bucket_usage):
        return None

    count = len(bucket_starts)
    context.update(
        {
            "now": context["next_day_start"] - timedelta(microseconds=1),
            "bucket_usage": bucket_usage,
            "used_now_kwh": sum(bucket_usage),
            "current_index": count,
        }
    )
    daily_budget_kwh = sum(planned_kwh)
    enabled = daily_budget_kwh > 0
    budget = compute_budget_state(context, enabled, daily_budget_kwh, planned_kwh, profile_sample_count)
    price_shape = build_price_factors(
        bucket_starts, count, prices, price_optimization_enabled, price_shaping_enabled
    )
    return build_snapshot(
        context=context,
        settings={
            "daily_budget_kwh": daily_budget_kwh,
            "price_shaping_enabled": price_shaping_enabled,
        },
        enabled=enabled,
        planned_kwh=planned_kwh,
        plan_data={"prices": price_shape["prices"]},
        budget=budget,
        frozen=False,
        plan_mode=PLAN_MODE_UNLOCKED,
    )


def build_preview(
    *,
    day_start: datetime,
    time_zone: str | None,
    settings: dict,
    enabled: bool,
    profile: dict,
    profile_sample_count=0,
    observed: dict | None = None,
    prices=None,
    price_optimization_enabled: bool = True,
    capacity_budget_kwh: float | None = None,
) -> dict:
    """Zero-usage projection for a day that has not started."""
    context = _build_context(day_start, time_zone, None, -1, 0.0, day_start)
    daily_budget_kwh = settings.get("daily_budget_kwh", 0.0)
    count = len(context["bucket_starts"])

    if enabled:
        plan_data = build_plan(
            bucket_starts=context["bucket_starts"],
            bucket_usage=context["bucket_usage"],
            current_index=-1,
            used_now_kwh=0.0,
            daily_budget_kwh=daily_budget_kwh,
            profile=profile,
            tz=context["tz"],
            prices=prices,
            price_optimization_enabled=price_optimization_enabled,
            price_shaping_enabled=bool(settings.get("price_shaping_enabled")),
            price_shaping_flex_share=settings.get("price_shaping_flex_share"),
            capacity_budget_kwh=capacity_budget_kwh,
            controlled_usage_weight=settings.get("controlled_usage_weight"),
            observed=observed,
        )
        planned_kwh = plan_data["planned_kwh"]
    else:
        plan_data = {}
        planned_kwh = [0.0] * count

    budget = compute_budget_state(context, enabled, daily_budget_kwh, planned_kwh, profile_sample_count)
    return build_snapshot(
        context=context,
        settings=settings,
        enabled=enabled,
        planned_kwh=planned_kwh,
        plan_data=plan_data,
        budget=budget,
        frozen=False,
        plan_mode=PLAN_MODE_UNLOCKED,
    )
