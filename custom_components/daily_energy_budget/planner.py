"""Plan builder: turns profile, prices and observed bounds into planned kWh."""
from __future__ import annotations

import logging
import math
from datetime import datetime, tzinfo

from .allocation import (
    EPSILON,
    allocate_with_caps_and_floors,
    normalize_weights,
    normalize_weights_with_fallback,
)
from .buckets import get_hour_of_day
from .const import (
    DEFAULT_CONTROLLED_USAGE_WEIGHT,
    DEFAULT_PRICE_SHAPING_FLEX_SHARE,
    OBSERVED_MARGIN_RATIO,
    PREVIOUS_PLAN_BLEND_WEIGHT,
)
from .prices import build_composite_weights, build_price_factors, get_effective_flex_share

_LOGGER = logging.getLogger(__name__)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _hour_weights(bucket_starts: list[datetime], profile_weights: list[float], tz: tzinfo) -> list[float]:
    weights = []
    for start in bucket_starts:
        hour = get_hour_of_day(start, tz)
        weights.append(profile_weights[hour] if hour < len(profile_weights) else 0.0)
    return weights


def build_plan_weights(
    bucket_starts: list[datetime],
    tz: tzinfo,
    profile: dict,
    price_factors: list[float | None] | None,
    flex_share: float,
) -> dict:
    """Per-bucket weights. Only controlled load is shaped by price.

    A profile without split arrays is shaped as a whole. An all-zero
    controlled profile leaves the plan unshaped.
    """
    controlled_profile = profile.get("controlled") or []
    uncontrolled_profile = profile.get("uncontrolled") or []
    has_split = bool(controlled_profile) and bool(uncontrolled_profile)

    if not has_split:
        base = _hour_weights(bucket_starts, profile.get("combined") or [], tz)
        combined = build_composite_weights(base, price_factors, flex_share)
        return {
            "combined": combined,
            "uncontrolled": list(combined),
            "controlled": [0.0] * len(combined),
        }

    uncontrolled = _hour_weights(bucket_starts, uncontrolled_profile, tz)
    controlled = build_composite_weights(
        _hour_weights(bucket_starts, controlled_profile, tz), price_factors, flex_share
    )
    return {
        "combined": [u + c for u, c in zip(uncontrolled, controlled)],
        "uncontrolled": uncontrolled,
        "controlled": controlled,
    }


def resolve_split_shares(uncontrolled_weights: list[float], controlled_weights: list[float]) -> dict:
    """Fraction of each bucket attributed to uncontrolled and controlled load."""
    shares_uncontrolled = []
    shares_controlled = []
    for index, u_weight in enumerate(uncontrolled_weights):
        u = max(0.0, u_weight)
        c = max(0.0, controlled_weights[index] if index < len(controlled_weights) else 0.0)
        total = u + c
        if total <= 0:
            shares_uncontrolled.append(1.0)
            shares_controlled.append(0.0)
        else:
            shares_uncontrolled.append(u / total)
            shares_controlled.append(c / total)
    return {"uncontrolled": shares_uncontrolled, "controlled": shares_controlled}


def _observed_cap(max_observed, margin: float) -> float:
    if not _is_number(max_observed) or max_observed <= 0:
        return math.inf
    return max_observed * (1 + margin)


def _observed_min(min_observed, margin: float) -> float:
    if not _is_number(min_observed) or min_observed <= 0:
        return 0.0
    return max(0.0, min_observed * (1 - margin))


def _blend_bounds(uncontrolled: float, controlled: float, weight: float, floor: bool) -> float:
    """Weighted blend of the two observed bounds over the usable sides only."""
    uncontrolled_weight = 1 - weight
    weighted = 0.0
    total_weight = 0.0
    if math.isfinite(uncontrolled) and (not floor or uncontrolled > 0) and uncontrolled_weight > 0:
        weighted += uncontrolled_weight * uncontrolled
        total_weight += uncontrolled_weight
    if math.isfinite(controlled) and (not floor or controlled > 0) and weight > 0:
        weighted += weight * controlled
        total_weight += weight
    if total_weight <= EPSILON:
        return 0.0 if floor else math.inf
    return weighted / total_weight


def _observed_at(observed: dict | None, key: str, hour: int):
    values = (observed or {}).get(key)
    if isinstance(values, list) and hour < len(values):
        return values[hour]
    return None


def resolve_remaining_caps(
    *,
    bucket_starts: list[datetime],
    tz: tzinfo,
    split_shares: dict,
    controlled_usage_weight: float,
    observed: dict | None,
    margin: float,
    capacity_budget_kwh: float | None,
    used_in_current: float,
    remaining_start: int,
    current_index: int,
) -> list[float]:
    """Total-energy caps per remaining bucket from observed peaks and capacity."""
    weight = min(max(controlled_usage_weight, 0.0), 1.0)
    capacity_cap = max(0.0, capacity_budget_kwh) if _is_number(capacity_budget_kwh) else math.inf
    caps = []
    for bucket_index in range(remaining_start, len(bucket_starts)):
        hour = get_hour_of_day(bucket_starts[bucket_index], tz)
        blended = _blend_bounds(
            _observed_cap(_observed_at(observed, "observed_max_uncontrolled_kwh", hour), margin),
            _observed_cap(_observed_at(observed, "observed_max_controlled_kwh", hour), margin),
            weight,
            floor=False,
        )
        weighted_share = (1 - weight) * split_shares["uncontrolled"][bucket_index] + weight * split_shares["controlled"][bucket_index]
        total_cap = blended / weighted_share if math.isfinite(blended) and weighted_share > EPSILON else math.inf
        cap = min(capacity_cap, total_cap)
        if bucket_index == current_index:
            cap -= used_in_current
        caps.append(max(0.0, cap))
    return caps


def resolve_remaining_floors(
    *,
    bucket_starts: list[datetime],
    tz: tzinfo,
    split_shares: dict,
    controlled_usage_weight: float,
    observed: dict | None,
    margin: float,
    used_in_current: float,
    remaining_start: int,
    current_index: int,
) -> list[float]:
    """Total-energy floors per remaining bucket from observed minimums."""
    weight = min(max(controlled_usage_weight, 0.0), 1.0)
    floors = []
    for bucket_index in range(remaining_start, len(bucket_starts)):
        hour = get_hour_of_day(bucket_starts[bucket_index], tz)
        blended = _blend_bounds(
            _observed_min(_observed_at(observed, "observed_min_uncontrolled_kwh", hour), margin),
            _observed_min(_observed_at(observed, "observed_min_controlled_kwh", hour), margin),
            weight,
            floor=True,
        )
        weighted_share = (1 - weight) * split_shares["uncontrolled"][bucket_index] + weight * split_shares["controlled"][bucket_index]
        floor = blended / weighted_share if weighted_share > EPSILON else 0.0
        if bucket_index == current_index:
            floor -= used_in_current
        floors.append(max(0.0, floor))
    return floors


def resolve_remaining_weights(
    base_weights: list[float], remaining_start: int, previous_planned_kwh: list[float] | None
) -> list[float]:
    """Normalized weights for remaining buckets, eased toward the previous plan."""
    normalized = normalize_weights_with_fallback(base_weights[remaining_start:])
    if previous_planned_kwh:
        previous = normalize_weights(previous_planned_kwh[remaining_start:])
        blended = [
            previous[i] * PREVIOUS_PLAN_BLEND_WEIGHT + value * (1 - PREVIOUS_PLAN_BLEND_WEIGHT)
            if i < len(previous) else value
            for i, value in enumerate(normalized)
        ]
        normalized = normalize_weights(blended)
    return normalized


def resolve_remaining_budget(
    daily_budget_kwh: float,
    used_now_kwh: float,
    used_in_current: float,
    current_index: int,
    previous_planned_kwh: list[float] | None,
    lock_current: bool,
) -> float:
    """Budget left for the unlocked remainder of the day."""
    remaining = max(0.0, daily_budget_kwh - used_now_kwh)
    if not lock_current or not previous_planned_kwh:
        return remaining
    previous_current = previous_planned_kwh[current_index]
    planned_current = previous_current if _is_number(previous_current) else 0.0
    reserved = max(0.0, planned_current - used_in_current)
    return max(0.0, remaining - reserved)


def build_controlled_min_floors(
    bucket_starts: list[datetime], tz: tzinfo, observed: dict | None, margin: float, apply_from: int
) -> list[float]:
    floors = []
    for index, start in enumerate(bucket_starts):
        if index < apply_from:
            floors.append(0.0)
            continue
        hour = get_hour_of_day(start, tz)
        floors.append(_observed_min(_observed_at(observed, "observed_min_controlled_kwh", hour), margin))
    return floors


def build_planned_split(
    planned_kwh: list[float], split_shares: dict, controlled_floors: list[float]
) -> tuple[list[float], list[float]]:
    """Split planned totals; controlled is raised to its floor but never above the total."""
    planned_uncontrolled = []
    planned_controlled = []
    for index, planned in enumerate(planned_kwh):
        controlled = planned * split_shares["controlled"][index]
        floor = controlled_floors[index] if index < len(controlled_floors) else 0.0
        if floor > controlled:
            controlled = min(planned, floor)
        planned_controlled.append(controlled)
        planned_uncontrolled.append(max(0.0, planned - controlled))
    return planned_uncontrolled, planned_controlled


def build_plan(
    *,
    bucket_starts: list[datetime],
    bucket_usage: list[float],
    current_index: int,
    used_now_kwh: float,
    daily_budget_kwh: float,
    profile: dict,
    tz: tzinfo,
    prices=None,
    price_optimization_enabled: bool = True,
    price_shaping_enabled: bool = False,
    price_shaping_flex_share: float | None = None,
    previous_planned_kwh: list[float] | None = None,
    capacity_budget_kwh: float | None = None,
    lock_current_bucket: bool = False,
    controlled_usage_weight: float | None = None,
    observed: dict | None = None,
    observed_margin_ratio: float | None = None,
) -> dict:
    """Build the planned kWh for every bucket of the day.

    Buckets before the current one keep the previous plan's value (or their
    actual usage when no previous plan exists). The current bucket keeps its
    previous value when locked, otherwise it is what was used so far plus its
    share of the remaining budget. Future buckets get the allocator's output.
    """
    count = len(bucket_starts)
    current = max(0, current_index)
    has_previous = isinstance(previous_planned_kwh, list) and len(previous_planned_kwh) == count and count > 0
    previous = previous_planned_kwh if has_previous else None
    lock_current = bool(lock_current_bucket) and has_previous
    remaining_start = min(current + 1, count) if lock_current else current

    flex_share = price_shaping_flex_share if _is_number(price_shaping_flex_share) else DEFAULT_PRICE_SHAPING_FLEX_SHARE
    weight = controlled_usage_weight if _is_number(controlled_usage_weight) else DEFAULT_CONTROLLED_USAGE_WEIGHT
    margin = max(0.0, observed_margin_ratio) if _is_number(observed_margin_ratio) else OBSERVED_MARGIN_RATIO

    price_shape = build_price_factors(
        bucket_starts, current, prices, price_optimization_enabled, price_shaping_enabled
    )
    effective_flex = get_effective_flex_share(price_shape, flex_share)
    plan_weights = build_plan_weights(bucket_starts, tz, profile, price_shape["price_factors"], effective_flex)
    split_shares = resolve_split_shares(plan_weights["uncontrolled"], plan_weights["controlled"])
    used_in_current = bucket_usage[current] if current < len(bucket_usage) else 0.0

    remaining_weights = resolve_remaining_weights(plan_weights["combined"], remaining_start, previous)
    remaining_budget = resolve_remaining_budget(
        daily_budget_kwh, used_now_kwh, used_in_current, current, previous, lock_current
    )
    caps = resolve_remaining_caps(
        bucket_starts=bucket_starts,
        tz=tz,
        split_shares=split_shares,
        controlled_usage_weight=weight,
        observed=observed,
        margin=margin,
        capacity_budget_kwh=capacity_budget_kwh,
        used_in_current=used_in_current,
        remaining_start=remaining_start,
        current_index=current,
    )
    floors = resolve_remaining_floors(
        bucket_starts=bucket_starts,
        tz=tz,
        split_shares=split_shares,
        controlled_usage_weight=weight,
        observed=observed,
        margin=margin,
        used_in_current=used_in_current,
        remaining_start=remaining_start,
        current_index=current,
    )
    if remaining_weights and remaining_budget > 0:
        allocations = allocate_with_caps_and_floors(remaining_weights, remaining_budget, caps, floors)
    else:
        allocations = [0.0] * len(remaining_weights)

    planned_kwh = []
    for index in range(count):
        if index < current:
            value = previous[index] if previous is not None else None
            planned_kwh.append(value if _is_number(value) else bucket_usage[index])
        elif index == current:
            if lock_current:
                value = previous[index]
                planned_kwh.append(value if _is_number(value) else used_in_current)
            else:
                planned_kwh.append(used_in_current + (allocations[0] if allocations else 0.0))
        else:
            offset = index - remaining_start
            planned_kwh.append(allocations[offset] if 0 <= offset < len(allocations) else 0.0)

    controlled_floors = build_controlled_min_floors(bucket_starts, tz, observed, margin, remaining_start)
    planned_uncontrolled, planned_controlled = build_planned_split(planned_kwh, split_shares, controlled_floors)

    _LOGGER.debug(
        f"Built plan: {count} buckets, current {current}, locked {lock_current}, "
        f"remaining {remaining_budget:.3f} kWh, flex {effective_flex:.2f}"
    )

    return {
        "planned_kwh": planned_kwh,
        "planned_uncontrolled_kwh": planned_uncontrolled,
        "planned_controlled_kwh": planned_controlled,
        "prices": price_shape["prices"],
        "price_factors": price_shape["price_factors"],
        "price_shaping_active": price_shape["price_shaping_active"],
        "price_spread_factor": price_shape["price_spread_factor"],
        "effective_flex_share": effective_flex,
    }
