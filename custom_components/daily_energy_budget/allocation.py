"""Proportional water-filling allocation with per-bucket caps and floors."""
from __future__ import annotations

import math

from .const import ALLOCATION_EPSILON

EPSILON = ALLOCATION_EPSILON


def _clean(value) -> float:
    """Non-negative finite weight, anything else counts as zero."""
    if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value) and value > 0:
        return float(value)
    return 0.0


def normalize_weights(weights: list[float]) -> list[float]:
    """Scale weights to sum to 1. All zeros when nothing positive remains."""
    cleaned = [_clean(w) for w in weights]
    total = sum(cleaned)
    if total <= 0:
        return [0.0] * len(cleaned)
    return [w / total for w in cleaned]


def normalize_weights_with_fallback(weights: list[float]) -> list[float]:
    """Normalize weights, falling back to a uniform shape when degenerate."""
    normalized = normalize_weights(weights)
    if not normalized or sum(normalized) > 0:
        return normalized
    return [1.0 / len(normalized)] * len(normalized)


def _cap_value(cap) -> float:
    if cap is None:
        return math.inf
    if isinstance(cap, (int, float)) and not isinstance(cap, bool):
        if math.isnan(cap):
            return math.inf
        return max(float(cap), 0.0)
    return math.inf


def allocate_with_caps(weights: list[float], total: float, caps: list[float]) -> list[float]:
    """Distribute total proportionally to weights without exceeding caps.

    Buckets that hit their cap are filled exactly and the excess is carried
    over to the remaining active buckets on the next pass. When the active
    weights are all ~0 the remainder is split evenly instead. The number of
    passes is bounded by len(weights) + 3.
    """
    count = len(weights)
    allocations = [0.0] * count
    if count == 0 or not math.isfinite(total) or total <= EPSILON:
        return allocations

    clean_weights = [_clean(w) for w in weights]
    cap_remaining = [_cap_value(caps[i] if i < len(caps) else None) for i in range(count)]
    active = [i for i in range(count) if cap_remaining[i] > EPSILON]
    remaining = float(total)
    iterations = 0

    while remaining > EPSILON and active and iterations < count + 3:
        iterations += 1
        weight_sum = sum(clean_weights[i] for i in active)
        next_active = []

        if weight_sum <= EPSILON:
            even_share = remaining / len(active)
            for i in active:
                add = min(cap_remaining[i], even_share)
                allocations[i] += add
                cap_remaining[i] -= add
                remaining -= add
                if cap_remaining[i] > EPSILON:
                    next_active.append(i)
            active = next_active
            continue

        overflow = 0.0
        for i in active:
            share = remaining * clean_weights[i] / weight_sum
            if cap_remaining[i] <= EPSILON:
                overflow += share
                continue
            if share >= cap_remaining[i] - EPSILON:
                add = cap_remaining[i]
                allocations[i] += add
                overflow += share - add
                cap_remaining[i] = 0.0
            else:
                allocations[i] += share
                cap_remaining[i] -= share
                next_active.append(i)

        remaining = overflow
        active = next_active

    return allocations


def allocate_with_caps_and_floors(
    weights: list[float], total: float, caps: list[float], floors: list[float]
) -> list[float]:
    """Allocate floors first, then water-fill the remainder under the caps."""
    count = len(weights)
    if count == 0:
        return []
    if not math.isfinite(total) or total <= 0:
        return [0.0] * count

    cap_values = [_cap_value(caps[i] if i < len(caps) else None) for i in range(count)]
    clamped_floors = []
    for i in range(count):
        floor = _clean(floors[i] if i < len(floors) else 0.0)
        clamped_floors.append(min(floor, cap_values[i]))

    floor_sum = sum(clamped_floors)
    if floor_sum > total and floor_sum > 0:
        scale = total / floor_sum
        clamped_floors = [f * scale for f in clamped_floors]
        floor_sum = total

    remaining = max(0.0, total - floor_sum)
    remaining_caps = [max(0.0, cap_values[i] - clamped_floors[i]) for i in range(count)]
    allocations = allocate_with_caps(weights, remaining, remaining_caps)
    return [clamped_floors[i] + allocations[i] for i in range(count)]
