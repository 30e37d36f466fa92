"""Price Shaper: bounded demand factors from the remaining-day price series."""
from __future__ import annotations

import math
from datetime import datetime

from .buckets import parse_instant
from .const import PRICE_FACTOR_MAX, PRICE_FACTOR_MIN


def _clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


def build_price_series(bucket_starts: list[datetime], prices) -> list[float | None] | None:
    """Map price entries onto bucket starts. None when no entries exist."""
    if not prices:
        return None
    price_by_start = {}
    for entry in prices:
        if not isinstance(entry, dict):
            continue
        start = parse_instant(entry.get("starts_at", entry.get("startsAt")))
        total = entry.get("total")
        if start is None or isinstance(total, bool) or not isinstance(total, (int, float)):
            continue
        if not math.isfinite(total):
            continue
        price_by_start[start] = float(total)
    if not price_by_start:
        return None
    return [price_by_start.get(start) for start in bucket_starts]


def percentile(sorted_values: list[float], ratio: float) -> float:
    """Lower-index percentile over an ascending list: sorted[floor(ratio * (n - 1))]."""
    if not sorted_values:
        return 0.0
    ratio = _clamp(ratio, 0.0, 1.0)
    index = int(math.floor(ratio * (len(sorted_values) - 1)))
    return sorted_values[index]


def build_price_factors(
    bucket_starts: list[datetime],
    current_index: int,
    prices,
    optimization_enabled: bool,
    shaping_enabled: bool,
) -> dict:
    """Price factors for the remaining buckets of the day.

    Shaping is active only when both flags are set and every remaining bucket
    has a known price. Factors lie in [0.7, 1.3] with cheaper-than-median
    hours above 1. Buckets before current_index get no factor.
    """
    start_index = max(0, current_index)
    series = build_price_series(bucket_starts, prices)
    result = {
        "prices": series,
        "price_factors": None,
        "price_shaping_active": False,
        "price_spread_factor": 0.0,
    }
    if series is None or not optimization_enabled or not shaping_enabled:
        return result

    remaining = series[start_index:]
    if not remaining or any(price is None for price in remaining):
        return result

    ordered = sorted(remaining)
    median = percentile(ordered, 0.5)
    p10 = percentile(ordered, 0.1)
    p90 = percentile(ordered, 0.9)
    spread = p90 - p10
    divisor = max(1.0, spread)

    factors = [None] * start_index + [
        _clamp(1 + (median - price) / divisor, PRICE_FACTOR_MIN, PRICE_FACTOR_MAX)
        for price in remaining
    ]
    result["price_factors"] = factors
    result["price_shaping_active"] = True
    result["price_spread_factor"] = _clamp(spread / max(1.0, abs(median)), 0.0, 1.0)
    return result


def get_effective_flex_share(price_shape: dict, configured_flex_share: float) -> float:
    """How much weight price may move: configured share scaled by the day's spread."""
    if not price_shape.get("price_shaping_active"):
        return 0.0
    return _clamp(configured_flex_share * price_shape.get("price_spread_factor", 0.0), 0.0, 1.0)


def build_composite_weights(
    base_weights: list[float], price_factors: list[float | None] | None, flex_share: float
) -> list[float]:
    """Blend each weight with its price factor: w*(1-f) + w*factor*f."""
    flex = _clamp(flex_share, 0.0, 1.0)
    composite = []
    for index, weight in enumerate(base_weights):
        factor = None
        if price_factors is not None and index < len(price_factors):
            factor = price_factors[index]
        if factor is None:
            factor = 1.0
        composite.append(weight * (1 - flex) + weight * factor * flex)
    return composite
