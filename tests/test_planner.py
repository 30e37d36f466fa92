"""Tests for the plan builder."""
from datetime import datetime, timedelta, timezone

import pytest

from custom_components.daily_energy_budget.planner import build_plan, build_planned_split

UTC = timezone.utc
DAY_START = datetime(2024, 1, 1, tzinfo=UTC)
STARTS = [DAY_START + timedelta(hours=i) for i in range(24)]
FLAT = {"combined": [1 / 24] * 24, "uncontrolled": [1 / 24] * 24, "controlled": [0.0] * 24}


def _plan(**kwargs):
    args = {
        "bucket_starts": STARTS,
        "bucket_usage": [0.0] * 24,
        "current_index": 0,
        "used_now_kwh": 0.0,
        "daily_budget_kwh": 24.0,
        "profile": FLAT,
        "tz": UTC,
    }
    args.update(kwargs)
    return build_plan(**args)


def test_flat_profile_spreads_budget_evenly():
    result = _plan()
    assert result["planned_kwh"] == pytest.approx([1.0] * 24)
    assert sum(result["planned_kwh"]) == pytest.approx(24.0)
    assert result["planned_controlled_kwh"] == [0.0] * 24
    assert not result["price_shaping_active"]


def test_past_buckets_use_actual_usage_without_previous_plan():
    usage = [2.0] + [0.0] * 23
    result = _plan(bucket_usage=usage, current_index=3, used_now_kwh=2.0)

    planned = result["planned_kwh"]
    assert planned[:3] == [2.0, 0.0, 0.0]
    assert planned[3:] == pytest.approx([22 / 21] * 21)
    assert sum(planned) == pytest.approx(24.0)


def test_past_buckets_keep_previous_plan():
    previous = [1.0] * 24
    usage = [3.0, 0.0, 0.0, 0.0] + [0.0] * 20
    result = _plan(bucket_usage=usage, current_index=2, used_now_kwh=3.0, previous_planned_kwh=previous)
    assert result["planned_kwh"][:2] == [1.0, 1.0]


def test_locked_current_bucket_keeps_allocation():
    usage = [0.0] * 24
    usage[3] = 0.4
    result = _plan(
        bucket_usage=usage,
        current_index=3,
        used_now_kwh=0.4,
        previous_planned_kwh=[1.0] * 24,
        lock_current_bucket=True,
    )

    planned = result["planned_kwh"]
    assert planned[3] == 1.0
    # What is left after the reserved 0.6 kWh of the locked bucket
    assert sum(planned[4:]) == pytest.approx(23.0)


def test_lock_ignored_without_previous_plan():
    result = _plan(current_index=3, lock_current_bucket=True)
    assert sum(result["planned_kwh"][3:]) == pytest.approx(24.0)


def test_observed_peak_caps_bucket():
    observed_max = [0.0] * 24
    observed_max[5] = 0.5
    result = _plan(
        controlled_usage_weight=0.0,
        observed={"observed_max_uncontrolled_kwh": observed_max},
    )

    planned = result["planned_kwh"]
    assert planned[5] == pytest.approx(0.6)
    assert planned[0] == pytest.approx((24 - 0.6) / 23)
    assert sum(planned) == pytest.approx(24.0)


def test_capacity_caps_every_bucket():
    result = _plan(daily_budget_kwh=48.0, capacity_budget_kwh=1.5)
    assert max(result["planned_kwh"]) <= 1.5 + 1e-9
    assert sum(result["planned_kwh"]) == pytest.approx(36.0)


STEP_PRICES = [
    {"starts_at": start.isoformat(), "total": 10.0 if i < 12 else 100.0}
    for i, start in enumerate(STARTS)
]
SPLIT = {"combined": [1 / 24] * 24, "uncontrolled": [0.5 / 24] * 24, "controlled": [0.5 / 24] * 24}


def test_cheap_hours_get_more_controlled_energy():
    result = _plan(profile=SPLIT, prices=STEP_PRICES, price_shaping_enabled=True)

    planned = result["planned_kwh"]
    assert result["price_shaping_active"]
    assert result["effective_flex_share"] == pytest.approx(0.35)
    assert planned[0] > planned[12]
    assert planned[0] == pytest.approx(planned[11])
    assert planned[0] / planned[12] == pytest.approx(1.0 / 0.9475)
    assert sum(planned) == pytest.approx(24.0)


def test_uncontrolled_load_is_not_price_shaped():
    result = _plan(prices=STEP_PRICES, price_shaping_enabled=True)

    assert result["price_shaping_active"]
    assert result["planned_kwh"] == pytest.approx([1.0] * 24)
    assert result["planned_controlled_kwh"] == [0.0] * 24


def test_price_optimization_disabled_keeps_shape():
    prices = [{"starts_at": start.isoformat(), "total": float(i)} for i, start in enumerate(STARTS)]
    result = _plan(prices=prices, price_shaping_enabled=True, price_optimization_enabled=False)
    assert not result["price_shaping_active"]
    assert result["planned_kwh"] == pytest.approx([1.0] * 24)


def test_split_profile_attributes_controlled_load():
    controlled = [0.0] * 24
    controlled[2] = 0.5
    profile = {"combined": FLAT["combined"], "uncontrolled": [0.5 / 24] * 24, "controlled": controlled}
    result = _plan(profile=profile)

    for total, uncontrolled, controlled_kwh in zip(
        result["planned_kwh"], result["planned_uncontrolled_kwh"], result["planned_controlled_kwh"]
    ):
        assert uncontrolled + controlled_kwh == pytest.approx(total)
    assert result["planned_controlled_kwh"][2] > 0
    assert result["planned_controlled_kwh"][3] == 0.0


def test_zero_budget_plans_nothing_ahead():
    result = _plan(daily_budget_kwh=0.0)
    assert result["planned_kwh"] == [0.0] * 24


def test_planned_split_raises_controlled_to_floor():
    shares = {"uncontrolled": [1.0, 1.0], "controlled": [0.0, 0.0]}
    uncontrolled, controlled = build_planned_split([1.0, 0.2], shares, [0.5, 0.5])
    assert controlled == [0.5, 0.2]
    assert uncontrolled == [0.5, 0.0]
