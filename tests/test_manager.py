"""Tests for the BudgetManager planning cycle."""
from datetime import datetime, timedelta, timezone

import pytest

from custom_components.daily_energy_budget.const import (
    PLAN_MODE_FROZEN,
    PLAN_MODE_LOCKED_CURRENT,
    PLAN_MODE_UNLOCKED,
)
from custom_components.daily_energy_budget.manager import BudgetManager, is_budget_enabled

UTC = timezone.utc
DAY_START = datetime(2024, 1, 1, tzinfo=UTC)


def _at(hour, minute=0, day=0):
    return DAY_START + timedelta(days=day, hours=hour, minutes=minute)


def _settings(budget=24.0, enabled=True, **extra):
    settings = {
        "enabled": enabled,
        "daily_budget_kwh": budget,
        "price_shaping_enabled": False,
        "controlled_usage_weight": 0.3,
        "price_shaping_flex_share": 0.35,
    }
    settings.update(extra)
    return settings


def _history(usage):
    return {"buckets": {_at(hour).isoformat(): kwh for hour, kwh in usage.items()}}


def test_is_budget_enabled():
    assert is_budget_enabled(_settings())
    assert not is_budget_enabled(_settings(enabled=False))
    assert not is_budget_enabled(_settings(budget=0.0))


def test_first_cycle_builds_plan():
    manager = BudgetManager()
    result = manager.update(_at(0, 30), "UTC", _settings(), {})

    snapshot = result["snapshot"]
    assert result["should_persist"]
    assert snapshot["date_key"] == "2024-01-01"
    assert snapshot["current_bucket_index"] == 0
    assert len(snapshot["buckets"]["planned_kwh"]) == 24
    assert sum(snapshot["buckets"]["planned_kwh"]) == pytest.approx(24.0)
    assert snapshot["state"]["plan_mode"] == PLAN_MODE_LOCKED_CURRENT
    assert not snapshot["state"]["frozen"]
    assert manager.snapshot is snapshot


def test_disabled_budget_plans_nothing():
    manager = BudgetManager()
    snapshot = manager.update(_at(8), "UTC", _settings(enabled=False), _history({7: 1.0}))["snapshot"]

    assert not snapshot["budget"]["enabled"]
    assert snapshot["buckets"]["planned_kwh"] == [0.0] * 24
    assert snapshot["state"]["allowed_now_kwh"] == 0.0
    assert snapshot["state"]["deviation_kwh"] == 0.0
    assert snapshot["state"]["used_now_kwh"] == 1.0


def test_overspend_freezes_plan():
    manager = BudgetManager()
    snapshot = manager.update(_at(0, 10), "UTC", _settings(budget=1.0), _history({0: 2.0}))["snapshot"]

    assert snapshot["state"]["frozen"]
    assert snapshot["state"]["exceeded"]
    assert snapshot["state"]["plan_mode"] == PLAN_MODE_FROZEN
    assert snapshot["buckets"]["planned_kwh"][0] == pytest.approx(2.0)


def test_frozen_plan_unfreezes_when_back_on_track():
    manager = BudgetManager()
    history = _history({0: 1.0})

    first = manager.update(_at(0, 10), "UTC", _settings(budget=10.0), history)["snapshot"]
    assert first["state"]["frozen"]
    frozen_plan = first["buckets"]["planned_kwh"]

    second = manager.update(_at(5, 30), "UTC", _settings(budget=10.0), history)["snapshot"]
    assert not second["state"]["frozen"]
    assert second["state"]["deviation_kwh"] < 0
    assert second["state"]["plan_mode"] == PLAN_MODE_UNLOCKED
    # No rebuild happened while frozen
    assert second["buckets"]["planned_kwh"] == frozen_plan


def test_persist_is_debounced():
    manager = BudgetManager()
    settings = _settings(enabled=False)

    assert manager.update(_at(10), "UTC", settings, {})["should_persist"]
    assert not manager.update(_at(10, 0) + timedelta(seconds=30), "UTC", settings, {})["should_persist"]
    assert manager.update(_at(10, 1) + timedelta(seconds=1), "UTC", settings, {})["should_persist"]


def test_rollover_with_zero_usage_does_not_learn():
    manager = BudgetManager()
    history = {"buckets": {_at(hour).isoformat(): 0.0 for hour in range(24)}}

    manager.update(_at(10), "UTC", _settings(), history)
    snapshot = manager.update(_at(1, day=1), "UTC", _settings(), history)["snapshot"]

    state = manager.export_state()
    assert state["profile_sample_count"] == 0
    assert state["date_key"] == "2024-01-02"
    assert snapshot["date_key"] == "2024-01-02"


def test_rollover_learns_previous_day():
    manager = BudgetManager()
    history = _history({10: 3.0})

    manager.update(_at(11), "UTC", _settings(), history)
    manager.update(_at(1, day=1), "UTC", _settings(), history)

    state = manager.export_state()
    assert state["profile_sample_count"] == 1
    assert state["profile_uncontrolled"]["weights"][10] == pytest.approx(1.0)
    assert state["observed_max_uncontrolled_kwh"][10] == pytest.approx(3.0)


def test_state_round_trip():
    manager = BudgetManager()
    manager.update(_at(10), "UTC", _settings(), _history({9: 1.0}))
    exported = manager.export_state()

    restored = BudgetManager()
    assert restored.load_state(exported)
    assert restored.export_state() == exported


def test_malformed_state_is_ignored():
    manager = BudgetManager()
    before = manager.export_state()

    assert not manager.load_state({"planned_kwh": "lots"})
    assert not manager.load_state(None)
    assert manager.export_state() == before


def test_reset_learning():
    manager = BudgetManager()
    manager.update(_at(11), "UTC", _settings(), _history({10: 3.0}))
    manager.update(_at(1, day=1), "UTC", _settings(), _history({10: 3.0}))

    manager.reset_learning()
    state = manager.export_state()
    assert state["profile_sample_count"] == 0
    assert state["observed_max_uncontrolled_kwh"] == [0.0] * 24


def test_preview_does_not_touch_state():
    manager = BudgetManager()
    manager.update(_at(10), "UTC", _settings(), {})
    before = manager.export_state()

    preview = manager.build_preview(_at(0, day=1), "UTC", _settings())

    assert manager.export_state() == before
    assert preview["date_key"] == "2024-01-02"
    assert preview["current_bucket_index"] == -1
    assert sum(preview["buckets"]["planned_kwh"]) == pytest.approx(24.0)
    assert preview["state"]["used_now_kwh"] == 0.0


def test_history_view():
    manager = BudgetManager()
    assert manager.build_history(DAY_START, "UTC", {}) is None

    history = {
        "buckets": {_at(8).isoformat(): 2.0},
        "daily_budget_caps": {_at(8).isoformat(): 1.5, _at(9).isoformat(): 1.0},
    }
    snapshot = manager.build_history(DAY_START, "UTC", history)

    assert snapshot["budget"]["daily_budget_kwh"] == pytest.approx(2.5)
    assert snapshot["state"]["used_now_kwh"] == pytest.approx(2.0)
    assert snapshot["state"]["allowed_now_kwh"] == pytest.approx(2.5)
    assert snapshot["buckets"]["planned_kwh"][8] == 1.5


def test_uncontrolled_plan_ignores_prices():
    prices = [{"starts_at": _at(h).isoformat(), "total": 10.0 if h < 12 else 100.0} for h in range(24)]

    plain = BudgetManager().update(_at(0, 5), "UTC", _settings(), {})["snapshot"]
    priced = BudgetManager().update(
        _at(0, 5), "UTC", _settings(price_shaping_enabled=True), {}, prices=prices
    )["snapshot"]

    assert priced["state"]["price_shaping_active"]
    assert priced["buckets"]["planned_kwh"] == pytest.approx(plain["buckets"]["planned_kwh"])


def test_snapshot_time_is_utc():
    local_now = datetime(2024, 1, 1, 13, 30, tzinfo=timezone(timedelta(hours=1)))
    snapshot = BudgetManager().update(local_now, "Europe/Oslo", _settings(), {})["snapshot"]
    assert snapshot["now_utc"] == "2024-01-01T12:30:00+00:00"
