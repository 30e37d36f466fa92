"""Test the BudgetCoordinator update cycle."""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch, AsyncMock

import pytest

from custom_components.daily_energy_budget.coordinator import BudgetCoordinator

NOW = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)


def _state(value, unit="kWh", attributes=None):
    state = MagicMock()
    state.state = value
    state.attributes = {"unit_of_measurement": unit, **(attributes or {})}
    return state


@pytest.fixture
def states():
    return {"sensor.house_energy": _state("100.0")}


@pytest.fixture
def coordinator(hass, entry, states):
    hass.config.time_zone = "UTC"
    hass.states.get.side_effect = lambda entity_id: states.get(entity_id)
    entry.options = {"budget_enabled": True, "daily_budget_kwh": 24.0}

    with patch("custom_components.daily_energy_budget.storage.Store") as mock_store_cls:
        mock_store = mock_store_cls.return_value
        mock_store.async_load = AsyncMock(return_value={})
        mock_store.async_save = AsyncMock()
        coord = BudgetCoordinator(hass, entry)
    return coord


async def _update(coordinator, now):
    with patch("custom_components.daily_energy_budget.coordinator.dt_util.now", return_value=now):
        return await coordinator._async_update_data()


def test_options_seed_settings(coordinator):
    assert coordinator.settings["budget_enabled"] is True
    assert coordinator.settings["daily_budget_kwh"] == 24.0
    assert coordinator.settings["price_shaping_flex_share"] == 0.35
    assert coordinator.engine_settings()["enabled"] is True


@pytest.mark.asyncio
async def test_update_builds_snapshot(coordinator, states):
    data = await _update(coordinator, NOW)

    snapshot = data["snapshot"]
    assert coordinator._is_loaded
    assert snapshot["budget"]["enabled"]
    assert snapshot["current_bucket_index"] == 10
    assert snapshot["state"]["used_now_kwh"] == 0.0
    assert data["daily_soft_limit_kw"] > 0
    assert data["hourly_soft_limit_kw"] is None
    coordinator.storage._store.async_save.assert_awaited()

    states["sensor.house_energy"] = _state("100200", unit="Wh")
    data = await _update(coordinator, NOW + timedelta(minutes=1))

    assert data["snapshot"]["state"]["used_now_kwh"] == pytest.approx(0.2)
    assert coordinator.tracker.buckets["2024-01-15T10:00:00+00:00"] == pytest.approx(0.2)
    # The committed plan for this hour is recorded for history
    assert "2024-01-15T10:00:00+00:00" in coordinator.tracker.daily_budget_caps


@pytest.mark.asyncio
async def test_unavailable_meter_is_unreliable(coordinator, states):
    await _update(coordinator, NOW)
    states["sensor.house_energy"] = _state("unavailable")
    await _update(coordinator, NOW + timedelta(minutes=1))

    history = coordinator.tracker.as_history()
    assert history["unreliable_periods"][0]["start"] == (NOW + timedelta(minutes=1)).isoformat()


@pytest.mark.asyncio
async def test_hourly_soft_limit_with_capacity(hass, entry, states):
    hass.config.time_zone = "UTC"
    hass.states.get.side_effect = lambda entity_id: states.get(entity_id)
    entry.data = {"energy_sensor": "sensor.house_energy", "capacity_limit_kw": 5.0}

    with patch("custom_components.daily_energy_budget.storage.Store") as mock_store_cls:
        mock_store_cls.return_value.async_load = AsyncMock(return_value={})
        mock_store_cls.return_value.async_save = AsyncMock()
        coord = BudgetCoordinator(hass, entry)

    data = await _update(coord, NOW)

    # 5 kWh left with half an hour to go
    assert data["hourly_soft_limit_kw"] == pytest.approx(10.0)
    assert data["hourly_budget_exhausted"] is False
    assert data["shortfall_threshold_kw"] == pytest.approx(10.0)
    # Budget disabled by default: no daily limit
    assert data["daily_soft_limit_kw"] is None


@pytest.mark.asyncio
async def test_prices_reach_the_plan(coordinator, states):
    day = datetime(2024, 1, 15, tzinfo=timezone.utc)
    prices = [
        {"startsAt": (day + timedelta(hours=h)).isoformat(), "total": 1.0 if h < 18 else 3.0}
        for h in range(24)
    ]
    coordinator.price_entity = "sensor.prices"
    coordinator.settings["price_shaping_enabled"] = True
    states["sensor.prices"] = _state("1.0", unit="NOK/kWh", attributes={"today": prices})

    data = await _update(coordinator, NOW)

    assert data["snapshot"]["state"]["price_shaping_active"]
    assert data["snapshot"]["buckets"]["price"][12] == 1.0


@pytest.mark.asyncio
async def test_engine_failure_keeps_previous_data(coordinator):
    previous = await _update(coordinator, NOW)

    with patch.object(coordinator.manager, "update", side_effect=RuntimeError("boom")):
        data = await _update(coordinator, NOW + timedelta(minutes=1))

    assert data is previous


@pytest.mark.asyncio
async def test_set_setting_clamps_and_rebuilds(coordinator):
    coordinator.storage.async_save_data = AsyncMock()

    await coordinator.async_set_setting("daily_budget_kwh", 2000)

    assert coordinator.settings["daily_budget_kwh"] == 1000.0
    assert coordinator._force_rebuild
    coordinator.storage.async_save_data.assert_awaited_once_with(True)
    assert coordinator.refresh_requests == 1

    await coordinator.async_set_setting("not_a_setting", 1)
    assert "not_a_setting" not in coordinator.settings
    assert coordinator.refresh_requests == 1


@pytest.mark.asyncio
async def test_get_plan_days(coordinator):
    await _update(coordinator, NOW)

    with patch("custom_components.daily_energy_budget.coordinator.dt_util.now", return_value=NOW):
        today = coordinator.get_plan("today")
        tomorrow = coordinator.get_plan("tomorrow")
        yesterday = coordinator.get_plan("yesterday")

    assert today is coordinator.manager.snapshot
    assert tomorrow["date_key"] == "2024-01-16"
    assert sum(tomorrow["buckets"]["planned_kwh"]) == pytest.approx(24.0)
    assert yesterday is None
