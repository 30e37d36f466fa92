"""Test integration setup and services."""
from unittest.mock import MagicMock, patch, AsyncMock

import pytest
from homeassistant.exceptions import ConfigEntryNotReady

from custom_components.daily_energy_budget import async_setup_entry, async_unload_entry
from custom_components.daily_energy_budget.const import (
    DOMAIN,
    SERVICE_GET_PLAN,
    SERVICE_REBUILD_PLAN,
    SERVICE_RESET_LEARNING,
    SERVICE_SET_DAILY_BUDGET,
)


@pytest.fixture
def handlers(hass):
    """Capture registered service handlers."""
    captured = {}

    def mock_register(domain, service, callback, schema=None, supports_response=None):
        if domain == DOMAIN:
            captured[service] = callback

    hass.data = {}
    hass.services.async_register = MagicMock(side_effect=mock_register)
    hass.config_entries.async_forward_entry_setups = AsyncMock()
    return captured


@pytest.fixture
def mock_coord():
    with patch("custom_components.daily_energy_budget.BudgetCoordinator") as mock_coord_cls:
        coord = mock_coord_cls.return_value
        coord.async_config_entry_first_refresh = AsyncMock()
        coord.async_reset_learning_data = AsyncMock()
        coord.async_request_refresh = AsyncMock()
        coord.async_set_setting = AsyncMock()
        coord._async_save_data = AsyncMock()
        coord.entry.entry_id = "test_entry"
        yield coord


@pytest.mark.asyncio
async def test_services_registered(hass, entry, handlers, mock_coord):
    assert await async_setup_entry(hass, entry)

    assert hass.data[DOMAIN]["test_entry"] is mock_coord
    assert set(handlers) == {
        SERVICE_RESET_LEARNING,
        SERVICE_REBUILD_PLAN,
        SERVICE_SET_DAILY_BUDGET,
        SERVICE_GET_PLAN,
    }
    hass.config_entries.async_forward_entry_setups.assert_awaited_once()


@pytest.mark.asyncio
async def test_first_refresh_failure_is_not_ready(hass, entry, handlers, mock_coord):
    mock_coord.async_config_entry_first_refresh = AsyncMock(side_effect=Exception("meter missing"))

    with pytest.raises(ConfigEntryNotReady):
        await async_setup_entry(hass, entry)
    assert "test_entry" not in hass.data[DOMAIN]


@pytest.mark.asyncio
async def test_service_calls_reach_coordinator(hass, entry, handlers, mock_coord):
    with patch("custom_components.daily_energy_budget._get_coordinators", return_value=[mock_coord]):
        await async_setup_entry(hass, entry)

        await handlers[SERVICE_RESET_LEARNING](MagicMock())
        mock_coord.async_reset_learning_data.assert_awaited_once()

        await handlers[SERVICE_REBUILD_PLAN](MagicMock())
        mock_coord.request_rebuild.assert_called_once()
        mock_coord.async_request_refresh.assert_awaited_once()

        call = MagicMock()
        call.data = {"daily_budget_kwh": 18.0, "enabled": True}
        await handlers[SERVICE_SET_DAILY_BUDGET](call)
        assert mock_coord.async_set_setting.await_args_list[0].args == ("daily_budget_kwh", 18.0)
        assert mock_coord.async_set_setting.await_args_list[1].args == ("budget_enabled", True)


@pytest.mark.asyncio
async def test_get_plan_response(hass, entry, handlers, mock_coord):
    mock_coord.get_plan.return_value = {"date_key": "2024-01-16"}

    with patch("custom_components.daily_energy_budget._get_coordinators", return_value=[mock_coord]):
        await async_setup_entry(hass, entry)

        call = MagicMock()
        call.data = {"day": "tomorrow"}
        response = await handlers[SERVICE_GET_PLAN](call)

    mock_coord.get_plan.assert_called_once_with("tomorrow")
    assert response == {"day": "tomorrow", "plan": {"date_key": "2024-01-16"}}


@pytest.mark.asyncio
async def test_get_plan_without_instance(hass, entry, handlers, mock_coord):
    with patch("custom_components.daily_energy_budget._get_coordinators", return_value=[]):
        await async_setup_entry(hass, entry)

        call = MagicMock()
        call.data = {"day": "today"}
        with pytest.raises(ValueError):
            await handlers[SERVICE_GET_PLAN](call)


@pytest.mark.asyncio
async def test_unload_saves_and_removes_services(hass, entry, handlers, mock_coord):
    hass.config_entries.async_unload_platforms = AsyncMock(return_value=True)
    hass.services.async_remove = MagicMock()
    await async_setup_entry(hass, entry)

    assert await async_unload_entry(hass, entry)

    mock_coord._async_save_data.assert_awaited_with(force=True)
    assert hass.services.async_remove.call_count == 4
    assert hass.data[DOMAIN] == {}
