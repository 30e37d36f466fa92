"""The Daily Energy Budget integration."""
from __future__ import annotations

import logging
import voluptuous as vol

from homeassistant.config_entries import ConfigEntry
from homeassistant.const import Platform, EVENT_HOMEASSISTANT_STOP
from homeassistant.core import HomeAssistant, ServiceCall, Event, SupportsResponse
from homeassistant.exceptions import ConfigEntryNotReady
from homeassistant.helpers import config_validation as cv
from homeassistant.helpers import entity_registry as er

from .const import (
    DOMAIN,
    CONF_BUDGET_ENABLED,
    CONF_DAILY_BUDGET_KWH,
    MIN_DAILY_BUDGET_KWH,
    MAX_DAILY_BUDGET_KWH,
    PLAN_DAY_TODAY,
    PLAN_DAY_TOMORROW,
    PLAN_DAY_YESTERDAY,
    SERVICE_GET_PLAN,
    SERVICE_REBUILD_PLAN,
    SERVICE_RESET_LEARNING,
    SERVICE_SET_DAILY_BUDGET,
)
from .coordinator import BudgetCoordinator

_LOGGER = logging.getLogger(__name__)

PLATFORMS: list[Platform] = [
    Platform.SENSOR,
    Platform.NUMBER,
    Platform.SWITCH,
]

SERVICE_SCHEMA_RESET = vol.Schema({})

SERVICE_SCHEMA_REBUILD = vol.Schema({})

SERVICE_SCHEMA_SET_DAILY_BUDGET = vol.Schema({
    vol.Required("daily_budget_kwh"): vol.All(
        vol.Coerce(float), vol.Range(min=MIN_DAILY_BUDGET_KWH, max=MAX_DAILY_BUDGET_KWH)
    ),
    vol.Optional("enabled"): cv.boolean,
})

SERVICE_SCHEMA_GET_PLAN = vol.Schema({
    vol.Optional("entity_id"): cv.entity_id,
    vol.Optional("day", default=PLAN_DAY_TODAY): vol.In(
        [PLAN_DAY_TODAY, PLAN_DAY_TOMORROW, PLAN_DAY_YESTERDAY]
    ),
})

def _get_coordinators(hass: HomeAssistant) -> list[BudgetCoordinator]:
    """Helper to get all active BudgetCoordinators."""
    return [
        coord
        for coord in hass.data.get(DOMAIN, {}).values()
        if isinstance(coord, BudgetCoordinator)
    ]

async def async_setup_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Set up Daily Energy Budget from a config entry."""

    hass.data.setdefault(DOMAIN, {})

    coordinator = BudgetCoordinator(hass, entry)
    try:
        await coordinator.async_config_entry_first_refresh()
    except Exception as ex:
        raise ConfigEntryNotReady(f"Timeout while waiting for initial data: {ex}") from ex

    hass.data[DOMAIN][entry.entry_id] = coordinator

    await hass.config_entries.async_forward_entry_setups(entry, PLATFORMS)

    entry.async_on_unload(entry.add_update_listener(async_update_options))

    # Register listener for Home Assistant Stop
    async def async_handle_stop(event: Event) -> None:
        """Handle Home Assistant stop event."""
        _LOGGER.info("Home Assistant stopping, saving Daily Energy Budget data.")
        await coordinator._async_save_data(force=True)

    entry.async_on_unload(
        hass.bus.async_listen_once(EVENT_HOMEASSISTANT_STOP, async_handle_stop)
    )

    # Register Reset Service
    async def handle_reset_learning(call: ServiceCall):
        """Handle the reset learning service call."""
        _LOGGER.info("Service called to reset learned usage profile.")

        for coord in _get_coordinators(hass):
            await coord.async_reset_learning_data()

    hass.services.async_register(
        DOMAIN,
        SERVICE_RESET_LEARNING,
        handle_reset_learning,
        schema=SERVICE_SCHEMA_RESET
    )

    # Register Rebuild Service
    async def handle_rebuild_plan(call: ServiceCall):
        """Handle the rebuild plan service call."""
        _LOGGER.info("Service called to rebuild the daily plan.")

        for coord in _get_coordinators(hass):
            coord.request_rebuild()
            await coord.async_request_refresh()

    hass.services.async_register(
        DOMAIN,
        SERVICE_REBUILD_PLAN,
        handle_rebuild_plan,
        schema=SERVICE_SCHEMA_REBUILD
    )

    # Register Set Budget Service
    async def handle_set_daily_budget(call: ServiceCall):
        """Handle the set daily budget service call."""
        budget = call.data["daily_budget_kwh"]
        enabled = call.data.get("enabled")
        _LOGGER.info(f"Service called to set daily budget to {budget} kWh")

        for coord in _get_coordinators(hass):
            await coord.async_set_setting(CONF_DAILY_BUDGET_KWH, budget)
            if enabled is not None:
                await coord.async_set_setting(CONF_BUDGET_ENABLED, enabled)

    hass.services.async_register(
        DOMAIN,
        SERVICE_SET_DAILY_BUDGET,
        handle_set_daily_budget,
        schema=SERVICE_SCHEMA_SET_DAILY_BUDGET
    )

    # Register Get Plan Service
    async def handle_get_plan(call: ServiceCall) -> dict:
        """Handle the get plan service call."""
        entity_id = call.data.get("entity_id")
        day = call.data.get("day", PLAN_DAY_TODAY)

        target_coordinator = None

        if entity_id:
            registry = er.async_get(hass)
            entity_entry = registry.async_get(entity_id)
            if entity_entry and entity_entry.config_entry_id:
                target_coordinator = hass.data[DOMAIN].get(entity_entry.config_entry_id)

        if not target_coordinator:
            # Default to first available
            coordinators = _get_coordinators(hass)
            if coordinators:
                target_coordinator = coordinators[0]

        if not target_coordinator:
            raise ValueError("No Daily Energy Budget instance found.")

        _LOGGER.debug(f"Handling get_plan for {day} (Coordinator: {target_coordinator.entry.entry_id})")

        return {"day": day, "plan": target_coordinator.get_plan(day)}

    hass.services.async_register(
        DOMAIN,
        SERVICE_GET_PLAN,
        handle_get_plan,
        schema=SERVICE_SCHEMA_GET_PLAN,
        supports_response=SupportsResponse.ONLY,
    )

    return True

async def async_update_options(hass: HomeAssistant, entry: ConfigEntry) -> None:
    """Apply changed options to the running coordinator."""
    coordinator = hass.data.get(DOMAIN, {}).get(entry.entry_id)
    if not coordinator:
        return
    coordinator.apply_options(entry.options)
    coordinator.request_rebuild()
    await coordinator._async_save_data(force=True)
    await coordinator.async_request_refresh()

async def async_unload_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Unload a config entry."""
    if unload_ok := await hass.config_entries.async_unload_platforms(entry, PLATFORMS):
        coordinator = hass.data[DOMAIN].pop(entry.entry_id)

        # Ensure final save before unload
        await coordinator._async_save_data(force=True)

        # Unregister services if this is the last entry
        if not hass.data[DOMAIN]:
            hass.services.async_remove(DOMAIN, SERVICE_RESET_LEARNING)
            hass.services.async_remove(DOMAIN, SERVICE_REBUILD_PLAN)
            hass.services.async_remove(DOMAIN, SERVICE_SET_DAILY_BUDGET)
            hass.services.async_remove(DOMAIN, SERVICE_GET_PLAN)

    return unload_ok
