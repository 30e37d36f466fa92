"""Switch platform for Daily Energy Budget."""
from __future__ import annotations

from homeassistant.components.switch import SwitchEntity
from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant
from homeassistant.helpers.entity_platform import AddEntitiesCallback
from homeassistant.helpers.update_coordinator import CoordinatorEntity
from homeassistant.const import EntityCategory

from .const import DOMAIN, CONF_BUDGET_ENABLED, CONF_PRICE_SHAPING_ENABLED
from .coordinator import BudgetCoordinator

async def async_setup_entry(
    hass: HomeAssistant,
    entry: ConfigEntry,
    async_add_entities: AddEntitiesCallback,
) -> None:
    """Set up Daily Energy Budget switches based on a config entry."""
    coordinator: BudgetCoordinator = hass.data[DOMAIN][entry.entry_id]

    entities = [
        BudgetEnabledSwitch(coordinator, entry),
        BudgetPriceShapingSwitch(coordinator, entry),
    ]

    async_add_entities(entities)


class BudgetSwitchBase(CoordinatorEntity, SwitchEntity):
    """Base class for Daily Energy Budget switches."""

    _attr_entity_category = EntityCategory.CONFIG
    _setting_key: str = ""

    def __init__(self, coordinator: BudgetCoordinator, entry: ConfigEntry) -> None:
        """Initialize."""
        super().__init__(coordinator)
        self.entry = entry
        self._attr_has_entity_name = True

    @property
    def device_info(self):
        """Return device information."""
        return {
            "identifiers": {(DOMAIN, self.entry.entry_id)},
            "name": self.entry.title,
            "manufacturer": "Daily Energy Budget",
        }

    @property
    def is_on(self) -> bool:
        """Return true if switch is on."""
        return bool(self.coordinator.settings.get(self._setting_key))

    async def async_turn_on(self, **kwargs) -> None:
        """Turn the switch on."""
        await self.coordinator.async_set_setting(self._setting_key, True)
        self.async_write_ha_state()

    async def async_turn_off(self, **kwargs) -> None:
        """Turn the switch off."""
        await self.coordinator.async_set_setting(self._setting_key, False)
        self.async_write_ha_state()

    @property
    def unique_id(self) -> str:
        return f"{self.entry.entry_id}_{self._setting_key}"


class BudgetEnabledSwitch(BudgetSwitchBase):
    """Switch to enable/disable daily budget planning."""

    _attr_name = "Budget Enabled"
    _attr_icon = "mdi:calendar-check"
    _setting_key = CONF_BUDGET_ENABLED


class BudgetPriceShapingSwitch(BudgetSwitchBase):
    """Switch to let hourly prices shift the flexible part of the plan."""

    _attr_name = "Price Shaping"
    _attr_icon = "mdi:cash-sync"
    _setting_key = CONF_PRICE_SHAPING_ENABLED
