"""Number platform for Daily Energy Budget."""
from __future__ import annotations

from homeassistant.components.number import (
    NumberEntity,
    NumberMode,
)
from homeassistant.config_entries import ConfigEntry
from homeassistant.const import EntityCategory, UnitOfEnergy
from homeassistant.core import HomeAssistant
from homeassistant.helpers.entity_platform import AddEntitiesCallback
from homeassistant.helpers.update_coordinator import CoordinatorEntity

from .const import (
    DOMAIN,
    CONF_DAILY_BUDGET_KWH,
    CONF_CONTROLLED_USAGE_WEIGHT,
    CONF_PRICE_SHAPING_FLEX_SHARE,
    MIN_DAILY_BUDGET_KWH,
    MAX_DAILY_BUDGET_KWH,
)
from .coordinator import BudgetCoordinator


async def async_setup_entry(
    hass: HomeAssistant,
    entry: ConfigEntry,
    async_add_entities: AddEntitiesCallback,
) -> None:
    """Set up Daily Energy Budget numbers based on a config entry."""
    coordinator: BudgetCoordinator = hass.data[DOMAIN][entry.entry_id]

    entities = [
        BudgetDailyBudgetNumber(coordinator, entry),
        BudgetControlledWeightNumber(coordinator, entry),
        BudgetFlexShareNumber(coordinator, entry),
    ]

    async_add_entities(entities)


class BudgetNumberBase(CoordinatorEntity, NumberEntity):
    """Base class for Daily Energy Budget numbers."""

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
    def native_value(self) -> float:
        """Return the value."""
        return float(self.coordinator.settings.get(self._setting_key) or 0.0)

    async def async_set_native_value(self, value: float) -> None:
        """Set the value."""
        await self.coordinator.async_set_setting(self._setting_key, value)
        self.async_write_ha_state()

    @property
    def unique_id(self) -> str:
        return f"{self.entry.entry_id}_{self._setting_key}"


class BudgetDailyBudgetNumber(BudgetNumberBase):
    """Number for the daily energy budget. Zero disables planning."""

    _attr_name = "Daily Budget"
    _attr_mode = NumberMode.BOX
    _attr_native_min_value = MIN_DAILY_BUDGET_KWH
    _attr_native_max_value = MAX_DAILY_BUDGET_KWH
    _attr_native_step = 0.5
    _attr_icon = "mdi:lightning-bolt"
    _attr_native_unit_of_measurement = UnitOfEnergy.KILO_WATT_HOUR
    _setting_key = CONF_DAILY_BUDGET_KWH


class BudgetControlledWeightNumber(BudgetNumberBase):
    """Number for how strongly controlled usage shapes the plan."""

    _attr_name = "Controlled Usage Weight"
    _attr_mode = NumberMode.SLIDER
    _attr_native_min_value = 0.0
    _attr_native_max_value = 1.0
    _attr_native_step = 0.05
    _attr_icon = "mdi:tune-variant"
    _setting_key = CONF_CONTROLLED_USAGE_WEIGHT


class BudgetFlexShareNumber(BudgetNumberBase):
    """Number for the share of the plan that may follow prices."""

    _attr_name = "Price Flex Share"
    _attr_mode = NumberMode.SLIDER
    _attr_native_min_value = 0.0
    _attr_native_max_value = 1.0
    _attr_native_step = 0.05
    _attr_icon = "mdi:cash-clock"
    _setting_key = CONF_PRICE_SHAPING_FLEX_SHARE
