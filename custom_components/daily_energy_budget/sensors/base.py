"""Base sensor for Daily Energy Budget."""
from __future__ import annotations

from homeassistant.components.sensor import SensorEntity
from homeassistant.config_entries import ConfigEntry
from homeassistant.helpers.update_coordinator import CoordinatorEntity

from ..const import DOMAIN
from ..coordinator import BudgetCoordinator


class BudgetBaseSensor(CoordinatorEntity, SensorEntity):
    """Base class for Daily Energy Budget sensors."""

    def __init__(self, coordinator: BudgetCoordinator, entry: ConfigEntry) -> None:
        """Initialize the sensor."""
        super().__init__(coordinator)
        self.entry = entry
        self._attr_has_entity_name = True

    @property
    def snapshot(self) -> dict | None:
        """Latest budget snapshot, or None before the first update."""
        return (self.coordinator.data or {}).get("snapshot")

    def _state_value(self, key: str, default=None):
        snapshot = self.snapshot
        if not snapshot:
            return default
        return snapshot["state"].get(key, default)

    @property
    def device_info(self):
        """Return device information."""
        return {
            "identifiers": {(DOMAIN, self.entry.entry_id)},
            "name": self.entry.title,
            "manufacturer": "Daily Energy Budget",
        }
