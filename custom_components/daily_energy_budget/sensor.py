"""Sensor platform for Daily Energy Budget."""
from __future__ import annotations

import logging

from homeassistant.components.sensor import (
    SensorDeviceClass,
    SensorStateClass,
)
from homeassistant.config_entries import ConfigEntry
from homeassistant.const import UnitOfEnergy, UnitOfPower, PERCENTAGE, EntityCategory
from homeassistant.core import HomeAssistant
from homeassistant.helpers.entity_platform import AddEntitiesCallback

from .const import (
    DOMAIN,
    ATTR_DATE_KEY,
    ATTR_CURRENT_BUCKET_INDEX,
    ATTR_PLAN_MODE,
    ATTR_CONFIDENCE,
    ATTR_PRICE_SHAPING_ACTIVE,
    ATTR_EFFECTIVE_FLEX_SHARE,
    ATTR_PLANNED_KWH,
    ATTR_ACTUAL_KWH,
    ATTR_ALLOWED_CUM_KWH,
    ATTR_START_LABELS,
    ATTR_PRICE_FACTOR,
    ATTR_EXCEEDED,
    ATTR_FROZEN,
)
from .coordinator import BudgetCoordinator
from .sensors.base import BudgetBaseSensor

_LOGGER = logging.getLogger(__name__)


async def async_setup_entry(
    hass: HomeAssistant,
    entry: ConfigEntry,
    async_add_entities: AddEntitiesCallback,
) -> None:
    """Set up Daily Energy Budget sensors based on a config entry."""
    coordinator: BudgetCoordinator = hass.data[DOMAIN][entry.entry_id]

    entities = [
        BudgetUsedTodaySensor(coordinator, entry),
        BudgetAllowedNowSensor(coordinator, entry),
        BudgetRemainingSensor(coordinator, entry),
        BudgetDeviationSensor(coordinator, entry),
        BudgetPlannedBucketSensor(coordinator, entry),
        BudgetConfidenceSensor(coordinator, entry),
        BudgetDailySoftLimitSensor(coordinator, entry),
    ]

    # Hourly capacity limit only exists when configured
    if coordinator.capacity_limit_kw:
        entities.append(BudgetHourlySoftLimitSensor(coordinator, entry))

    async_add_entities(entities)


class BudgetUsedTodaySensor(BudgetBaseSensor):
    """Sensor for energy used since local midnight."""

    _attr_name = "Used Today"
    _attr_native_unit_of_measurement = UnitOfEnergy.KILO_WATT_HOUR
    _attr_device_class = SensorDeviceClass.ENERGY
    _attr_state_class = SensorStateClass.TOTAL
    _attr_icon = "mdi:counter"

    @property
    def native_value(self) -> float | None:
        """Return the state of the sensor."""
        value = self._state_value("used_now_kwh")
        return round(value, 3) if value is not None else None

    @property
    def unique_id(self) -> str:
        """Return a unique ID."""
        return f"{self.entry.entry_id}_used_today"


class BudgetAllowedNowSensor(BudgetBaseSensor):
    """Sensor for the cumulative energy the plan allows by now.

    Carries the whole daily plan as attributes so dashboards can chart
    planned against actual per hour.
    """

    _attr_name = "Allowed Now"
    _attr_native_unit_of_measurement = UnitOfEnergy.KILO_WATT_HOUR
    _attr_state_class = SensorStateClass.MEASUREMENT
    _attr_icon = "mdi:chart-bell-curve-cumulative"

    @property
    def native_value(self) -> float | None:
        """Return the state of the sensor."""
        value = self._state_value("allowed_now_kwh")
        return round(value, 3) if value is not None else None

    @property
    def extra_state_attributes(self):
        """Return the plan arrays."""
        snapshot = self.snapshot
        if not snapshot:
            return {}
        buckets = snapshot["buckets"]
        state = snapshot["state"]
        return {
            ATTR_DATE_KEY: snapshot["date_key"],
            ATTR_CURRENT_BUCKET_INDEX: snapshot["current_bucket_index"],
            ATTR_PLAN_MODE: state["plan_mode"],
            ATTR_PRICE_SHAPING_ACTIVE: state["price_shaping_active"],
            ATTR_EFFECTIVE_FLEX_SHARE: round(state["effective_flex_share"], 3),
            ATTR_START_LABELS: buckets["start_local_labels"],
            ATTR_PLANNED_KWH: [round(v, 3) for v in buckets["planned_kwh"]],
            ATTR_ACTUAL_KWH: [round(v, 3) for v in buckets["actual_kwh"]],
            ATTR_ALLOWED_CUM_KWH: [round(v, 3) for v in buckets["allowed_cum_kwh"]],
            ATTR_PRICE_FACTOR: [round(v, 3) if v is not None else None for v in buckets["price_factor"]],
            "price": buckets["price"],
            "planned_uncontrolled_kwh": [round(v, 3) for v in buckets["planned_uncontrolled_kwh"]],
            "planned_controlled_kwh": [round(v, 3) for v in buckets["planned_controlled_kwh"]],
        }

    @property
    def unique_id(self) -> str:
        """Return a unique ID."""
        return f"{self.entry.entry_id}_allowed_now"


class BudgetRemainingSensor(BudgetBaseSensor):
    """Sensor for budget left today."""

    _attr_name = "Remaining Today"
    _attr_native_unit_of_measurement = UnitOfEnergy.KILO_WATT_HOUR
    _attr_state_class = SensorStateClass.MEASUREMENT
    _attr_icon = "mdi:battery-clock"

    @property
    def native_value(self) -> float | None:
        """Return the state of the sensor."""
        value = self._state_value("remaining_kwh")
        return round(value, 3) if value is not None else None

    @property
    def unique_id(self) -> str:
        """Return a unique ID."""
        return f"{self.entry.entry_id}_remaining_today"


class BudgetDeviationSensor(BudgetBaseSensor):
    """Sensor for usage above (positive) or below the allowed curve."""

    _attr_name = "Deviation"
    _attr_native_unit_of_measurement = UnitOfEnergy.KILO_WATT_HOUR
    _attr_state_class = SensorStateClass.MEASUREMENT
    _attr_icon = "mdi:scale-unbalanced"

    @property
    def native_value(self) -> float | None:
        """Return the state of the sensor."""
        value = self._state_value("deviation_kwh")
        return round(value, 3) if value is not None else None

    @property
    def extra_state_attributes(self):
        """Return freeze state."""
        return {
            ATTR_EXCEEDED: self._state_value("exceeded", False),
            ATTR_FROZEN: self._state_value("frozen", False),
            ATTR_PLAN_MODE: self._state_value("plan_mode"),
        }

    @property
    def unique_id(self) -> str:
        """Return a unique ID."""
        return f"{self.entry.entry_id}_deviation"


class BudgetPlannedBucketSensor(BudgetBaseSensor):
    """Sensor for the planned kWh of the hour in progress."""

    _attr_name = "Planned This Hour"
    _attr_native_unit_of_measurement = UnitOfEnergy.KILO_WATT_HOUR
    _attr_state_class = SensorStateClass.MEASUREMENT
    _attr_icon = "mdi:clock-outline"

    @property
    def native_value(self) -> float | None:
        """Return the state of the sensor."""
        snapshot = self.snapshot
        if not snapshot:
            return None
        index = snapshot["current_bucket_index"]
        planned = snapshot["buckets"]["planned_kwh"]
        if not 0 <= index < len(planned):
            return None
        return round(planned[index], 3)

    @property
    def extra_state_attributes(self):
        """Return the actual usage in the current hour."""
        snapshot = self.snapshot
        if not snapshot:
            return {}
        index = snapshot["current_bucket_index"]
        actual = snapshot["buckets"]["actual_kwh"]
        labels = snapshot["buckets"]["start_local_labels"]
        if not 0 <= index < len(actual):
            return {}
        return {
            "bucket_start": labels[index],
            ATTR_ACTUAL_KWH: round(actual[index], 3),
        }

    @property
    def unique_id(self) -> str:
        """Return a unique ID."""
        return f"{self.entry.entry_id}_planned_this_hour"


class BudgetConfidenceSensor(BudgetBaseSensor):
    """Sensor for how much of the learned profile is trusted."""

    _attr_name = "Profile Confidence"
    _attr_native_unit_of_measurement = PERCENTAGE
    _attr_state_class = SensorStateClass.MEASUREMENT
    _attr_entity_category = EntityCategory.DIAGNOSTIC
    _attr_icon = "mdi:school"

    @property
    def native_value(self) -> float | None:
        """Return the state of the sensor."""
        value = self._state_value(ATTR_CONFIDENCE)
        return round(value * 100, 1) if value is not None else None

    @property
    def extra_state_attributes(self):
        state = self.coordinator.manager.export_state()
        return {
            "profile_sample_count": state.get("profile_sample_count", 0),
            "profile_split_sample_count": state.get("profile_split_sample_count", 0),
            "profile_controlled_share": round(state.get("profile_controlled_share", 0.0), 3),
        }

    @property
    def unique_id(self) -> str:
        """Return a unique ID."""
        return f"{self.entry.entry_id}_profile_confidence"


class BudgetDailySoftLimitSensor(BudgetBaseSensor):
    """Power that finishes the current hour on its planned kWh."""

    _attr_name = "Daily Soft Limit"
    _attr_native_unit_of_measurement = UnitOfPower.KILO_WATT
    _attr_device_class = SensorDeviceClass.POWER
    _attr_state_class = SensorStateClass.MEASUREMENT
    _attr_icon = "mdi:speedometer"

    @property
    def native_value(self) -> float | None:
        """Return the state of the sensor."""
        return (self.coordinator.data or {}).get("daily_soft_limit_kw")

    @property
    def unique_id(self) -> str:
        """Return a unique ID."""
        return f"{self.entry.entry_id}_daily_soft_limit"


class BudgetHourlySoftLimitSensor(BudgetBaseSensor):
    """Power that keeps this hour inside the capacity limit."""

    _attr_name = "Hourly Soft Limit"
    _attr_native_unit_of_measurement = UnitOfPower.KILO_WATT
    _attr_device_class = SensorDeviceClass.POWER
    _attr_state_class = SensorStateClass.MEASUREMENT
    _attr_icon = "mdi:speedometer-slow"

    @property
    def native_value(self) -> float | None:
        """Return the state of the sensor."""
        return (self.coordinator.data or {}).get("hourly_soft_limit_kw")

    @property
    def extra_state_attributes(self):
        return {
            "hourly_budget_exhausted": (self.coordinator.data or {}).get("hourly_budget_exhausted", False),
            "shortfall_threshold_kw": (self.coordinator.data or {}).get("shortfall_threshold_kw"),
        }

    @property
    def unique_id(self) -> str:
        """Return a unique ID."""
        return f"{self.entry.entry_id}_hourly_soft_limit"
