"""Coordinator for Daily Energy Budget."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta

from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant
from homeassistant.helpers.update_coordinator import (
    DataUpdateCoordinator,
)
from homeassistant.util import dt as dt_util

from .buckets import (
    floor_to_hour,
    bucket_key,
    get_date_key,
    get_day_start,
    get_next_day_start,
    get_time_zone,
    parse_instant,
)
from .helpers import convert_energy_to_kwh, extract_price_entries, parse_float
from .manager import BudgetManager
from .soft_limit import (
    compute_daily_soft_limit,
    compute_hourly_soft_limit,
    compute_shortfall_threshold,
)
from .storage import StorageManager
from .tracker import UsageTracker
from .const import (
    DOMAIN,
    DEFAULT_TIME_ZONE,
    DEFAULT_DAILY_BUDGET_KWH,
    DEFAULT_PRICE_SHAPING_ENABLED,
    DEFAULT_PRICE_SHAPING_FLEX_SHARE,
    DEFAULT_CONTROLLED_USAGE_WEIGHT,
    DEFAULT_CAPACITY_MARGIN_KW,
    MIN_DAILY_BUDGET_KWH,
    MAX_DAILY_BUDGET_KWH,
    CONF_ENERGY_SENSOR,
    CONF_CONTROLLED_ENERGY_SENSOR,
    CONF_PRICE_ENTITY,
    CONF_CAPACITY_LIMIT_KW,
    CONF_CAPACITY_MARGIN_KW,
    CONF_BUDGET_ENABLED,
    CONF_DAILY_BUDGET_KWH,
    CONF_PRICE_SHAPING_ENABLED,
    CONF_PRICE_SHAPING_FLEX_SHARE,
    CONF_CONTROLLED_USAGE_WEIGHT,
    PLAN_DAY_TODAY,
    PLAN_DAY_TOMORROW,
    PLAN_DAY_YESTERDAY,
)

_LOGGER = logging.getLogger(__name__)


class BudgetCoordinator(DataUpdateCoordinator):
    """Reads meters and prices every minute and runs the budget engine."""

    def __init__(self, hass: HomeAssistant, entry: ConfigEntry) -> None:
        """Initialize."""
        super().__init__(
            hass,
            _LOGGER,
            name=DOMAIN,
            update_interval=timedelta(minutes=1),
        )
        self.entry = entry

        self.energy_sensor = entry.data.get(CONF_ENERGY_SENSOR)
        self.controlled_energy_sensor = entry.data.get(CONF_CONTROLLED_ENERGY_SENSOR)
        self.price_entity = entry.data.get(CONF_PRICE_ENTITY)
        self.capacity_limit_kw = entry.data.get(CONF_CAPACITY_LIMIT_KW)
        self.capacity_margin_kw = entry.data.get(CONF_CAPACITY_MARGIN_KW, DEFAULT_CAPACITY_MARGIN_KW)

        # Runtime settings; options seed them, number/switch entities change them
        self.settings = {
            CONF_BUDGET_ENABLED: False,
            CONF_DAILY_BUDGET_KWH: DEFAULT_DAILY_BUDGET_KWH,
            CONF_PRICE_SHAPING_ENABLED: DEFAULT_PRICE_SHAPING_ENABLED,
            CONF_PRICE_SHAPING_FLEX_SHARE: DEFAULT_PRICE_SHAPING_FLEX_SHARE,
            CONF_CONTROLLED_USAGE_WEIGHT: DEFAULT_CONTROLLED_USAGE_WEIGHT,
        }
        self.apply_options(entry.options)

        self.manager = BudgetManager()
        self.tracker = UsageTracker()
        self.storage = StorageManager(self)

        self._force_rebuild = False
        self._is_loaded = False

        self.data = {
            "snapshot": None,
            "daily_soft_limit_kw": None,
            "hourly_soft_limit_kw": None,
            "hourly_budget_exhausted": False,
            "shortfall_threshold_kw": None,
        }

    @property
    def time_zone(self) -> str:
        return self.hass.config.time_zone or DEFAULT_TIME_ZONE

    def apply_options(self, options) -> None:
        """Copy known settings from config entry options."""
        for key in self.settings:
            if options and key in options:
                self.settings[key] = options[key]

    def engine_settings(self) -> dict:
        """Settings in the shape the budget engine expects."""
        budget = parse_float(self.settings.get(CONF_DAILY_BUDGET_KWH)) or 0.0
        budget = min(max(budget, MIN_DAILY_BUDGET_KWH), MAX_DAILY_BUDGET_KWH)
        return {
            "enabled": bool(self.settings.get(CONF_BUDGET_ENABLED)),
            "daily_budget_kwh": budget,
            "price_shaping_enabled": bool(self.settings.get(CONF_PRICE_SHAPING_ENABLED)),
            "price_shaping_flex_share": self.settings.get(CONF_PRICE_SHAPING_FLEX_SHARE),
            "controlled_usage_weight": self.settings.get(CONF_CONTROLLED_USAGE_WEIGHT),
        }

    async def _async_load_data(self):
        """Load data from storage."""
        await self.storage.async_load_data()
        self._is_loaded = True

    async def _async_save_data(self, force: bool = False):
        """Save data to storage."""
        await self.storage.async_save_data(force)

    async def async_reset_learning_data(self):
        """Reset the learned usage profile."""
        await self.storage.async_reset_learning_data()
        self.request_rebuild()
        await self.async_request_refresh()

    def request_rebuild(self) -> None:
        """Force a plan rebuild on the next update."""
        self._force_rebuild = True

    async def async_set_setting(self, key: str, value) -> None:
        """Change a runtime setting, persist it and rebuild the plan."""
        if key not in self.settings:
            _LOGGER.warning(f"Ignoring unknown setting: {key}")
            return
        if key == CONF_DAILY_BUDGET_KWH:
            value = min(max(float(value), MIN_DAILY_BUDGET_KWH), MAX_DAILY_BUDGET_KWH)
        if self.settings[key] == value:
            return
        self.settings[key] = value
        _LOGGER.info(f"Setting {key} changed to {value}")
        self.request_rebuild()
        await self._async_save_data(force=True)
        await self.async_request_refresh()

    def _get_float_state(self, entity_id: str) -> float | None:
        """Helper to get float state from an entity."""
        if not entity_id:
            return None
        state = self.hass.states.get(entity_id)
        if state and state.state not in ("unknown", "unavailable"):
            return parse_float(state.state)
        return None

    def _get_energy_kwh(self, entity_id: str) -> float | None:
        """Cumulative meter reading converted to kWh."""
        value = self._get_float_state(entity_id)
        if value is None:
            return None
        state = self.hass.states.get(entity_id)
        unit = state.attributes.get("unit_of_measurement") if state else None
        return convert_energy_to_kwh(value, unit)

    def _get_prices(self) -> list[dict] | None:
        if not self.price_entity:
            return None
        state = self.hass.states.get(self.price_entity)
        if not state:
            return None
        entries = extract_price_entries(state.attributes)
        return entries or None

    def _get_capacity_budget_kwh(self) -> float | None:
        limit = parse_float(self.capacity_limit_kw)
        if limit is None or limit <= 0:
            return None
        # One-hour buckets: a kW limit bounds each bucket to the same kWh
        return limit

    async def _async_update_data(self):
        """Update data."""
        if not self._is_loaded:
            await self._async_load_data()

        current_time = dt_util.now()

        self.tracker.record_reading(
            current_time,
            self._get_energy_kwh(self.energy_sensor),
            self._get_energy_kwh(self.controlled_energy_sensor),
            track_controlled=bool(self.controlled_energy_sensor),
        )

        force_rebuild = self._force_rebuild
        self._force_rebuild = False
        try:
            result = self.manager.update(
                current_time,
                self.time_zone,
                self.engine_settings(),
                self.tracker.as_history(),
                prices=self._get_prices(),
                capacity_budget_kwh=self._get_capacity_budget_kwh(),
                force_rebuild=force_rebuild,
            )
        except Exception:
            _LOGGER.exception("Unexpected error while updating the energy budget")
            return self.data

        snapshot = result["snapshot"]
        self.tracker.record_planned(snapshot)
        self.tracker.prune(current_time)

        self.data = {
            "snapshot": snapshot,
            **self._compute_soft_limits(snapshot, current_time),
        }

        if result["should_persist"]:
            await self._async_save_data(force=True)

        return self.data

    def _compute_soft_limits(self, snapshot: dict, current_time: datetime) -> dict:
        hour_start = floor_to_hour(current_time)
        used_this_hour = self.tracker.buckets.get(bucket_key(hour_start), 0.0)

        hourly_limit_kw = None
        hourly_exhausted = False
        shortfall_kw = None
        limit = self._get_capacity_budget_kwh()
        if limit is not None:
            hourly = compute_hourly_soft_limit(
                limit, self.capacity_margin_kw, used_this_hour, hour_start, current_time
            )
            hourly_limit_kw = round(hourly["allowed_kw"], 3)
            hourly_exhausted = hourly["hourly_budget_exhausted"]
            shortfall_kw = round(
                compute_shortfall_threshold(
                    limit, self.capacity_margin_kw, used_this_hour, hour_start, current_time
                ),
                3,
            )

        daily_limit_kw = None
        index = snapshot["current_bucket_index"]
        buckets = snapshot["buckets"]
        starts = buckets["start_utc"]
        if snapshot["budget"]["enabled"] and 0 <= index < len(starts):
            bucket_start = parse_instant(starts[index])
            if index + 1 < len(starts):
                bucket_end = parse_instant(starts[index + 1])
            else:
                bucket_end = bucket_start + timedelta(hours=1)
            daily_limit_kw = round(
                compute_daily_soft_limit(
                    buckets["planned_kwh"][index],
                    buckets["actual_kwh"][index],
                    bucket_start,
                    bucket_end,
                    current_time,
                ),
                3,
            )

        return {
            "daily_soft_limit_kw": daily_limit_kw,
            "hourly_soft_limit_kw": hourly_limit_kw,
            "hourly_budget_exhausted": hourly_exhausted,
            "shortfall_threshold_kw": shortfall_kw,
        }

    def get_plan(self, day: str = PLAN_DAY_TODAY) -> dict | None:
        """Snapshot for today, preview for tomorrow or history for yesterday."""
        tz = get_time_zone(self.time_zone)
        now = dt_util.now()
        today_start = get_day_start(get_date_key(now, tz), tz)

        if day == PLAN_DAY_TOMORROW:
            return self.manager.build_preview(
                get_next_day_start(today_start, tz),
                self.time_zone,
                self.engine_settings(),
                prices=self._get_prices(),
                capacity_budget_kwh=self._get_capacity_budget_kwh(),
            )

        if day == PLAN_DAY_YESTERDAY:
            yesterday_key = get_date_key(today_start - timedelta(hours=12), tz)
            return self.manager.build_history(
                get_day_start(yesterday_key, tz),
                self.time_zone,
                self.tracker.as_history(),
                settings=self.engine_settings(),
                prices=self._get_prices(),
            )

        return self.manager.snapshot
