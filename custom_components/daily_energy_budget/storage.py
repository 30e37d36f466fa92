"""Storage Manager Service."""
from __future__ import annotations

import asyncio
import logging

from homeassistant.util import dt as dt_util
from homeassistant.helpers.storage import Store

from .const import (
    CONF_BUDGET_ENABLED,
    CONF_CONTROLLED_USAGE_WEIGHT,
    CONF_DAILY_BUDGET_KWH,
    CONF_PRICE_SHAPING_ENABLED,
    CONF_PRICE_SHAPING_FLEX_SHARE,
    SAVE_DEBOUNCE_SECONDS,
    STORAGE_KEY,
    STORAGE_VERSION,
)

_LOGGER = logging.getLogger(__name__)

# Runtime settings changed through number/switch entities
PERSISTED_SETTINGS = (
    CONF_BUDGET_ENABLED,
    CONF_DAILY_BUDGET_KWH,
    CONF_PRICE_SHAPING_ENABLED,
    CONF_PRICE_SHAPING_FLEX_SHARE,
    CONF_CONTROLLED_USAGE_WEIGHT,
)


class StorageManager:
    """Manages persistence of plan state, usage history and settings."""

    def __init__(self, coordinator) -> None:
        """Initialize with reference to coordinator."""
        self.coordinator = coordinator
        self._store = Store(coordinator.hass, STORAGE_VERSION, f"{STORAGE_KEY}.{coordinator.entry.entry_id}")
        self._last_save_time = None
        self._save_debounce_seconds = SAVE_DEBOUNCE_SECONDS
        self._save_lock = asyncio.Lock()

    async def async_load_data(self):
        """Load data from storage."""
        try:
            data = await self._store.async_load()
        except Exception as e:
            _LOGGER.error(f"Error loading data: {e}")
            return

        if not data:
            _LOGGER.info("No data loaded from storage. Starting with fresh state.")
            return

        if not isinstance(data, dict):
            _LOGGER.warning("Stored data is not a dictionary. Starting with fresh state.")
            return

        # Plan state; malformed state is rejected by the manager
        if "budget_state" in data:
            if self.coordinator.manager.load_state(data["budget_state"]):
                _LOGGER.debug("Restored budget state from storage")

        if "usage" in data:
            self.coordinator.tracker.load(data["usage"])

        loaded_settings = data.get("settings", {})
        if isinstance(loaded_settings, dict):
            for key in PERSISTED_SETTINGS:
                if key in loaded_settings:
                    self.coordinator.settings[key] = loaded_settings[key]
        else:
            _LOGGER.warning("Loaded settings is not a dictionary. Skipping update.")

        _LOGGER.info(f"Loaded data from storage (last updated {data.get('last_updated')})")

    async def async_save_data(self, force: bool = False):
        """Save data to storage with rate limiting."""
        async with self._save_lock:
            try:
                now = dt_util.now()
                if not force and self._last_save_time is not None:
                    elapsed = (now - self._last_save_time).total_seconds()
                    if elapsed < self._save_debounce_seconds:
                        _LOGGER.debug(f"Skipping save (rate limit): {elapsed:.1f}s < {self._save_debounce_seconds}s")
                        return

                data = {
                    "budget_state": self.coordinator.manager.export_state(),
                    "usage": self.coordinator.tracker.to_dict(),
                    "settings": {key: self.coordinator.settings.get(key) for key in PERSISTED_SETTINGS},
                    "last_updated": now.isoformat(),
                }
                await self._store.async_save(data)
                self._last_save_time = now
                _LOGGER.debug("Data saved successfully")
            except Exception as e:
                _LOGGER.error(f"Error saving data: {e}")

    async def async_reset_learning_data(self):
        """Reset the learned profile and observed stats."""
        self.coordinator.manager.reset_learning()
        await self.async_save_data(force=True)
        _LOGGER.info("Learning data reset successfully.")
