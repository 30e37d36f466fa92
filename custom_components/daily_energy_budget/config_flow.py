"""Config flow for Daily Energy Budget integration."""
from __future__ import annotations

import logging
from typing import Any

import voluptuous as vol

from homeassistant import config_entries
from homeassistant.const import CONF_NAME
from homeassistant.core import callback
from homeassistant.data_entry_flow import FlowResult
from homeassistant.helpers import selector

from .const import (
    DOMAIN,
    DEFAULT_NAME,
    DEFAULT_CAPACITY_MARGIN_KW,
    DEFAULT_DAILY_BUDGET_KWH,
    DEFAULT_PRICE_SHAPING_ENABLED,
    DEFAULT_PRICE_SHAPING_FLEX_SHARE,
    DEFAULT_CONTROLLED_USAGE_WEIGHT,
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
)

_LOGGER = logging.getLogger(__name__)

ENERGY_UNITS = ("Wh", "kWh", "MWh")


def _get_schema(user_input: dict[str, Any] | None, default_data: dict[str, Any] | None) -> vol.Schema:
    """Generate the source schema, prefilled from input or stored data."""

    # Helper to get current value (User Input > Default Data > Default Constant)
    def get_val(key, default=None):
        if user_input and key in user_input:
            return user_input[key]
        if default_data and key in default_data:
            return default_data[key]
        return default

    schema = {
        vol.Required(CONF_NAME, default=get_val(CONF_NAME, DEFAULT_NAME)): str,
        vol.Required(CONF_ENERGY_SENSOR, default=get_val(CONF_ENERGY_SENSOR)): selector.EntitySelector(
            selector.EntitySelectorConfig(domain="sensor", device_class="energy")
        ),
    }

    # Optional entities: only offer a default when one is stored
    controlled = get_val(CONF_CONTROLLED_ENERGY_SENSOR)
    key = vol.Optional(CONF_CONTROLLED_ENERGY_SENSOR, default=controlled) if controlled else vol.Optional(CONF_CONTROLLED_ENERGY_SENSOR)
    schema[key] = selector.EntitySelector(
        selector.EntitySelectorConfig(domain="sensor", device_class="energy")
    )

    price_entity = get_val(CONF_PRICE_ENTITY)
    key = vol.Optional(CONF_PRICE_ENTITY, default=price_entity) if price_entity else vol.Optional(CONF_PRICE_ENTITY)
    schema[key] = selector.EntitySelector(
        selector.EntitySelectorConfig(domain="sensor")
    )

    schema[vol.Optional(CONF_CAPACITY_LIMIT_KW, default=get_val(CONF_CAPACITY_LIMIT_KW, 0.0))] = selector.NumberSelector(
        selector.NumberSelectorConfig(
            min=0.0, max=100.0, step=0.5, unit_of_measurement="kW", mode=selector.NumberSelectorMode.BOX
        )
    )
    schema[vol.Optional(CONF_CAPACITY_MARGIN_KW, default=get_val(CONF_CAPACITY_MARGIN_KW, DEFAULT_CAPACITY_MARGIN_KW))] = selector.NumberSelector(
        selector.NumberSelectorConfig(
            min=0.0, max=10.0, step=0.1, unit_of_measurement="kW", mode=selector.NumberSelectorMode.BOX
        )
    )

    return vol.Schema(schema)


def _get_options_schema(options: dict[str, Any]) -> vol.Schema:
    """Budget settings schema."""
    return vol.Schema({
        vol.Required(CONF_BUDGET_ENABLED, default=options.get(CONF_BUDGET_ENABLED, False)): bool,
        vol.Required(CONF_DAILY_BUDGET_KWH, default=options.get(CONF_DAILY_BUDGET_KWH, DEFAULT_DAILY_BUDGET_KWH)): selector.NumberSelector(
            selector.NumberSelectorConfig(
                min=MIN_DAILY_BUDGET_KWH, max=MAX_DAILY_BUDGET_KWH, step=0.5,
                unit_of_measurement="kWh", mode=selector.NumberSelectorMode.BOX
            )
        ),
        vol.Required(CONF_PRICE_SHAPING_ENABLED, default=options.get(CONF_PRICE_SHAPING_ENABLED, DEFAULT_PRICE_SHAPING_ENABLED)): bool,
        vol.Required(CONF_PRICE_SHAPING_FLEX_SHARE, default=options.get(CONF_PRICE_SHAPING_FLEX_SHARE, DEFAULT_PRICE_SHAPING_FLEX_SHARE)): selector.NumberSelector(
            selector.NumberSelectorConfig(min=0.0, max=1.0, step=0.05, mode=selector.NumberSelectorMode.SLIDER)
        ),
        vol.Required(CONF_CONTROLLED_USAGE_WEIGHT, default=options.get(CONF_CONTROLLED_USAGE_WEIGHT, DEFAULT_CONTROLLED_USAGE_WEIGHT)): selector.NumberSelector(
            selector.NumberSelectorConfig(min=0.0, max=1.0, step=0.05, mode=selector.NumberSelectorMode.SLIDER)
        ),
    })


class DailyEnergyBudgetConfigFlow(config_entries.ConfigFlow, domain=DOMAIN):
    """Handle a config flow for Daily Energy Budget."""

    VERSION = 1

    def _validate_sources(self, user_input: dict[str, Any]) -> dict[str, str]:
        """Check that the configured meters exist and report energy."""
        errors = {}
        energy_state = self.hass.states.get(user_input.get(CONF_ENERGY_SENSOR))
        if not energy_state:
            errors[CONF_ENERGY_SENSOR] = "entity_not_found"
        elif energy_state.attributes.get("unit_of_measurement") not in ENERGY_UNITS:
            errors[CONF_ENERGY_SENSOR] = "not_energy_sensor"

        controlled = user_input.get(CONF_CONTROLLED_ENERGY_SENSOR)
        if controlled and controlled == user_input.get(CONF_ENERGY_SENSOR):
            errors[CONF_CONTROLLED_ENERGY_SENSOR] = "same_as_energy_sensor"

        price_entity = user_input.get(CONF_PRICE_ENTITY)
        if price_entity and not self.hass.states.get(price_entity):
            errors[CONF_PRICE_ENTITY] = "entity_not_found"

        return errors

    async def async_step_user(
        self, user_input: dict[str, Any] | None = None
    ) -> FlowResult:
        """Handle the initial step."""
        errors: dict[str, str] = {}

        if user_input is not None:
            errors.update(self._validate_sources(user_input))
            if not errors:
                await self.async_set_unique_id(user_input[CONF_ENERGY_SENSOR])
                self._abort_if_unique_id_configured()
                return self.async_create_entry(title=user_input[CONF_NAME], data=user_input)

        return self.async_show_form(
            step_id="user",
            data_schema=_get_schema(user_input, None),
            errors=errors,
        )

    async def async_step_reconfigure(
        self, user_input: dict[str, Any] | None = None
    ) -> FlowResult:
        """Handle reconfiguration."""
        errors: dict[str, str] = {}
        entry = self.hass.config_entries.async_get_entry(self.context["entry_id"])

        if user_input is not None:
            errors.update(self._validate_sources(user_input))
            if not errors:
                # Cleared optional entities are not submitted
                for key in (CONF_CONTROLLED_ENERGY_SENSOR, CONF_PRICE_ENTITY):
                    user_input.setdefault(key, None)
                return self.async_update_reload_and_abort(
                    entry, data={**entry.data, **user_input}
                )

        return self.async_show_form(
            step_id="reconfigure",
            data_schema=_get_schema(user_input, {**entry.data}),
            errors=errors,
        )

    @staticmethod
    @callback
    def async_get_options_flow(config_entry: config_entries.ConfigEntry) -> DailyEnergyBudgetOptionsFlow:
        """Get the options flow for this handler."""
        return DailyEnergyBudgetOptionsFlow()


class DailyEnergyBudgetOptionsFlow(config_entries.OptionsFlow):
    """Budget settings."""

    async def async_step_init(
        self, user_input: dict[str, Any] | None = None
    ) -> FlowResult:
        """Manage the budget settings."""
        if user_input is not None:
            return self.async_create_entry(title="", data=user_input)

        return self.async_show_form(
            step_id="init",
            data_schema=_get_options_schema(dict(self.config_entry.options)),
        )
