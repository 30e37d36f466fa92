"""Helper functions for Daily Energy Budget."""
from __future__ import annotations
import logging
import math
from homeassistant.const import UnitOfEnergy

_LOGGER = logging.getLogger(__name__)

def parse_float(value) -> float | None:
    """Parse a state value into a finite float, or None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number

def convert_energy_to_kwh(value: float, unit: str | None) -> float:
    """Convert an energy reading to kWh."""
    if not unit:
        return value

    if unit in (UnitOfEnergy.KILO_WATT_HOUR, "kWh", "kwh"):
        return value

    if unit in (UnitOfEnergy.WATT_HOUR, "Wh", "wh"):
        return value / 1000

    if unit in (UnitOfEnergy.MEGA_WATT_HOUR, "MWh", "mwh"):
        return value * 1000

    # Unknown unit - log warning and return value as-is (assuming kWh)
    _LOGGER.warning(f"Unknown energy unit: {unit}, assuming value is in kWh")
    return value

def _entry_start(entry: dict):
    for key in ("starts_at", "startsAt", "start"):
        if entry.get(key) is not None:
            return entry[key]
    return None

def _entry_price(entry: dict) -> float | None:
    for key in ("total", "value", "price"):
        if key in entry:
            return parse_float(entry[key])
    return None

def extract_price_entries(attributes: dict | None) -> list[dict]:
    """Collect hourly price entries from a price entity's attributes.

    Understands a plain ``prices`` list, Nord Pool style ``raw_today`` /
    ``raw_tomorrow`` and Tibber style ``today`` / ``tomorrow`` lists.
    Returns [{"starts_at": ..., "total": float}] in attribute order.
    """
    if not attributes:
        return []

    entries = []
    for key in ("prices", "raw_today", "raw_tomorrow", "today", "tomorrow"):
        raw = attributes.get(key)
        if not isinstance(raw, list):
            continue
        for item in raw:
            if not isinstance(item, dict):
                continue
            start = _entry_start(item)
            price = _entry_price(item)
            if start is None or price is None:
                continue
            start_value = start.isoformat() if hasattr(start, "isoformat") else start
            entries.append({"starts_at": start_value, "total": price})
    return entries
