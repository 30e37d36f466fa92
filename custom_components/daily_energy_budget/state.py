"""Persisted engine state: defaults, validation and export."""
from __future__ import annotations

import copy
import logging
import math

from .observed import OBSERVED_KEYS
from .profile import is_valid_profile

_LOGGER = logging.getLogger(__name__)

PROFILE_KEYS = ("profile_uncontrolled", "profile_controlled", "profile")


def build_default_state(default_profile: list[float]) -> dict:
    """Fresh state with default profiles, empty observed stats and no plan."""
    return {
        "date_key": None,
        "day_start": None,
        "planned_kwh": [],
        "frozen": False,
        "last_plan_bucket_start": None,
        "last_used_now_kwh": 0.0,
        "profile_uncontrolled": {"weights": list(default_profile), "sample_count": 0},
        "profile_controlled": {"weights": list(default_profile), "sample_count": 0},
        "profile_controlled_share": 0.0,
        "profile_sample_count": 0,
        "profile_split_sample_count": 0,
        **{key: [0.0] * 24 for key in OBSERVED_KEYS},
    }


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_finite(value) -> bool:
    return _is_number(value) and math.isfinite(value)


def _is_finite_list(values, length: int | None = None) -> bool:
    if not isinstance(values, list):
        return False
    if length is not None and len(values) != length:
        return False
    return all(_is_finite(v) for v in values)


def _is_optional_str(value) -> bool:
    return value is None or isinstance(value, str)


def validate_state(raw) -> str | None:
    """Return the reason a raw state is unusable, or None when it is valid."""
    if not isinstance(raw, dict):
        return "not a dictionary"

    for key in PROFILE_KEYS:
        if key in raw and raw[key] is not None and not is_valid_profile(raw[key]):
            return f"invalid {key}"

    for key in OBSERVED_KEYS:
        if key in raw and raw[key] is not None and not _is_finite_list(raw[key], 24):
            return f"invalid {key}"

    if "planned_kwh" in raw and raw["planned_kwh"] is not None and not _is_finite_list(raw["planned_kwh"]):
        return "invalid planned_kwh"

    for key in ("date_key", "day_start", "last_plan_bucket_start"):
        if not _is_optional_str(raw.get(key)):
            return f"invalid {key}"

    if "frozen" in raw and not isinstance(raw["frozen"], bool):
        return "invalid frozen"

    if "last_used_now_kwh" in raw and raw["last_used_now_kwh"] is not None and not _is_finite(raw["last_used_now_kwh"]):
        return "invalid last_used_now_kwh"

    for key in ("profile_controlled_share", "profile_sample_count", "profile_split_sample_count"):
        if key in raw and raw[key] is not None and not _is_finite(raw[key]):
            return f"invalid {key}"

    return None


def load_state(raw, default_profile: list[float]) -> dict | None:
    """Validated copy of raw state merged over defaults, or None if malformed."""
    reason = validate_state(raw)
    if reason is not None:
        _LOGGER.warning(f"Discarding stored budget state: {reason}")
        return None

    state = build_default_state(default_profile)
    for key, value in raw.items():
        if value is None and key not in ("date_key", "day_start", "last_plan_bucket_start"):
            continue
        state[key] = copy.deepcopy(value)
    if "profile" in raw and "profile_uncontrolled" not in raw:
        # Let the profile migration adopt the legacy entry
        state.pop("profile_uncontrolled", None)
        if "profile_sample_count" not in raw:
            state.pop("profile_sample_count", None)
    return state


def export_state(state: dict) -> dict:
    """Deep copy of the state, safe to hand to storage."""
    return copy.deepcopy(state)
