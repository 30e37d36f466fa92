"""Usage Profile Model.

Two learned 24-hour weight vectors (uncontrolled and controlled load) plus
the controlled-energy share. The effective shape blends the learned profile
against a fixed default shape using a confidence that grows with the number
of finalized days.
"""
from __future__ import annotations

import logging
import math

from .allocation import normalize_weights
from .const import (
    CONFIDENCE_FULL_DAYS,
    DEFAULT_CONTROLLED_USAGE_WEIGHT,
    DEFAULT_PROFILE_BUMPS,
)

_LOGGER = logging.getLogger(__name__)


def _clamp_share(value) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return 0.0
    return min(max(float(value), 0.0), 1.0)


def build_default_profile() -> list[float]:
    """Flat base with morning and evening bumps, normalized to sum 1."""
    raw = [1.0 + DEFAULT_PROFILE_BUMPS.get(hour, 0.0) for hour in range(24)]
    return normalize_weights(raw)


def get_confidence(sample_count) -> float:
    """Confidence in the learned profile: sample_count/14 clamped to [0, 1]."""
    if isinstance(sample_count, bool) or not isinstance(sample_count, (int, float)):
        return 0.0
    if not math.isfinite(sample_count) or sample_count <= 0:
        return 0.0
    return min(max(sample_count / CONFIDENCE_FULL_DAYS, 0.0), 1.0)


def normalize_with_fallback(weights: list[float], fallback: list[float]) -> list[float]:
    normalized = normalize_weights(weights)
    if not any(normalized):
        return list(fallback)
    return normalized


def is_valid_profile(profile) -> bool:
    if not isinstance(profile, dict):
        return False
    weights = profile.get("weights")
    sample_count = profile.get("sample_count")
    if not isinstance(weights, list) or len(weights) != 24:
        return False
    if not all(isinstance(w, (int, float)) and not isinstance(w, bool) and math.isfinite(w) for w in weights):
        return False
    return isinstance(sample_count, (int, float)) and not isinstance(sample_count, bool) and sample_count >= 0


def build_fallback_profile(default_profile: list[float]) -> dict:
    return {"weights": list(default_profile), "sample_count": 0}


def ensure_profile(state: dict, default_profile: list[float]) -> bool:
    """Fill in missing profile fields in place. Returns True when state changed.

    A legacy single ``profile`` entry is adopted as the uncontrolled profile.
    """
    changed = False

    legacy = state.pop("profile", None)
    if legacy is not None:
        changed = True
        if not is_valid_profile(state.get("profile_uncontrolled")) and is_valid_profile(legacy):
            state["profile_uncontrolled"] = {
                "weights": [float(w) for w in legacy["weights"]],
                "sample_count": legacy["sample_count"],
            }
            if not isinstance(state.get("profile_sample_count"), (int, float)):
                state["profile_sample_count"] = legacy["sample_count"]
            _LOGGER.info("Migrated legacy usage profile to uncontrolled profile")

    for key in ("profile_uncontrolled", "profile_controlled"):
        if not is_valid_profile(state.get(key)):
            state[key] = build_fallback_profile(default_profile)
            changed = True

    share = state.get("profile_controlled_share")
    if isinstance(share, bool) or not isinstance(share, (int, float)) or not math.isfinite(share):
        state["profile_controlled_share"] = 0.0
        changed = True

    if not isinstance(state.get("profile_sample_count"), (int, float)) or isinstance(state.get("profile_sample_count"), bool):
        state["profile_sample_count"] = state["profile_uncontrolled"].get("sample_count", 0)
        changed = True

    if not isinstance(state.get("profile_split_sample_count"), (int, float)) or isinstance(state.get("profile_split_sample_count"), bool):
        state["profile_split_sample_count"] = 0
        changed = True

    return changed


def get_learned_parts(state: dict, settings: dict, default_profile: list[float]) -> dict | None:
    """Learned uncontrolled/controlled weights scaled to one combined shape."""
    uncontrolled_profile = state.get("profile_uncontrolled")
    controlled_profile = state.get("profile_controlled")
    if not is_valid_profile(uncontrolled_profile) or not is_valid_profile(controlled_profile):
        return None

    uncontrolled = normalize_with_fallback(uncontrolled_profile["weights"], default_profile)
    controlled = normalize_with_fallback(controlled_profile["weights"], default_profile)
    controlled_share = _clamp_share(state.get("profile_controlled_share", 0.0))
    weight = _clamp_share(settings.get("controlled_usage_weight", DEFAULT_CONTROLLED_USAGE_WEIGHT))

    denom = (1 - controlled_share) + controlled_share * weight
    if denom <= 0:
        # All history controlled and controlled weight 0: uncontrolled only
        return {
            "uncontrolled": uncontrolled,
            "controlled": [0.0] * 24,
            "combined": uncontrolled,
            "controlled_share": controlled_share,
        }

    uncontrolled_scale = (1 - controlled_share) / denom
    controlled_scale = (controlled_share * weight) / denom
    learned_uncontrolled = [w * uncontrolled_scale for w in uncontrolled]
    learned_controlled = [w * controlled_scale for w in controlled]
    combined = normalize_with_fallback(
        [u + c for u, c in zip(learned_uncontrolled, learned_controlled)], default_profile
    )
    return {
        "uncontrolled": learned_uncontrolled,
        "controlled": learned_controlled,
        "combined": combined,
        "controlled_share": controlled_share,
    }


def get_effective_weights(state: dict, settings: dict, default_profile: list[float]) -> dict:
    """Confidence-weighted blend of the learned profile against the default.

    The default shape is attributed to uncontrolled load, so
    combined = default * (1 - confidence) + learned_combined * confidence.
    """
    sample_count = state.get("profile_sample_count", 0)
    confidence = get_confidence(sample_count)
    learned = get_learned_parts(state, settings, default_profile)
    if learned is None:
        return {
            "combined": list(default_profile),
            "uncontrolled": list(default_profile),
            "controlled": [0.0] * 24,
            "confidence": 0.0,
            "sample_count": 0,
            "controlled_share": 0.0,
        }

    uncontrolled = [
        d * (1 - confidence) + u * confidence
        for d, u in zip(default_profile, learned["uncontrolled"])
    ]
    controlled = [c * confidence for c in learned["controlled"]]
    combined = normalize_with_fallback(
        [u + c for u, c in zip(uncontrolled, controlled)], default_profile
    )
    return {
        "combined": combined,
        "uncontrolled": uncontrolled,
        "controlled": controlled,
        "confidence": confidence,
        "sample_count": sample_count,
        "controlled_share": learned["controlled_share"],
    }
