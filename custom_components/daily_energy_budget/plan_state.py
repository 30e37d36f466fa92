"""Plan State Machine.

The plan is in exactly one mode per cycle:

    unlocked        the plan may be rebuilt freely
    locked_current  the bucket in progress keeps its committed allocation
    frozen          no rebuilding until usage is back under the allowed curve

Persisted fields (``frozen`` and ``last_plan_bucket_start``) are read into a
mode by ``resolve_plan_mode``; transitions go through the functions below.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta

from .buckets import bucket_key
from .const import (
    PLAN_MODE_FROZEN,
    PLAN_MODE_LOCKED_CURRENT,
    PLAN_MODE_UNLOCKED,
    REBUILD_MAX_INTERVAL_MINUTES,
    REBUILD_MIN_INTERVAL_MINUTES,
    REBUILD_USAGE_DELTA_KWH,
)

_LOGGER = logging.getLogger(__name__)


def has_plan_mismatch(state: dict, context: dict) -> bool:
    """True when the stored plan does not describe today's buckets."""
    planned = state.get("planned_kwh")
    if not planned:
        return True
    if len(planned) != len(context["bucket_starts"]):
        return True
    if state.get("day_start") != bucket_key(context["day_start"]):
        return True
    last_start = state.get("last_plan_bucket_start")
    if last_start is not None:
        return last_start not in {bucket_key(start) for start in context["bucket_starts"]}
    return False


def get_existing_plan(state: dict, mismatch: bool, bucket_count: int) -> list[float] | None:
    if mismatch:
        return None
    planned = state.get("planned_kwh")
    if not isinstance(planned, list) or len(planned) != bucket_count:
        return None
    return planned


def current_bucket_key(context: dict) -> str:
    return bucket_key(context["bucket_starts"][max(0, context["current_index"])])


def resolve_plan_mode(state: dict, context: dict) -> str:
    """Tagged plan mode for this cycle."""
    if state.get("frozen"):
        return PLAN_MODE_FROZEN
    if state.get("last_plan_bucket_start") == current_bucket_key(context):
        return PLAN_MODE_LOCKED_CURRENT
    return PLAN_MODE_UNLOCKED


def should_rebuild_plan(
    *,
    context: dict,
    mode: str,
    enabled: bool,
    mismatch: bool,
    force: bool,
    last_used_now_kwh: float | None,
    last_rebuild: datetime | None,
) -> bool:
    """Decide whether the plan is recomputed this cycle."""
    if not enabled or mode == PLAN_MODE_FROZEN:
        return False
    if mismatch or force:
        return True
    # A bucket that was never committed (new hour, or after unfreeze)
    if mode != PLAN_MODE_LOCKED_CURRENT:
        return True

    now = context["now"]
    if last_rebuild is None:
        return True
    since_rebuild = now - last_rebuild
    if since_rebuild >= timedelta(minutes=REBUILD_MAX_INTERVAL_MINUTES):
        return True

    usage_delta = 0.0
    if isinstance(last_used_now_kwh, (int, float)) and math.isfinite(last_used_now_kwh):
        usage_delta = abs(context["used_now_kwh"] - last_used_now_kwh)
    return (
        usage_delta >= REBUILD_USAGE_DELTA_KWH
        and since_rebuild >= timedelta(minutes=REBUILD_MIN_INTERVAL_MINUTES)
    )


def reset_plan(state: dict) -> None:
    """Discard the committed plan and return to unlocked."""
    state["planned_kwh"] = []
    state["frozen"] = False
    state["last_plan_bucket_start"] = None


def commit_plan(state: dict, context: dict, planned_kwh: list[float]) -> None:
    """Store a rebuilt plan and lock the bucket in progress."""
    state["planned_kwh"] = list(planned_kwh)
    state["last_plan_bucket_start"] = current_bucket_key(context)
    state["day_start"] = bucket_key(context["day_start"])
    state["last_used_now_kwh"] = context["used_now_kwh"]


def apply_freeze(state: dict, enabled: bool, deviation_kwh: float) -> bool:
    """Freeze when usage is ahead of the allowed curve. Returns True on transition."""
    if not enabled or deviation_kwh <= 0 or state.get("frozen"):
        return False
    state["frozen"] = True
    _LOGGER.info(f"Freezing plan (deviation {deviation_kwh:.2f} kWh)")
    return True


def apply_unfreeze(state: dict, enabled: bool, deviation_kwh: float) -> bool:
    """Unfreeze once usage is back on track and clear the bucket lock."""
    if not enabled or deviation_kwh > 0 or not state.get("frozen"):
        return False
    state["frozen"] = False
    state["last_plan_bucket_start"] = None
    _LOGGER.info(f"Unfreezing plan (deviation {deviation_kwh:.2f} kWh)")
    return True
