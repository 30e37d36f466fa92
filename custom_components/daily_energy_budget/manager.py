"""Budget Manager: the per-cycle planning engine."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta

from .const import PERSIST_INTERVAL_SECONDS, PLAN_MODE_LOCKED_CURRENT
from .history import build_history, build_preview
from .learning import LearningManager
from .observed import ensure_observed_stats
from .plan_state import (
    apply_freeze,
    apply_unfreeze,
    commit_plan,
    get_existing_plan,
    has_plan_mismatch,
    resolve_plan_mode,
    should_rebuild_plan,
)
from .planner import build_plan
from .prices import build_price_factors
from .profile import build_default_profile, ensure_profile, get_effective_weights
from .snapshot import build_snapshot, compute_budget_state, compute_plan_deviation
from .state import build_default_state, export_state, load_state
from .usage import UsageHistory, build_day_context

_LOGGER = logging.getLogger(__name__)


def is_budget_enabled(settings: dict) -> bool:
    return bool(settings.get("enabled")) and settings.get("daily_budget_kwh", 0) > 0


class BudgetManager:
    """Owns the plan state, learned profile and observed stats.

    Calls to update must be serialized. The last snapshot is a fresh
    structure per cycle and may be read from anywhere.
    """

    def __init__(self) -> None:
        self._default_profile = build_default_profile()
        self._state = build_default_state(self._default_profile)
        self._learning = LearningManager()
        self._snapshot = None
        self._dirty = False
        self._last_persist = None
        self._last_rebuild = None
        self._last_plan_data = None

    @property
    def snapshot(self) -> dict | None:
        return self._snapshot

    @property
    def default_profile(self) -> list[float]:
        return list(self._default_profile)

    def mark_dirty(self, force: bool = False) -> None:
        self._dirty = True
        if force:
            self._last_persist = None

    def _should_persist(self, now: datetime) -> bool:
        if not self._dirty:
            return False
        if self._last_persist is not None and now - self._last_persist < timedelta(seconds=PERSIST_INTERVAL_SECONDS):
            return False
        self._last_persist = now
        self._dirty = False
        return True

    def load_state(self, raw) -> bool:
        """Adopt persisted state. Malformed state is ignored."""
        loaded = load_state(raw, self._default_profile)
        if loaded is None:
            return False
        self._state = loaded
        self._last_plan_data = None
        return True

    def export_state(self) -> dict:
        return export_state(self._state)

    def reset_learning(self) -> None:
        """Clear learned profiles and observed stats back to defaults."""
        defaults = build_default_state(self._default_profile)
        for key in (
            "profile_uncontrolled",
            "profile_controlled",
            "profile_controlled_share",
            "profile_sample_count",
            "profile_split_sample_count",
            "observed_max_uncontrolled_kwh",
            "observed_max_controlled_kwh",
            "observed_min_uncontrolled_kwh",
            "observed_min_controlled_kwh",
        ):
            self._state[key] = defaults[key]
        self._state.pop("profile", None)
        self._state["frozen"] = False
        self.mark_dirty(force=True)
        _LOGGER.info("Learned usage profile and observed stats reset")

    def update(
        self,
        now: datetime,
        time_zone: str | None,
        settings: dict,
        usage_history,
        prices=None,
        capacity_budget_kwh: float | None = None,
        force_rebuild: bool = False,
        price_optimization_enabled: bool = True,
    ) -> dict:
        """Run one planning cycle.

        Returns {"snapshot": dict, "should_persist": bool}.
        """
        state = self._state
        history = UsageHistory.from_raw(usage_history)
        context = build_day_context(now, time_zone, history)
        tz = context["tz"]

        if ensure_profile(state, self._default_profile):
            self.mark_dirty()
        if ensure_observed_stats(state, history, tz, now):
            self.mark_dirty(force=True)

        self._handle_rollover(context, settings, history)

        enabled = is_budget_enabled(settings)
        daily_budget_kwh = settings.get("daily_budget_kwh", 0.0)
        if not enabled:
            self._last_plan_data = None
            if state.get("frozen"):
                state["frozen"] = False
                self.mark_dirty()

        # Stale plan from another day or DST shape is discarded
        mismatch = has_plan_mismatch(state, context)
        if mismatch:
            state["frozen"] = False
            state["last_plan_bucket_start"] = None
            self._last_plan_data = None
        existing_plan = get_existing_plan(state, mismatch, len(context["bucket_starts"]))

        if enabled and existing_plan and not state.get("frozen"):
            deviation = compute_plan_deviation(
                enabled,
                existing_plan,
                daily_budget_kwh,
                context["current_index"],
                context["current_progress"],
                context["used_now_kwh"],
            )
            if apply_freeze(state, enabled, deviation["deviation_kwh"]):
                self.mark_dirty(force=True)

        mode = resolve_plan_mode(state, context)
        rebuild = should_rebuild_plan(
            context=context,
            mode=mode,
            enabled=enabled,
            mismatch=mismatch,
            force=force_rebuild,
            last_used_now_kwh=state.get("last_used_now_kwh"),
            last_rebuild=self._last_rebuild,
        )

        if rebuild:
            plan_data = self._rebuild_plan(
                context,
                settings,
                existing_plan,
                mode == PLAN_MODE_LOCKED_CURRENT,
                prices,
                capacity_budget_kwh,
                price_optimization_enabled,
            )
            planned_kwh = plan_data["planned_kwh"]
        else:
            planned_kwh, plan_data = self._reuse_plan(context, settings, enabled, prices, price_optimization_enabled)

        budget = compute_budget_state(
            context, enabled, daily_budget_kwh, planned_kwh, state.get("profile_sample_count", 0)
        )
        if apply_freeze(state, enabled, budget["deviation_kwh"]):
            self.mark_dirty(force=True)
        if apply_unfreeze(state, enabled, budget["deviation_kwh"]):
            self.mark_dirty(force=True)

        snapshot = build_snapshot(
            context=context,
            settings=settings,
            enabled=enabled,
            planned_kwh=planned_kwh,
            plan_data=plan_data,
            budget=budget,
            frozen=bool(state.get("frozen")),
            plan_mode=resolve_plan_mode(state, context),
        )
        self._snapshot = snapshot

        state["date_key"] = context["date_key"]
        state["day_start"] = snapshot["day_start_utc"]
        self.mark_dirty()

        return {"snapshot": snapshot, "should_persist": self._should_persist(now)}

    def _handle_rollover(self, context: dict, settings: dict, history: UsageHistory) -> None:
        state = self._state
        previous_date_key = state.get("date_key")
        if not previous_date_key or previous_date_key == context["date_key"] or not settings.get("enabled"):
            return
        result = self._learning.finalize_day(
            state,
            context["tz"],
            history,
            previous_date_key,
            state.get("day_start"),
            self._default_profile,
            context["now"],
        )
        _LOGGER.debug(f"Rollover from {previous_date_key}: {result['learning_status']}")
        if result["should_force_persist"]:
            self._last_plan_data = None
            self.mark_dirty(force=True)

    def _rebuild_plan(
        self,
        context: dict,
        settings: dict,
        existing_plan: list[float] | None,
        lock_current: bool,
        prices,
        capacity_budget_kwh: float | None,
        price_optimization_enabled: bool,
    ) -> dict:
        state = self._state
        profile = get_effective_weights(state, settings, self._default_profile)
        plan_data = build_plan(
            bucket_starts=context["bucket_starts"],
            bucket_usage=context["bucket_usage"],
            current_index=context["current_index"],
            used_now_kwh=context["used_now_kwh"],
            daily_budget_kwh=settings.get("daily_budget_kwh", 0.0),
            profile=profile,
            tz=context["tz"],
            prices=prices,
            price_optimization_enabled=price_optimization_enabled,
            price_shaping_enabled=bool(settings.get("price_shaping_enabled")),
            price_shaping_flex_share=settings.get("price_shaping_flex_share"),
            previous_planned_kwh=existing_plan,
            capacity_budget_kwh=capacity_budget_kwh,
            lock_current_bucket=lock_current,
            controlled_usage_weight=settings.get("controlled_usage_weight"),
            observed=state,
        )
        commit_plan(state, context, plan_data["planned_kwh"])
        self._last_rebuild = context["now"]
        self._last_plan_data = plan_data
        self.mark_dirty()
        _LOGGER.debug(
            f"Rebuilt plan for {context['date_key']} at bucket {context['current_index']} "
            f"(locked {lock_current}, samples {state.get('profile_sample_count', 0)})"
        )
        return plan_data

    def _reuse_plan(
        self, context: dict, settings: dict, enabled: bool, prices, price_optimization_enabled: bool
    ) -> tuple[list[float], dict]:
        count = len(context["bucket_starts"])
        stored = self._state.get("planned_kwh")
        if not enabled or not isinstance(stored, list) or len(stored) != count:
            return [0.0] * count, {}

        plan_data = {}
        cached = self._last_plan_data
        if cached and len(cached.get("planned_uncontrolled_kwh") or []) == count:
            plan_data["planned_uncontrolled_kwh"] = cached["planned_uncontrolled_kwh"]
            plan_data["planned_controlled_kwh"] = cached["planned_controlled_kwh"]
            plan_data["effective_flex_share"] = cached.get("effective_flex_share", 0.0)
        price_shape = build_price_factors(
            context["bucket_starts"],
            context["current_index"],
            prices,
            price_optimization_enabled,
            bool(settings.get("price_shaping_enabled")),
        )
        plan_data.update(
            {
                "prices": price_shape["prices"],
                "price_factors": price_shape["price_factors"],
                "price_shaping_active": price_shape["price_shaping_active"],
                "price_spread_factor": price_shape["price_spread_factor"],
            }
        )
        return list(stored), plan_data

    def build_preview(
        self,
        day_start: datetime,
        time_zone: str | None,
        settings: dict,
        prices=None,
        capacity_budget_kwh: float | None = None,
        price_optimization_enabled: bool = True,
    ) -> dict:
        """Zero-usage projection for a future day. Does not touch state."""
        profile = get_effective_weights(self._state, settings, self._default_profile)
        return build_preview(
            day_start=day_start,
            time_zone=time_zone,
            settings=settings,
            enabled=is_budget_enabled(settings),
            profile=profile,
            profile_sample_count=self._state.get("profile_sample_count", 0),
            observed=self._state,
            prices=prices,
            price_optimization_enabled=price_optimization_enabled,
            capacity_budget_kwh=capacity_budget_kwh,
        )

    def build_history(
        self,
        day_start: datetime,
        time_zone: str | None,
        usage_history,
        settings: dict | None = None,
        prices=None,
        price_optimization_enabled: bool = True,
    ) -> dict | None:
        """Finished-day view from recorded plan and usage, or None."""
        return build_history(
            day_start=day_start,
            time_zone=time_zone,
            usage_history=usage_history,
            prices=prices,
            price_optimization_enabled=price_optimization_enabled,
            price_shaping_enabled=bool((settings or {}).get("price_shaping_enabled")),
            profile_sample_count=self._state.get("profile_sample_count", 0),
        )
