"""
Feature flags deciding, per tool call, between the protocol client and the
legacy executor.

All public operations are total: they log instead of raising, so a routing
answer is always available.
"""

from __future__ import annotations

import time
from typing import Any, Optional

from src.utils.logger import get_logger

from .events import (
    CategoryDisabled,
    CategoryEnabled,
    EmergencyRollback,
    EventBus,
    MigrationStateChanged,
)
from .models import (
    DEFAULT_CATEGORY,
    TOOL_CATEGORY_INDEX,
    ExecutionPath,
    MigrationState,
    PerformanceMetrics,
    RollbackRecord,
    ToolCategory,
    ToolExecution,
)
from .store import SettingsStore

# Persisted keys
KEY_MIGRATION_STATE = "migration_state"
KEY_ENABLED_CATEGORIES = "enabled_categories"
KEY_PERFORMANCE_MONITORING = "performance_monitoring"
KEY_DEBUG_LOGGING = "debug_logging"
KEY_LAST_ROLLBACK_REASON = "last_rollback_reason"
KEY_LAST_ROLLBACK_TIMESTAMP = "last_rollback_timestamp"
KEY_LAST_ROLLBACK_PREVIOUS_STATE = "last_rollback_previous_state"

SLOW_EXECUTION_SECONDS = 5.0
SLOW_EXECUTION_WARN_COUNT = 3
ERROR_WARN_COUNT = 3

# Always available on the new path, regardless of persisted state
FORCED_CATEGORY = ToolCategory.TRANSPORT

ROLLBACK_TRIGGERS = (
    "voice_quality_degradation",
    "audio_pipeline_errors",
    "high_tool_failure_rate",
    "performance_degradation",
    "user_complaints",
)


ERROR_COUNT_PREFIX = "new_path_errors_"


def error_count_key(tool_name: str) -> str:
    return f"{ERROR_COUNT_PREFIX}{tool_name}"


def slow_count_key(tool_name: str) -> str:
    return f"slow_new_path_{tool_name}"


def category_for_tool(tool_name: str) -> ToolCategory:
    """Map a tool to its category; unknown tools land in the default category."""
    category = TOOL_CATEGORY_INDEX.get(tool_name)
    if category is None:
        get_logger("tool_router.FeatureFlags").warning(
            f"⚠️ Unknown tool category for '{tool_name}', defaulting to {DEFAULT_CATEGORY.value}"
        )
        return DEFAULT_CATEGORY
    return category


class FeatureFlags:
    """
    Process-wide migration configuration.

    Construct one instance and pass it to whoever needs routing answers.
    State is loaded from ``store`` on construction and written back on every
    mutation.
    """

    def __init__(self, store: SettingsStore, events: Optional[EventBus] = None):
        self.store = store
        self.events = events or EventBus()
        self.logger = get_logger("tool_router.FeatureFlags")
        self.metrics = PerformanceMetrics()

        self._migration_state = MigrationState.NEW_WITH_FALLBACK
        self._enabled_categories: set[ToolCategory] = set()
        self.performance_monitoring_enabled = True
        self.debug_logging_enabled = False
        self.rollback_triggers: dict[str, bool] = {name: False for name in ROLLBACK_TRIGGERS}

        self._load()
        self._ensure_forced_category()

    ## State

    @property
    def migration_state(self) -> MigrationState:
        return self._migration_state

    @property
    def enabled_categories(self) -> frozenset[ToolCategory]:
        return frozenset(self._enabled_categories)

    def set_migration_state(self, state: MigrationState) -> None:
        previous = self._migration_state
        self._migration_state = state
        self._save()
        if previous is not state:
            self.logger.info(f"🔀 Migration state: {previous.display_name} → {state.display_name}")
            self.events.publish(MigrationStateChanged(previous_state=previous, new_state=state))

    def set_performance_monitoring(self, enabled: bool) -> None:
        self.performance_monitoring_enabled = enabled
        self._save()

    def set_debug_logging(self, enabled: bool) -> None:
        self.debug_logging_enabled = enabled
        self._save()

    ## Routing decisions

    def should_use_new_path(self, tool_name: str) -> bool:
        state = self._migration_state
        if state is MigrationState.LEGACY:
            return False
        if state is MigrationState.HYBRID:
            return category_for_tool(tool_name) in self._enabled_categories
        return True

    def should_fallback_to_legacy(
        self, tool_name: str, error: Optional[BaseException | str] = None
    ) -> bool:
        state = self._migration_state
        if state is MigrationState.NEW_ONLY:
            return False
        if state is MigrationState.NEW_WITH_FALLBACK:
            error_count = self.store.get_int(error_count_key(tool_name))
            if error_count >= ERROR_WARN_COUNT:
                # TODO: decide whether this threshold should pin the tool to legacy
                self.logger.warning(
                    f"⚠️ Tool '{tool_name}' has failed {error_count} times on the new path, falling back to legacy"
                )
        return True

    ## Category control

    def enable_category(self, category: ToolCategory) -> None:
        self._enabled_categories.add(category)
        self._save()
        self.logger.info(f"✅ Enabled new path for category: {category.display_name}")
        self.events.publish(CategoryEnabled(category=category))

    def disable_category(self, category: ToolCategory) -> None:
        self._enabled_categories.discard(category)
        self._save()
        self.logger.info(f"❌ Disabled new path for category: {category.display_name}")
        self.events.publish(CategoryDisabled(category=category))

    def enable_all(self) -> None:
        added = [c for c in ToolCategory if c not in self._enabled_categories]
        self._enabled_categories = set(ToolCategory)
        self._save()
        self.logger.info("✅ Enabled new path for all categories")
        for category in added:
            self.events.publish(CategoryEnabled(category=category))

    def disable_all(self) -> None:
        removed = [c for c in ToolCategory if c in self._enabled_categories]
        self._enabled_categories.clear()
        self._save()
        self.logger.info("❌ Disabled new path for all categories")
        for category in removed:
            self.events.publish(CategoryDisabled(category=category))

    ## Rollback

    def emergency_rollback(self, reason: str) -> None:
        """Force every tool onto the legacy path. Re-enabling needs an explicit state change."""
        previous = self._migration_state
        self._migration_state = MigrationState.LEGACY
        self._enabled_categories.clear()

        self.logger.critical(f"🚨 EMERGENCY ROLLBACK: {reason}")
        self.logger.critical(f"🚨 Previous state: {previous.display_name}")
        self.logger.critical("🚨 All tools now using legacy path")

        self._put(KEY_LAST_ROLLBACK_REASON, reason)
        self._put(KEY_LAST_ROLLBACK_TIMESTAMP, time.time())
        self._put(KEY_LAST_ROLLBACK_PREVIOUS_STATE, previous.value)
        self._save()

        self.events.publish(EmergencyRollback(reason=reason, previous_state=previous))

    def trip_rollback_trigger(self, name: str) -> None:
        if name not in self.rollback_triggers:
            self.logger.warning(f"⚠️ Unknown rollback trigger '{name}', ignoring")
            return
        self.rollback_triggers[name] = True
        self.emergency_rollback(f"trigger:{name}")

    def last_rollback(self) -> Optional[RollbackRecord]:
        reason = self.store.get_str(KEY_LAST_ROLLBACK_REASON)
        if reason is None:
            return None
        timestamp = self.store.get(KEY_LAST_ROLLBACK_TIMESTAMP)
        previous = MigrationState.parse(self.store.get(KEY_LAST_ROLLBACK_PREVIOUS_STATE))
        return RollbackRecord(
            reason=reason,
            timestamp=float(timestamp) if isinstance(timestamp, (int, float)) else 0.0,
            previous_state=previous or MigrationState.LEGACY,
        )

    ## Telemetry

    def record_execution(
        self,
        tool_name: str,
        used_new_path: bool,
        duration_seconds: float,
        success: bool,
        error: Optional[BaseException | str] = None,
    ) -> None:
        self.metrics.record(
            ToolExecution(
                tool_name=tool_name,
                duration_seconds=duration_seconds,
                success=success,
                error_message=str(error) if error is not None else None,
            ),
            used_new_path=used_new_path,
        )

        if used_new_path and duration_seconds > SLOW_EXECUTION_SECONDS:
            slow_count = self.store.get_int(slow_count_key(tool_name)) + 1
            self._put(slow_count_key(tool_name), slow_count)
            if slow_count >= SLOW_EXECUTION_WARN_COUNT:
                self.logger.warning(
                    f"⚠️ Tool '{tool_name}' via new path is consistently slow ({duration_seconds:.2f}s, {slow_count} slow runs)"
                )

        if used_new_path and not success and error is not None:
            error_count = self.store.get_int(error_count_key(tool_name)) + 1
            self._put(error_count_key(tool_name), error_count)
            self.logger.error(
                f"❌ New-path error for '{tool_name}' (count: {error_count}): {error}"
            )

    def error_count(self, tool_name: str) -> int:
        return self.store.get_int(error_count_key(tool_name))

    def error_counts(self) -> dict[str, int]:
        """Non-zero new-path error counters for every tool in the store, by name."""
        counts = {}
        for key in self.store.keys():
            if not isinstance(key, str) or not key.startswith(ERROR_COUNT_PREFIX):
                continue
            count = self.store.get_int(key)
            if count > 0:
                counts[key[len(ERROR_COUNT_PREFIX):]] = count
        return counts

    def slow_count(self, tool_name: str) -> int:
        return self.store.get_int(slow_count_key(tool_name))

    def average_latency(self, path: ExecutionPath) -> float:
        return self.metrics.average_latency(path)

    def success_rate(self, path: ExecutionPath) -> float:
        return self.metrics.success_rate(path)

    ## Persistence

    def _put(self, key: str, value: Any) -> None:
        try:
            self.store.set(key, value)
        except OSError as e:
            self.logger.error(f"❌ Failed to persist '{key}': {e}")

    def _save(self) -> None:
        self._put(KEY_MIGRATION_STATE, self._migration_state.value)
        self._put(
            KEY_ENABLED_CATEGORIES,
            [c.value for c in ToolCategory if c in self._enabled_categories],
        )
        self._put(KEY_PERFORMANCE_MONITORING, self.performance_monitoring_enabled)
        self._put(KEY_DEBUG_LOGGING, self.debug_logging_enabled)

    def _load(self) -> None:
        raw_state = self.store.get(KEY_MIGRATION_STATE)
        if raw_state is not None:
            state = MigrationState.parse(raw_state)
            if state is None:
                self.logger.warning(f"⚠️ Ignoring unknown persisted migration state '{raw_state}'")
            else:
                self._migration_state = state

        categories = self.store.get_str_list(KEY_ENABLED_CATEGORIES)
        if categories is not None:
            valid = {c.value: c for c in ToolCategory}
            self._enabled_categories = {valid[c] for c in categories if c in valid}

        self.performance_monitoring_enabled = self.store.get_bool(
            KEY_PERFORMANCE_MONITORING, default=True
        )
        self.debug_logging_enabled = self.store.get_bool(KEY_DEBUG_LOGGING, default=False)

    def _ensure_forced_category(self) -> None:
        if FORCED_CATEGORY not in self._enabled_categories:
            self._enabled_categories.add(FORCED_CATEGORY)
            self._save()
            self.logger.info(f"🚲 {FORCED_CATEGORY.display_name} category auto-enabled")

    ## Reporting

    def snapshot(self) -> dict[str, Any]:
        return {
            "migration_state": self._migration_state.value,
            "enabled_categories": [c.value for c in ToolCategory if c in self._enabled_categories],
            "performance_monitoring_enabled": self.performance_monitoring_enabled,
            "debug_logging_enabled": self.debug_logging_enabled,
            "new_path_executions": len(self.metrics.new_path_executions),
            "legacy_executions": len(self.metrics.legacy_executions),
            "new_path_avg_latency": self.average_latency(ExecutionPath.NEW),
            "legacy_avg_latency": self.average_latency(ExecutionPath.LEGACY),
            "new_path_success_rate": self.success_rate(ExecutionPath.NEW),
            "legacy_success_rate": self.success_rate(ExecutionPath.LEGACY),
        }
