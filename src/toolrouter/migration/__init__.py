"""Migration engine: routing decisions, telemetry and rollback."""

from .events import (
    CategoryDisabled,
    CategoryEnabled,
    EmergencyRollback,
    EventBus,
    MigrationEvent,
    MigrationStateChanged,
)
from .flags import FeatureFlags, category_for_tool
from .models import (
    ExecutionPath,
    MigrationState,
    PerformanceMetrics,
    RollbackRecord,
    ToolCategory,
    ToolExecution,
)
from .store import InMemorySettingsStore, SettingsStore, YamlSettingsStore

__all__ = [
    "CategoryDisabled",
    "CategoryEnabled",
    "EmergencyRollback",
    "EventBus",
    "ExecutionPath",
    "FeatureFlags",
    "InMemorySettingsStore",
    "MigrationEvent",
    "MigrationState",
    "MigrationStateChanged",
    "PerformanceMetrics",
    "RollbackRecord",
    "SettingsStore",
    "ToolCategory",
    "ToolExecution",
    "YamlSettingsStore",
    "category_for_tool",
]
