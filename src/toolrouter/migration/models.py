"""Data types for the migration engine."""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Optional

# Ring buffer size per execution path
METRICS_CAPACITY = 100


class ToolCategory(str, Enum):
    LOCATION = "location"
    TRAVEL = "travel"
    SEARCH = "search"
    SAFETY = "safety"
    CALENDAR = "calendar"
    TRANSPORT = "transport"
    DISCOVERY = "discovery"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()

    @property
    def tool_names(self) -> tuple[str, ...]:
        return CATEGORY_TOOLS[self]


CATEGORY_TOOLS: dict[ToolCategory, tuple[str, ...]] = {
    ToolCategory.LOCATION: (
        "get_user_location",
        "find_nearby_places",
        "get_directions",
        "find_places_on_route",
        "find_nearby_restaurants",
        "find_nearby_transport",
        "find_nearby_landmarks",
        "find_nearby_services",
    ),
    ToolCategory.TRAVEL: (
        "get_weather",
        "currency_converter",
        "translate_text",
        "check_travel_requirements",
    ),
    ToolCategory.SEARCH: ("web_search", "ai_response"),
    ToolCategory.SAFETY: ("get_safety_info", "get_emergency_info"),
    ToolCategory.CALENDAR: ("check_calendar", "get_local_time"),
    ToolCategory.TRANSPORT: (
        "find_transportation",
        "find_local_events",
        "bikes_nearby",
        "docks_nearby",
        "station_availability",
        "type_breakdown_nearby",
        "parking_near_destination",
    ),
    ToolCategory.DISCOVERY: (
        "search_web",
        "search_candidates_for_facet",
        "reviews_list",
        "reviews_aspects_summarize",
        "photos_list",
        "vibe_analyze",
        "web_links_discover",
        "web_readable_extract",
        "pdf_extract",
        "web_images_discover",
        "menu_parse",
        "catalog_classify",
    ),
}

# tool name -> category; first category listing a name wins
TOOL_CATEGORY_INDEX: dict[str, ToolCategory] = {}
for _category in ToolCategory:
    for _name in CATEGORY_TOOLS[_category]:
        TOOL_CATEGORY_INDEX.setdefault(_name, _category)

DEFAULT_CATEGORY = ToolCategory.LOCATION


class MigrationState(str, Enum):
    LEGACY = "legacy"
    HYBRID = "hybrid"
    NEW_WITH_FALLBACK = "new_with_fallback"
    NEW_ONLY = "new_only"

    @property
    def display_name(self) -> str:
        return _STATE_DISPLAY[self][0]

    @property
    def description(self) -> str:
        return _STATE_DISPLAY[self][1]

    @classmethod
    def parse(cls, value: object) -> Optional["MigrationState"]:
        """Parse a persisted value; returns None for anything unrecognised."""
        if isinstance(value, MigrationState):
            return value
        if not isinstance(value, str):
            return None
        value = _STATE_ALIASES.get(value, value)
        try:
            return cls(value)
        except ValueError:
            return None


# Values written by earlier builds
_STATE_ALIASES = {
    "mcp_with_fallback": "new_with_fallback",
    "mcp_only": "new_only",
}

_STATE_DISPLAY = {
    MigrationState.LEGACY: (
        "Legacy Only",
        "All tools use the legacy executor. No protocol components active.",
    ),
    MigrationState.HYBRID: (
        "Hybrid (Gradual Migration)",
        "Tools in enabled categories use the protocol client, others use legacy.",
    ),
    MigrationState.NEW_WITH_FALLBACK: (
        "Protocol with Legacy Fallback",
        "All tools attempt the protocol client first, fallback to legacy on any error.",
    ),
    MigrationState.NEW_ONLY: (
        "Protocol Only",
        "All tools use the protocol client exclusively. Legacy disabled.",
    ),
}


class ExecutionPath(str, Enum):
    NEW = "new"
    LEGACY = "legacy"


@dataclass(frozen=True)
class ToolExecution:
    tool_name: str
    duration_seconds: float
    success: bool
    error_message: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


class PerformanceMetrics:
    """Bounded execution history per path with derived latency/success figures."""

    def __init__(self, capacity: int = METRICS_CAPACITY):
        self.capacity = capacity
        self._buffers: dict[ExecutionPath, Deque[ToolExecution]] = {
            ExecutionPath.NEW: deque(maxlen=capacity),
            ExecutionPath.LEGACY: deque(maxlen=capacity),
        }

    def record(self, execution: ToolExecution, used_new_path: bool) -> None:
        path = ExecutionPath.NEW if used_new_path else ExecutionPath.LEGACY
        self._buffers[path].append(execution)

    def executions(self, path: ExecutionPath) -> list[ToolExecution]:
        """Oldest first. A copy; the buffers stay private."""
        return list(self._buffers[path])

    @property
    def new_path_executions(self) -> list[ToolExecution]:
        return self.executions(ExecutionPath.NEW)

    @property
    def legacy_executions(self) -> list[ToolExecution]:
        return self.executions(ExecutionPath.LEGACY)

    def average_latency(self, path: ExecutionPath) -> float:
        buffer = self._buffers[path]
        if not buffer:
            return 0.0
        return sum(e.duration_seconds for e in buffer) / len(buffer)

    def success_rate(self, path: ExecutionPath) -> float:
        # No data is not failure
        buffer = self._buffers[path]
        if not buffer:
            return 1.0
        return sum(1 for e in buffer if e.success) / len(buffer)


@dataclass(frozen=True)
class RollbackRecord:
    reason: str
    timestamp: float
    previous_state: MigrationState
