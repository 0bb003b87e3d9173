"""Notifications emitted by the migration engine, and a small synchronous bus."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Type

from src.utils.logger import get_logger

from .models import MigrationState, ToolCategory

logger = get_logger("tool_router.events")


@dataclass(frozen=True)
class MigrationEvent:
    name = "migration_event"

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            k: (v.value if hasattr(v, "value") else v) for k, v in asdict(self).items()
        }
        return {"event": self.name, **payload}


@dataclass(frozen=True)
class MigrationStateChanged(MigrationEvent):
    name = "migration_state_changed"

    previous_state: MigrationState
    new_state: MigrationState
    occurred_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class CategoryEnabled(MigrationEvent):
    name = "category_enabled"

    category: ToolCategory
    occurred_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class CategoryDisabled(MigrationEvent):
    name = "category_disabled"

    category: ToolCategory
    occurred_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class EmergencyRollback(MigrationEvent):
    name = "emergency_rollback"

    reason: str
    previous_state: MigrationState
    occurred_at: float = field(default_factory=time.time)


EventHandler = Callable[[MigrationEvent], None]


class EventBus:
    """
    Publish/subscribe for migration events.

    Handlers run synchronously in subscription order. A failing handler is
    logged and the remaining handlers still run.
    """

    def __init__(self):
        self._handlers: Dict[Type[MigrationEvent], List[EventHandler]] = {}

    def subscribe(self, event_type: Type[MigrationEvent], handler: EventHandler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    def subscribe_to_all(self, handler: EventHandler) -> None:
        self.subscribe(MigrationEvent, handler)

    def unsubscribe(self, event_type: Type[MigrationEvent], handler: EventHandler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event: MigrationEvent) -> None:
        handlers = self._handlers.get(type(event), []) + self._handlers.get(MigrationEvent, [])
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"❌ Event handler failed for '{event.name}': {e}")
