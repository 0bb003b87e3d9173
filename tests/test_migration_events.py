from src.toolrouter.migration import (
    CategoryEnabled,
    EmergencyRollback,
    EventBus,
    MigrationState,
    MigrationStateChanged,
    ToolCategory,
)


def test_publish_reaches_typed_and_wildcard_handlers_in_order():
    bus = EventBus()
    calls = []
    bus.subscribe(CategoryEnabled, lambda e: calls.append(("typed", e.category)))
    bus.subscribe_to_all(lambda e: calls.append(("all", e.name)))

    bus.publish(CategoryEnabled(category=ToolCategory.SEARCH))

    assert calls == [("typed", ToolCategory.SEARCH), ("all", "category_enabled")]


def test_other_event_types_not_delivered():
    bus = EventBus()
    calls = []
    bus.subscribe(EmergencyRollback, calls.append)
    bus.publish(CategoryEnabled(category=ToolCategory.SEARCH))
    assert calls == []


def test_failing_handler_does_not_stop_others():
    bus = EventBus()
    calls = []

    def broken(event):
        raise RuntimeError("handler bug")

    bus.subscribe(EmergencyRollback, broken)
    bus.subscribe(EmergencyRollback, calls.append)
    bus.publish(EmergencyRollback(reason="x", previous_state=MigrationState.HYBRID))

    assert len(calls) == 1


def test_unsubscribe():
    bus = EventBus()
    calls = []
    bus.subscribe(CategoryEnabled, calls.append)
    bus.unsubscribe(CategoryEnabled, calls.append)
    bus.unsubscribe(EmergencyRollback, calls.append)
    bus.publish(CategoryEnabled(category=ToolCategory.SEARCH))
    assert calls == []


def test_event_to_dict_flattens_enums():
    event = MigrationStateChanged(
        previous_state=MigrationState.LEGACY,
        new_state=MigrationState.HYBRID,
        occurred_at=12.5,
    )
    assert event.to_dict() == {
        "event": "migration_state_changed",
        "previous_state": "legacy",
        "new_state": "hybrid",
        "occurred_at": 12.5,
    }
