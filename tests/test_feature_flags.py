import pytest
from src.toolrouter.migration import (
    CategoryDisabled,
    CategoryEnabled,
    EmergencyRollback,
    EventBus,
    ExecutionPath,
    FeatureFlags,
    InMemorySettingsStore,
    MigrationState,
    MigrationStateChanged,
    PerformanceMetrics,
    ToolCategory,
    ToolExecution,
    YamlSettingsStore,
    category_for_tool,
)
from src.toolrouter.migration.flags import (
    KEY_ENABLED_CATEGORIES,
    KEY_MIGRATION_STATE,
    error_count_key,
    slow_count_key,
)


@pytest.fixture
def store():
    return InMemorySettingsStore()


@pytest.fixture
def flags(store):
    return FeatureFlags(store)


def make_flags(**initial) -> FeatureFlags:
    return FeatureFlags(InMemorySettingsStore(initial))


ALL_STATES = list(MigrationState)
SAMPLE_TOOLS = ["get_weather", "bikes_nearby", "menu_parse", "unknown_tool_xyz", ""]


# --- defaults and loading ---

def test_defaults(flags):
    assert flags.migration_state is MigrationState.NEW_WITH_FALLBACK
    assert flags.enabled_categories == frozenset({ToolCategory.TRANSPORT})
    assert flags.performance_monitoring_enabled is True
    assert flags.debug_logging_enabled is False


def test_transport_forced_on_at_startup(store):
    store.set(KEY_ENABLED_CATEGORIES, ["search"])
    flags = FeatureFlags(store)
    assert flags.enabled_categories == {ToolCategory.SEARCH, ToolCategory.TRANSPORT}
    assert store.get(KEY_ENABLED_CATEGORIES) == ["search", "transport"]


def test_legacy_state_aliases_accepted():
    assert make_flags(migration_state="mcp_with_fallback").migration_state is MigrationState.NEW_WITH_FALLBACK
    assert make_flags(migration_state="mcp_only").migration_state is MigrationState.NEW_ONLY


def test_unknown_persisted_values_ignored():
    flags = make_flags(migration_state="warp_speed", enabled_categories=["nope", "safety", 3])
    assert flags.migration_state is MigrationState.NEW_WITH_FALLBACK
    assert flags.enabled_categories == {ToolCategory.SAFETY, ToolCategory.TRANSPORT}


def test_monitoring_flags_loaded():
    flags = make_flags(performance_monitoring=False, debug_logging=True)
    assert flags.performance_monitoring_enabled is False
    assert flags.debug_logging_enabled is True


# --- routing ---

@pytest.mark.parametrize("state", ALL_STATES)
def test_routing_is_total(state):
    """Every state answers for every tool name, known or not, without raising."""
    flags = make_flags(migration_state=state.value)
    for tool in SAMPLE_TOOLS:
        assert isinstance(flags.should_use_new_path(tool), bool)
        assert isinstance(flags.should_fallback_to_legacy(tool), bool)


def test_legacy_state_routes_everything_to_legacy():
    flags = make_flags(migration_state="legacy")
    assert not any(flags.should_use_new_path(t) for t in SAMPLE_TOOLS)


@pytest.mark.parametrize("state", [MigrationState.NEW_WITH_FALLBACK, MigrationState.NEW_ONLY])
def test_new_states_route_everything_to_new(state):
    flags = make_flags(migration_state=state.value)
    assert all(flags.should_use_new_path(t) for t in SAMPLE_TOOLS)


def test_hybrid_routes_by_category():
    flags = make_flags(migration_state="hybrid", enabled_categories=["travel"])
    assert flags.should_use_new_path("get_weather")
    assert flags.should_use_new_path("bikes_nearby")  # transport is always on
    assert not flags.should_use_new_path("menu_parse")
    # unknown tools default to location
    assert not flags.should_use_new_path("unknown_tool_xyz")
    flags.enable_category(ToolCategory.LOCATION)
    assert flags.should_use_new_path("unknown_tool_xyz")


def test_category_lookup():
    assert category_for_tool("get_weather") is ToolCategory.TRAVEL
    assert category_for_tool("station_availability") is ToolCategory.TRANSPORT
    assert category_for_tool("vibe_analyze") is ToolCategory.DISCOVERY
    assert category_for_tool("made_up") is ToolCategory.LOCATION


def test_new_only_never_falls_back():
    flags = make_flags(migration_state="new_only")
    for tool in SAMPLE_TOOLS:
        assert flags.should_fallback_to_legacy(tool, RuntimeError("boom")) is False


@pytest.mark.parametrize("state", [MigrationState.LEGACY, MigrationState.HYBRID, MigrationState.NEW_WITH_FALLBACK])
def test_other_states_fall_back(state):
    flags = make_flags(migration_state=state.value)
    assert flags.should_fallback_to_legacy("get_weather", RuntimeError("boom")) is True


def test_fallback_still_allowed_after_repeated_errors():
    flags = make_flags(**{error_count_key("get_weather"): 5})
    assert flags.should_fallback_to_legacy("get_weather") is True


# --- state and category changes ---

def test_set_migration_state_persists_and_publishes(store):
    bus = EventBus()
    events = []
    bus.subscribe(MigrationStateChanged, events.append)
    flags = FeatureFlags(store, events=bus)

    flags.set_migration_state(MigrationState.HYBRID)
    flags.set_migration_state(MigrationState.HYBRID)

    assert store.get(KEY_MIGRATION_STATE) == "hybrid"
    assert len(events) == 1
    assert events[0].previous_state is MigrationState.NEW_WITH_FALLBACK
    assert events[0].new_state is MigrationState.HYBRID


def test_enable_disable_category_events(flags):
    seen = []
    flags.events.subscribe_to_all(seen.append)

    flags.enable_category(ToolCategory.SAFETY)
    flags.disable_category(ToolCategory.SAFETY)

    assert [type(e) for e in seen] == [CategoryEnabled, CategoryDisabled]
    assert seen[0].category is ToolCategory.SAFETY
    assert ToolCategory.SAFETY not in flags.enabled_categories


def test_enable_all_and_disable_all(flags):
    seen = []
    flags.events.subscribe(CategoryEnabled, seen.append)

    flags.enable_all()
    assert flags.enabled_categories == frozenset(ToolCategory)
    # transport was already on
    assert len(seen) == len(ToolCategory) - 1

    flags.disable_all()
    assert flags.enabled_categories == frozenset()


def test_enabled_categories_is_a_copy(flags):
    snapshot = flags.enabled_categories
    flags.enable_category(ToolCategory.SEARCH)
    assert ToolCategory.SEARCH not in snapshot


# --- rollback ---

def test_emergency_rollback_forces_legacy(store):
    flags = FeatureFlags(store)
    flags.set_migration_state(MigrationState.NEW_ONLY)
    flags.enable_all()
    rollbacks = []
    flags.events.subscribe(EmergencyRollback, rollbacks.append)

    flags.emergency_rollback("voice pipeline broke")

    assert flags.migration_state is MigrationState.LEGACY
    assert flags.enabled_categories == frozenset()
    assert not any(flags.should_use_new_path(t) for t in SAMPLE_TOOLS)
    assert rollbacks[0].reason == "voice pipeline broke"
    assert rollbacks[0].previous_state is MigrationState.NEW_ONLY

    record = flags.last_rollback()
    assert record.reason == "voice pipeline broke"
    assert record.previous_state is MigrationState.NEW_ONLY
    assert record.timestamp > 0


def test_rollback_survives_restart_but_transport_returns(store):
    flags = FeatureFlags(store)
    flags.emergency_rollback("bad deploy")

    restarted = FeatureFlags(store)
    assert restarted.migration_state is MigrationState.LEGACY
    assert restarted.enabled_categories == {ToolCategory.TRANSPORT}
    assert restarted.last_rollback().reason == "bad deploy"
    # legacy state still routes everything to legacy
    assert not restarted.should_use_new_path("bikes_nearby")


def test_no_rollback_recorded(flags):
    assert flags.last_rollback() is None


def test_trip_rollback_trigger(flags):
    flags.trip_rollback_trigger("audio_pipeline_errors")
    assert flags.rollback_triggers["audio_pipeline_errors"] is True
    assert flags.migration_state is MigrationState.LEGACY
    assert flags.last_rollback().reason == "trigger:audio_pipeline_errors"


def test_unknown_trigger_ignored(flags):
    flags.trip_rollback_trigger("cosmic_rays")
    assert flags.migration_state is MigrationState.NEW_WITH_FALLBACK
    assert "cosmic_rays" not in flags.rollback_triggers


# --- telemetry ---

def test_record_execution_counts_new_path_errors(flags):
    flags.record_execution("get_weather", used_new_path=True, duration_seconds=0.1,
                           success=False, error=RuntimeError("timeout"))
    flags.record_execution("get_weather", used_new_path=True, duration_seconds=0.1,
                           success=False, error="still down")
    flags.record_execution("get_weather", used_new_path=False, duration_seconds=0.1,
                           success=False, error="legacy failure")

    assert flags.error_count("get_weather") == 2
    assert flags.metrics.new_path_executions[0].error_message == "timeout"
    assert len(flags.metrics.legacy_executions) == 1


def test_error_counts_cover_every_stored_tool():
    flags = make_flags(**{
        error_count_key("get_weather"): 1,
        error_count_key("custom_tool"): 4,
        error_count_key("bikes_nearby"): 0,
        "migration_state": "legacy",
    })
    assert flags.error_counts() == {"get_weather": 1, "custom_tool": 4}


def test_record_execution_counts_slow_runs(store):
    flags = FeatureFlags(store)
    for _ in range(3):
        flags.record_execution("menu_parse", used_new_path=True, duration_seconds=6.0, success=True)
    flags.record_execution("menu_parse", used_new_path=False, duration_seconds=9.0, success=True)
    flags.record_execution("menu_parse", used_new_path=True, duration_seconds=5.0, success=True)

    assert flags.slow_count("menu_parse") == 3
    assert store.get(slow_count_key("menu_parse")) == 3


def test_latency_and_success_rate(flags):
    flags.record_execution("a", used_new_path=True, duration_seconds=1.0, success=True)
    flags.record_execution("a", used_new_path=True, duration_seconds=3.0, success=False, error="x")

    assert flags.average_latency(ExecutionPath.NEW) == pytest.approx(2.0)
    assert flags.success_rate(ExecutionPath.NEW) == pytest.approx(0.5)
    assert flags.average_latency(ExecutionPath.LEGACY) == 0.0
    assert flags.success_rate(ExecutionPath.LEGACY) == 1.0


def test_ring_buffer_bounded_and_ordered():
    metrics = PerformanceMetrics()
    for i in range(250):
        metrics.record(ToolExecution(tool_name=f"t{i}", duration_seconds=0.0, success=True), used_new_path=True)

    executions = metrics.new_path_executions
    assert len(executions) == 100
    assert executions[0].tool_name == "t150"
    assert executions[-1].tool_name == "t249"
    assert metrics.legacy_executions == []


def test_empty_metrics_defaults():
    metrics = PerformanceMetrics()
    assert metrics.success_rate(ExecutionPath.NEW) == 1.0
    assert metrics.success_rate(ExecutionPath.LEGACY) == 1.0
    assert metrics.average_latency(ExecutionPath.NEW) == 0.0


def test_snapshot(flags):
    flags.record_execution("a", used_new_path=False, duration_seconds=0.5, success=True)
    snapshot = flags.snapshot()
    assert snapshot["migration_state"] == "new_with_fallback"
    assert snapshot["enabled_categories"] == ["transport"]
    assert snapshot["legacy_executions"] == 1
    assert snapshot["new_path_success_rate"] == 1.0


# --- persistence failures ---

def test_write_failures_are_logged_not_raised(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("a file, not a directory")
    flags = FeatureFlags(YamlSettingsStore(blocker / "flags.yaml"))

    flags.enable_category(ToolCategory.SEARCH)
    flags.emergency_rollback("disk full")

    assert flags.migration_state is MigrationState.LEGACY


def test_hybrid_with_location_only():
    flags = make_flags(migration_state="hybrid", enabled_categories=["location"])
    assert flags.should_use_new_path("get_user_location") is True
    assert flags.should_use_new_path("get_weather") is False


@pytest.mark.parametrize("state", ALL_STATES)
def test_rollback_from_any_state(state):
    flags = make_flags(migration_state=state.value, enabled_categories=["search", "safety"])
    flags.emergency_rollback("test")
    assert flags.migration_state is MigrationState.LEGACY
    assert flags.enabled_categories == frozenset()


def test_monitoring_and_debug_toggles_persist(store):
    flags = FeatureFlags(store)
    flags.set_performance_monitoring(False)
    flags.set_debug_logging(True)

    restarted = FeatureFlags(store)
    assert restarted.performance_monitoring_enabled is False
    assert restarted.debug_logging_enabled is True
