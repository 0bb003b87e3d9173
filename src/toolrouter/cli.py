from __future__ import annotations
from datetime import datetime
from pathlib import Path
from typing import Optional
from src.toolrouter.migration import FeatureFlags, MigrationState, ToolCategory, YamlSettingsStore
from src.toolrouter.migration.models import TOOL_CATEGORY_INDEX
from src.utils.logger import get_logger

logger = get_logger("tool_router.cli")
DEFAULT_YAML = Path.home() / ".config" / "tool-router" / "flags.yaml"


def _flags(yaml_path: Path) -> FeatureFlags:
    return FeatureFlags(YamlSettingsStore(yaml_path))


def _parse_category(name: str) -> Optional[ToolCategory]:
    try:
        return ToolCategory(name.strip().lower())
    except ValueError:
        return None


def _category_choices() -> str:
    return ", ".join(c.value for c in ToolCategory)


def cmd_status(yaml_path: Path = DEFAULT_YAML) -> str:
    flags = _flags(yaml_path)
    state = flags.migration_state
    enabled = [c.value for c in ToolCategory if c in flags.enabled_categories]

    lines = ["Tool Router Status", "=" * 40]
    lines.append(f"  State:        {state.display_name} ({state.value})")
    lines.append(f"                {state.description}")
    lines.append(f"  Categories:   {', '.join(enabled) if enabled else 'none'}")
    lines.append(f"  Monitoring:   {'on' if flags.performance_monitoring_enabled else 'off'}")
    lines.append(f"  Debug logs:   {'on' if flags.debug_logging_enabled else 'off'}")

    rollback = flags.last_rollback()
    if rollback:
        when = datetime.fromtimestamp(rollback.timestamp).isoformat(timespec="seconds")
        lines.append(f"\nLast rollback ({when})")
        lines.append(f"  Reason:   {rollback.reason}")
        lines.append(f"  From:     {rollback.previous_state.value}")

    failing = sorted(flags.error_counts().items())
    if failing:
        lines.append("\nNew-path errors")
        for name, count in failing:
            lines.append(f"  {name}: {count}")

    return "\n".join(lines)


def cmd_categories(yaml_path: Path = DEFAULT_YAML) -> str:
    flags = _flags(yaml_path)
    lines = []
    for category in ToolCategory:
        if lines:
            lines.append("")
        mark = "✓" if category in flags.enabled_categories else "✗"
        lines.append(f"{mark} {category.value} ({len(category.tool_names)} tools)")
        for tool_name in category.tool_names:
            route = "new" if flags.should_use_new_path(tool_name) else "legacy"
            lines.append(f"    {tool_name} -> {route}")
    return "\n".join(lines)


def cmd_set_state(state: str, yaml_path: Path = DEFAULT_YAML) -> str:
    parsed = MigrationState.parse(state)
    if parsed is None:
        choices = ", ".join(s.value for s in MigrationState)
        return f"Unknown migration state: {state} (choose from {choices})"
    flags = _flags(yaml_path)
    flags.set_migration_state(parsed)
    return f"✅ Migration state set to {parsed.display_name}. Saved to {yaml_path}"


def cmd_enable(category: str, yaml_path: Path = DEFAULT_YAML) -> str:
    parsed = _parse_category(category)
    if parsed is None:
        return f"Unknown category: {category} (choose from {_category_choices()})"
    _flags(yaml_path).enable_category(parsed)
    return f"✅ Enabled {parsed.display_name}. Saved to {yaml_path}"


def cmd_disable(category: str, yaml_path: Path = DEFAULT_YAML) -> str:
    parsed = _parse_category(category)
    if parsed is None:
        return f"Unknown category: {category} (choose from {_category_choices()})"
    _flags(yaml_path).disable_category(parsed)
    return f"❌ Disabled {parsed.display_name}. Saved to {yaml_path}"


def cmd_enable_all(yaml_path: Path = DEFAULT_YAML) -> str:
    _flags(yaml_path).enable_all()
    return f"✅ Enabled all categories. Saved to {yaml_path}"


def cmd_disable_all(yaml_path: Path = DEFAULT_YAML) -> str:
    _flags(yaml_path).disable_all()
    return f"❌ Disabled all categories. Saved to {yaml_path}"


def cmd_rollback(
    reason: Optional[str] = None,
    trigger: Optional[str] = None,
    yaml_path: Path = DEFAULT_YAML,
) -> str:
    flags = _flags(yaml_path)
    if trigger:
        if trigger not in flags.rollback_triggers:
            return f"Unknown rollback trigger: {trigger} (choose from {', '.join(flags.rollback_triggers)})"
        flags.trip_rollback_trigger(trigger)
    else:
        flags.emergency_rollback(reason or "manual rollback from CLI")
    rollback = flags.last_rollback()
    return f"🚨 Rolled back to legacy ({rollback.reason if rollback else reason}). Saved to {yaml_path}"


async def cmd_check(yaml_path: Path = DEFAULT_YAML) -> str:
    """Connect an in-process client and report the handshake and tool routes."""
    from src.toolrouter.mcp_client import MCPClient
    from src.toolrouter.protocol import MCPClientError

    flags = _flags(yaml_path)
    client = MCPClient()
    try:
        await client.connect()
    except MCPClientError as e:
        return f"❌ Client failed to connect: {e}"

    try:
        info = client.server_info
        routed = sum(1 for name in TOOL_CATEGORY_INDEX if flags.should_use_new_path(name))
        lines = [
            f"✅ Connected to {info.name if info else 'unknown'} "
            f"(protocol {client.protocol_version})",
            f"  State:        {flags.migration_state.value}",
            f"  New path:     {routed}/{len(TOOL_CATEGORY_INDEX)} known tools",
        ]
    finally:
        await client.disconnect()
    return "\n".join(lines)
