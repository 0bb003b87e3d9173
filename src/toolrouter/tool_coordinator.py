"""
Tool coordinator: the entry point the voice layer calls.

Asks the feature flags where a call should go, runs it through the protocol
client or the legacy executor, falls back when allowed, and records the
outcome.
"""

import json
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Union

from src.toolrouter.mcp_client import ConnectionState, ConnectionStatus, MCPClient, MCPClientObserver
from src.toolrouter.migration import EmergencyRollback, ExecutionPath, FeatureFlags
from src.toolrouter.protocol import (
    ConnectionFailed,
    DataContent,
    MCPClientError,
    NotConnected,
    TextContent,
    ToolCallRequest,
    ToolCallResponse,
    ToolDescriptor,
    ToolNotFound,
    sanitize_json,
)
from src.toolrouter.tool_servers import ToolServer, register_server, server_label
from src.toolrouter.utils.audit import AuditLogger
from src.utils.logger import get_logger


@dataclass
class ToolResult:
    success: bool
    data: Any = None

    def error_message(self) -> str:
        if isinstance(self.data, str):
            return self.data
        return "Unknown error"


class LegacyToolExecutor(Protocol):
    """The pre-protocol execution path."""

    async def execute_tool(self, name: str, parameters: Dict[str, Any]) -> ToolResult: ...

    def tool_definitions(self) -> List[ToolDescriptor]: ...


def encode_result_data(data: Any) -> str:
    """Render legacy result data as the text of a content block."""
    if isinstance(data, str):
        return data
    if data is None or isinstance(data, (bool, dict, list, tuple)):
        return json.dumps(sanitize_json(data))
    if isinstance(data, (int, float)):
        return str(data)
    return str(sanitize_json(data))


def response_to_result(response: ToolCallResponse) -> ToolResult:
    """Collapse a protocol response into a ToolResult."""
    if response.is_error:
        return ToolResult(success=False, data=response.first_text() or "Unknown error")

    result: Dict[str, Any] = {}
    for block in response.content:
        if isinstance(block, TextContent):
            try:
                parsed = json.loads(block.text)
            except ValueError:
                parsed = None
            if isinstance(parsed, dict):
                result.update(parsed)
            else:
                result["text"] = block.text
        elif isinstance(block, DataContent):
            result.setdefault("data", []).append(
                {"data": block.data, "mimeType": block.mime_type}
            )
    return ToolResult(success=True, data=result)


class ToolCoordinator(MCPClientObserver):
    """Routes tool calls between the protocol client and the legacy executor."""

    def __init__(
        self,
        client: MCPClient,
        flags: FeatureFlags,
        legacy_executor: LegacyToolExecutor,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.client = client
        self.flags = flags
        self.legacy_executor = legacy_executor
        self.audit_logger = audit_logger
        self.logger = get_logger("tool_router.ToolCoordinator")
        self.servers: List[ToolServer] = []
        self.last_tool_used: Optional[str] = None
        self.tool_results: Dict[str, Any] = {}

        self.client.add_observer(self)
        self.flags.events.subscribe(EmergencyRollback, self._on_rollback)
        self.logger.info(
            f"🔧 Initialized with migration state: {flags.migration_state.display_name}"
        )

    ## Setup

    def attach_server(self, server: ToolServer) -> None:
        """Add a backend. Its tools are registered on the next start()."""
        self.servers.append(server)

    async def start(self) -> None:
        """Connect the client and register tools. Connection failures are logged, not raised."""
        try:
            await self.client.connect()
        except MCPClientError as e:
            self.logger.error(f"❌ Failed to connect MCP client: {e}")
            return
        await self.register_servers()
        await self.register_legacy_tools()

    async def register_servers(self) -> None:
        """Register each attached server that has at least one tool routed to the new path.

        A server that fails to list or register is logged and skipped.
        """
        for server in self.servers:
            try:
                descriptors = await server.list_tools()
                if not any(self.flags.should_use_new_path(d.name) for d in descriptors):
                    self.logger.debug(f"⏭️ Skipping {server_label(server)}: no tools on the new path")
                    continue
                await register_server(
                    self.client, server, skip_existing=True, descriptors=descriptors
                )
            except Exception as e:
                self.logger.error(f"❌ Failed to register tools from {server_label(server)}: {e}")
                continue

    async def register_legacy_tools(self) -> None:
        """Expose legacy tools over the protocol for names no server provides."""
        count = 0
        for descriptor in self.legacy_executor.tool_definitions():
            if self.client.has_tool(descriptor.name):
                continue
            self.client.register_tool(descriptor, self._handle_legacy_over_protocol)
            count += 1
        if count:
            self.logger.info(f"✅ Registered {count} legacy tools with MCP client")

    async def _handle_legacy_over_protocol(self, request: ToolCallRequest) -> ToolCallResponse:
        result = await self.legacy_executor.execute_tool(request.name, request.arguments or {})
        if result.success:
            return ToolCallResponse.text(encode_result_data(result.data))
        return ToolCallResponse.error(result.error_message())

    ## Execution

    async def execute_tool(
        self, name: str, parameters: Optional[Dict[str, Any]] = None
    ) -> ToolResult:
        parameters = parameters or {}
        start = time.monotonic()
        use_new_path = self.flags.should_use_new_path(name)

        if self.flags.debug_logging_enabled:
            self.logger.info(f"🔧 Executing '{name}' via {'new path' if use_new_path else 'legacy'}")

        used_new_path = False
        fell_back = False
        error: Optional[Union[BaseException, str]] = None

        if use_new_path:
            try:
                result = await self._execute_via_protocol(name, parameters)
                if not result.success:
                    error = result.error_message()
            except Exception as e:
                self.logger.error(f"❌ New-path execution failed for '{name}': {e}")
                result = ToolResult(success=False, data=str(e))
                error = e

            if result.success:
                used_new_path = True
            elif self.flags.should_fallback_to_legacy(name, error):
                self.logger.info(f"🔄 Falling back to legacy for '{name}'")
                self._record(name, True, time.monotonic() - start, False, error)
                result = await self._execute_via_legacy(name, parameters)
                fell_back = True
            else:
                used_new_path = True
        else:
            result = await self._execute_via_legacy(name, parameters)

        duration = time.monotonic() - start
        final_error = None if result.success else result.error_message()
        self._record(name, used_new_path, duration, result.success, final_error)

        if self.audit_logger:
            self.audit_logger.log_tool_execution(
                tool_name=name,
                path=ExecutionPath.NEW.value if used_new_path else ExecutionPath.LEGACY.value,
                arguments=parameters,
                duration_seconds=duration,
                success=result.success,
                error=final_error,
                fell_back=fell_back,
            )

        self.last_tool_used = name
        self.tool_results[name] = result.data
        return result

    async def _execute_via_protocol(self, name: str, parameters: Dict[str, Any]) -> ToolResult:
        if not self.client.is_connected:
            raise NotConnected()
        if not self.client.has_tool(name):
            raise ToolNotFound(name)
        response = await self.client.call_tool(name, parameters)
        return response_to_result(response)

    async def _execute_via_legacy(self, name: str, parameters: Dict[str, Any]) -> ToolResult:
        try:
            return await self.legacy_executor.execute_tool(name, parameters)
        except Exception as e:
            self.logger.error(f"❌ Legacy execution failed for '{name}': {e}")
            return ToolResult(success=False, data=str(e))

    def _record(
        self,
        name: str,
        used_new_path: bool,
        duration: float,
        success: bool,
        error: Optional[Union[BaseException, str]],
    ) -> None:
        if not self.flags.performance_monitoring_enabled:
            return
        self.flags.record_execution(
            tool_name=name,
            used_new_path=used_new_path,
            duration_seconds=duration,
            success=success,
            error=None if success else error,
        )

    ## Client observation

    def on_state_changed(self, client: MCPClient, state: ConnectionState) -> None:
        if state == ConnectionState.READY:
            self.logger.info("✅ MCP client ready")
        elif state.status is ConnectionStatus.ERROR:
            self.logger.error(f"❌ MCP client error state: {state.message}")
        elif state == ConnectionState.DISCONNECTED:
            self.logger.info("🔌 MCP client disconnected")
        elif self.flags.debug_logging_enabled:
            self.logger.info(f"🔧 MCP client state: {state}")

    def on_error(self, client: MCPClient, error: BaseException) -> None:
        if isinstance(error, ConnectionFailed):
            self.flags.emergency_rollback(f"MCP client connection failed: {error}")

    def on_notification(
        self, client: MCPClient, method: str, params: Optional[Dict[str, Any]]
    ) -> None:
        if self.flags.debug_logging_enabled:
            self.logger.info(f"🔔 Received MCP notification: {method}")

    def _on_rollback(self, event: EmergencyRollback) -> None:
        if self.audit_logger:
            self.audit_logger.log_rollback(event.reason, event.previous_state.value)

    ## Reporting

    def performance_comparison(self) -> Dict[str, Any]:
        snapshot = self.flags.snapshot()
        snapshot["new_path_connected"] = self.client.is_connected
        snapshot["registered_tools"] = len(self.client.registry)
        return snapshot

    def debug_info(self) -> str:
        flags = self.flags
        categories = ", ".join(sorted(c.display_name for c in flags.enabled_categories)) or "none"
        lines = [
            "Tool Coordinator",
            f"  Migration State: {flags.migration_state.display_name}",
            f"  Enabled Categories: {categories}",
            f"  MCP Client Connected: {self.client.is_connected}",
            f"  Legacy Tools: {len(self.legacy_executor.tool_definitions())}",
            "  Performance Metrics:",
            f"    New-Path Executions: {len(flags.metrics.new_path_executions)}",
            f"    Legacy Executions: {len(flags.metrics.legacy_executions)}",
            f"    New-Path Avg Latency: {flags.average_latency(ExecutionPath.NEW):.3f}s",
            f"    Legacy Avg Latency: {flags.average_latency(ExecutionPath.LEGACY):.3f}s",
            f"    New-Path Success Rate: {flags.success_rate(ExecutionPath.NEW) * 100:.1f}%",
            f"    Legacy Success Rate: {flags.success_rate(ExecutionPath.LEGACY) * 100:.1f}%",
        ]
        return "\n".join(lines) + "\n" + self.client.debug_info()
