from pathlib import Path
from typing import Any, Dict, Iterable, Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from src.toolrouter.mcp_client import MCPClient
from src.toolrouter.migration import FeatureFlags, YamlSettingsStore
from src.toolrouter.tool_coordinator import LegacyToolExecutor, ToolCoordinator, ToolResult
from src.toolrouter.tool_servers import ToolServer
from src.toolrouter.utils.audit import AuditLogger
from src.utils.logger import configure_logging, get_logger

DEFAULT_STATE_PATH = Path.home() / ".config" / "tool-router" / "flags.yaml"


class RouterSettings(BaseSettings):
    """Configuration settings for the tool router."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    state_path: Path = DEFAULT_STATE_PATH
    audit_log_dir: Optional[str] = None  # Audit log disabled when unset (env: TOOL_ROUTER_AUDIT_LOG_DIR)
    client_name: str = "ToolRouter"
    client_version: str = "1.0.0"

    model_config = SettingsConfigDict(env_prefix="TOOL_ROUTER_")


class ToolRouter:
    """Wires settings, feature flags, the protocol client and the coordinator together."""

    def __init__(
        self,
        legacy_executor: LegacyToolExecutor,
        servers: Iterable[ToolServer] = (),
        **settings: Any,
    ):
        self.settings = RouterSettings(**settings)
        configure_logging(level=self.settings.log_level)
        self.logger = get_logger("tool_router.ToolRouter")

        self.flags = FeatureFlags(YamlSettingsStore(self.settings.state_path))
        self.client = MCPClient(
            client_name=self.settings.client_name,
            client_version=self.settings.client_version,
        )
        self.audit_logger = (
            AuditLogger(log_dir=self.settings.audit_log_dir)
            if self.settings.audit_log_dir
            else None
        )
        self.coordinator = ToolCoordinator(
            self.client, self.flags, legacy_executor, audit_logger=self.audit_logger
        )
        for server in servers:
            self.coordinator.attach_server(server)

    async def start(self) -> None:
        self.logger.info(f"🚀 Starting tool router (state: {self.settings.state_path})")
        await self.coordinator.start()

    async def execute_tool(
        self, name: str, parameters: Optional[Dict[str, Any]] = None
    ) -> ToolResult:
        return await self.coordinator.execute_tool(name, parameters)

    async def stop(self) -> None:
        await self.client.disconnect()
        if self.audit_logger:
            self.audit_logger.close()
        self.logger.info("🛑 Tool router stopped")
