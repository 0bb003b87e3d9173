"""
Contract for tool servers (the backends behind the protocol client) and the
glue that registers their tools.
"""

from typing import List, Optional, Protocol, runtime_checkable

from mcp import types
from mcp.client.session import ClientSession

from src.toolrouter.mcp_client import MCPClient
from src.toolrouter.protocol import (
    InvalidResponse,
    ToolCallRequest,
    ToolCallResponse,
    ToolDescriptor,
    sanitize_json,
)
from src.utils.logger import get_logger

logger = get_logger("tool_router.servers")


@runtime_checkable
class ToolServer(Protocol):
    """What the core needs from a backend: list its tools, run one by name."""

    async def list_tools(self) -> List[ToolDescriptor]: ...

    async def call_tool(self, request: ToolCallRequest) -> ToolCallResponse: ...


def server_label(server: ToolServer) -> str:
    info = getattr(server, "server_info", None)
    if callable(info):
        info = info()
    if isinstance(info, types.Implementation):
        return info.name
    return type(server).__name__


async def register_server(
    client: MCPClient,
    server: ToolServer,
    skip_existing: bool = False,
    descriptors: Optional[List[ToolDescriptor]] = None,
) -> List[str]:
    """
    Register every tool of ``server`` with ``client``.

    Args:
        client: Client whose registry receives the tools.
        server: Backend implementing the ToolServer contract.
        skip_existing: Leave names that are already registered untouched.
        descriptors: Tools already fetched from ``server`` (skips list_tools).

    Returns:
        Names that were registered.
    """
    label = server_label(server)

    async def _handler(request: ToolCallRequest) -> ToolCallResponse:
        logger.debug(f"➡️ Routing '{request.name}' to {label}")
        return await server.call_tool(request)

    if descriptors is None:
        descriptors = await server.list_tools()

    registered: List[str] = []
    for descriptor in descriptors:
        if skip_existing and client.has_tool(descriptor.name):
            continue
        client.register_tool(descriptor, _handler)
        registered.append(descriptor.name)

    if registered:
        logger.info(f"✅ Registered {len(registered)} tools from {label}")
    return registered


class SessionToolServer:
    """
    Exposes the tools of a remote MCP server through an open ClientSession.

    The session must already be entered; call initialize() once before use.
    """

    def __init__(self, name: str, session: ClientSession):
        self.name = name
        self.session = session
        self._capabilities: Optional[types.ServerCapabilities] = None
        self._server_info: Optional[types.Implementation] = None

    async def initialize(self) -> types.InitializeResult:
        result = await self.session.initialize()
        self._capabilities = result.capabilities
        self._server_info = result.serverInfo
        logger.info(f"🔌 Initialized remote server '{self.name}' ({result.serverInfo.name})")
        return result

    def capabilities(self) -> Optional[types.ServerCapabilities]:
        return self._capabilities

    def server_info(self) -> types.Implementation:
        return self._server_info or types.Implementation(name=self.name, version="unknown")

    async def list_tools(self) -> List[ToolDescriptor]:
        if self._capabilities is not None and not self._capabilities.tools:
            return []
        result = await self.session.list_tools()
        return [ToolDescriptor.from_mcp(tool) for tool in result.tools]

    async def call_tool(self, request: ToolCallRequest) -> ToolCallResponse:
        result = await self.session.call_tool(
            request.name, sanitize_json(request.arguments or {})
        )
        if not isinstance(result, types.CallToolResult):
            raise InvalidResponse(f"tools/call returned {type(result).__name__}")
        return ToolCallResponse.from_mcp(result)
