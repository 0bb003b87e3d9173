from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from mcp import types
from mcp.client.session import ClientSession

from src.toolrouter.protocol import (
    PROTOCOL_VERSION,
    ConnectionFailed,
    InitializationFailed,
    InvalidResponse,
    NotConnected,
    ProtocolError,
    ToolCallResponse,
    ToolDescriptor,
    ToolNotFound,
    default_client_capabilities,
    in_process_server_capabilities,
)
from src.toolrouter.tool_registry import ToolHandler, ToolRegistry
from src.utils.logger import get_logger


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    INITIALIZING = "initializing"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True, eq=False)
class ConnectionState:
    """Connection state of an MCPClient. Only ERROR carries a message."""

    status: ConnectionStatus
    message: Optional[str] = None

    @classmethod
    def error(cls, message: str) -> "ConnectionState":
        return cls(ConnectionStatus.ERROR, message)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ConnectionState):
            return NotImplemented
        if self.status is ConnectionStatus.ERROR:
            return other.status is ConnectionStatus.ERROR and self.message == other.message
        return self.status is other.status

    def __hash__(self) -> int:
        if self.status is ConnectionStatus.ERROR:
            return hash((self.status, self.message))
        return hash(self.status)

    def __str__(self) -> str:
        if self.status is ConnectionStatus.ERROR:
            return f"error({self.message})"
        return self.status.value


ConnectionState.DISCONNECTED = ConnectionState(ConnectionStatus.DISCONNECTED)
ConnectionState.CONNECTING = ConnectionState(ConnectionStatus.CONNECTING)
ConnectionState.CONNECTED = ConnectionState(ConnectionStatus.CONNECTED)
ConnectionState.INITIALIZING = ConnectionState(ConnectionStatus.INITIALIZING)
ConnectionState.READY = ConnectionState(ConnectionStatus.READY)


class MCPClientObserver:
    """Receives client events synchronously. Override what you need."""

    def on_state_changed(self, client: "MCPClient", state: ConnectionState) -> None:
        pass

    def on_error(self, client: "MCPClient", error: BaseException) -> None:
        pass

    def on_notification(
        self, client: "MCPClient", method: str, params: Optional[Dict[str, Any]]
    ) -> None:
        pass


## Transports

class Transport(ABC):
    """Carries the handshake for an MCPClient."""

    @abstractmethod
    async def open(self) -> None: ...

    @abstractmethod
    async def initialize(
        self,
        client_info: types.Implementation,
        capabilities: types.ClientCapabilities,
    ) -> types.InitializeResult: ...

    @abstractmethod
    async def close(self) -> None: ...


class InProcessTransport(Transport):
    """Synthetic handshake with the in-process tool servers. No I/O."""

    def __init__(
        self,
        server_name: str = "Tool Router In-Process MCP Server",
        server_version: str = "1.0.0",
        capabilities: Optional[types.ServerCapabilities] = None,
    ):
        self.server_info = types.Implementation(name=server_name, version=server_version)
        self.capabilities = capabilities or in_process_server_capabilities()

    async def open(self) -> None:
        return None

    async def initialize(
        self,
        client_info: types.Implementation,
        capabilities: types.ClientCapabilities,
    ) -> types.InitializeResult:
        return types.InitializeResult(
            protocolVersion=PROTOCOL_VERSION,
            capabilities=self.capabilities,
            serverInfo=self.server_info,
        )

    async def close(self) -> None:
        return None


class SessionTransport(Transport):
    """
    Handshake over an already-open ``mcp`` ClientSession.

    The session's streams belong to the caller's AsyncExitStack, so close()
    leaves them alone.
    """

    def __init__(self, session: ClientSession):
        self.session = session

    async def open(self) -> None:
        return None

    async def initialize(
        self,
        client_info: types.Implementation,
        capabilities: types.ClientCapabilities,
    ) -> types.InitializeResult:
        result = await self.session.initialize()
        if not isinstance(result, types.InitializeResult):
            raise InvalidResponse(f"initialize returned {type(result).__name__}")
        return result

    async def close(self) -> None:
        return None


## Client

class MCPClient:
    """
    Protocol client with a connection state machine over a ToolRegistry.

    Disconnected -> Connecting -> Initializing -> Ready; any state may move to
    Error; disconnect() always ends in Disconnected. Observers see every
    transition before the call that caused it returns.
    """

    def __init__(
        self,
        client_name: str = "ToolRouter",
        client_version: str = "1.0.0",
        capabilities: Optional[types.ClientCapabilities] = None,
        transport: Optional[Transport] = None,
        registry: Optional[ToolRegistry] = None,
    ):
        self.client_info = types.Implementation(name=client_name, version=client_version)
        self.requested_capabilities = capabilities or default_client_capabilities()
        self.transport: Transport = transport or InProcessTransport()
        self.registry = registry or ToolRegistry()
        self.logger = get_logger("tool_router.MCPClient")
        self._state: ConnectionState = ConnectionState.DISCONNECTED
        self._observers: List[MCPClientObserver] = []
        self._server_info: Optional[types.Implementation] = None
        self._server_capabilities: Optional[types.ServerCapabilities] = None
        self._protocol_version: Optional[str] = None
        # bumped by disconnect() so an in-flight connect() can tell it lost
        self._epoch = 0

    ## Observation

    def add_observer(self, observer: MCPClientObserver) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def remove_observer(self, observer: MCPClientObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def _set_state(self, state: ConnectionState) -> None:
        self._state = state
        self.logger.debug(f"🔄 Connection state: {state}")
        for observer in list(self._observers):
            try:
                observer.on_state_changed(self, state)
            except Exception as e:
                self.logger.warning(f"⚠️ Observer failed on state change to {state}: {e}")

    def _report_error(self, error: BaseException) -> None:
        for observer in list(self._observers):
            try:
                observer.on_error(self, error)
            except Exception as e:
                self.logger.warning(f"⚠️ Observer failed handling error '{error}': {e}")

    def notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        """Deliver a server-originated notification to observers."""
        for observer in list(self._observers):
            try:
                observer.on_notification(self, method, params)
            except Exception as e:
                self.logger.warning(f"⚠️ Observer failed on notification '{method}': {e}")

    ## Connection management

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.READY

    @property
    def server_info(self) -> Optional[types.Implementation]:
        return self._server_info

    @property
    def server_capabilities(self) -> Optional[types.ServerCapabilities]:
        return self._server_capabilities

    @property
    def protocol_version(self) -> Optional[str]:
        return self._protocol_version

    async def connect(self) -> None:
        """
        Open the transport and run the initialize handshake.

        A disconnect() that lands while the handshake is suspended wins: the
        client stays Disconnected and connect() raises ProtocolError.

        Raises:
            ConnectionFailed: The transport could not be opened.
            InitializationFailed: The handshake did not complete.
            ProtocolError: Another connect() is still in flight, or a
                disconnect() interrupted this one.
        """
        if self._state == ConnectionState.READY:
            self.logger.debug("connect() called while ready, nothing to do")
            return
        if self._state.status in (
            ConnectionStatus.CONNECTING,
            ConnectionStatus.CONNECTED,
            ConnectionStatus.INITIALIZING,
        ):
            raise ProtocolError(f"connect() already in progress (state: {self._state})")

        epoch = self._epoch
        self._set_state(ConnectionState.CONNECTING)
        try:
            await self.transport.open()
        except Exception as e:
            await self._check_not_superseded(epoch)
            error = ConnectionFailed(e)
            self.logger.error(f"❌ {error}")
            await self._fail(error)
            raise error from e
        await self._check_not_superseded(epoch)

        self._set_state(ConnectionState.INITIALIZING)
        try:
            result = await self.transport.initialize(self.client_info, self.requested_capabilities)
        except Exception as e:
            await self._check_not_superseded(epoch)
            error = InitializationFailed(e)
            self.logger.error(f"❌ {error}")
            await self._fail(error)
            raise error from e
        await self._check_not_superseded(epoch)

        self._server_info = result.serverInfo
        self._server_capabilities = result.capabilities
        self._protocol_version = str(result.protocolVersion)
        self._set_state(ConnectionState.READY)
        self.logger.info(
            f"✅ Connected to {result.serverInfo.name} v{result.serverInfo.version}"
        )

    async def _check_not_superseded(self, epoch: int) -> None:
        if self._epoch == epoch:
            return
        self.logger.warning("⚠️ connect() interrupted by disconnect(), abandoning handshake")
        try:
            await self.transport.close()
        except Exception as e:
            self.logger.warning(f"⚠️ Error closing transport: {e}")
        raise ProtocolError("connect() interrupted by disconnect()")

    async def _fail(self, error: BaseException) -> None:
        self._set_state(ConnectionState.error(str(error)))
        self._report_error(error)
        try:
            await self.transport.close()
        except Exception as e:
            self.logger.warning(f"⚠️ Error closing transport after failure: {e}")

    async def disconnect(self) -> None:
        """Drop every registered tool and return to Disconnected. Idempotent."""
        self._epoch += 1
        self.registry.clear()
        self._server_info = None
        self._server_capabilities = None
        self._protocol_version = None
        try:
            await self.transport.close()
        except Exception as e:
            self.logger.warning(f"⚠️ Error closing transport: {e}")
        if self._state != ConnectionState.DISCONNECTED:
            self._set_state(ConnectionState.DISCONNECTED)
            self.logger.info("🔌 Disconnected")

    def _require_ready(self) -> None:
        if self._state != ConnectionState.READY:
            raise NotConnected()

    ## Tool registration

    def register_tool(self, descriptor: ToolDescriptor, handler: ToolHandler) -> None:
        self.registry.register(descriptor, handler)

    def unregister_tool(self, name: str) -> None:
        self.registry.unregister(name)

    def has_tool(self, name: str) -> bool:
        return self.registry.has_tool(name)

    def get_tool_info(self, name: str) -> Optional[ToolDescriptor]:
        return self.registry.get_tool(name)

    ## Tool operations

    async def list_tools(self) -> List[ToolDescriptor]:
        self._require_ready()
        return self.registry.list_tools()

    async def call_tool(
        self,
        name: str,
        arguments: Optional[Dict[str, Any]] = None,
        *,
        raise_errors: bool = True,
    ) -> ToolCallResponse:
        """
        Invoke a registered tool.

        Args:
            name: Tool name.
            arguments: JSON-style argument map, passed through untouched.
            raise_errors: Re-raise handler failures (default). When False a
                failure comes back as an ``isError`` response instead.

        Raises:
            NotConnected: The client is not ready.
            ToolNotFound: No tool registered under ``name``.
        """
        self._require_ready()
        if not self.registry.has_tool(name):
            raise ToolNotFound(name)

        try:
            response = await self.registry.invoke(name, arguments)
            if not isinstance(response, ToolCallResponse):
                raise InvalidResponse(
                    f"Tool '{name}' returned {type(response).__name__}, expected ToolCallResponse"
                )
        except Exception as e:
            self.logger.error(f"❌ Tool '{name}' execution failed: {e}")
            self._report_error(e)
            if raise_errors:
                raise
            return ToolCallResponse.error(f"Tool '{name}' failed: {e}")

        self.logger.info(f"🔧 Tool '{name}' executed successfully")
        return response

    ## Debug

    def debug_info(self) -> str:
        lines = [
            "MCP Client",
            f"  Connection State: {self._state}",
        ]
        if self._server_info:
            lines.append(f"  Server Info: {self._server_info.name} v{self._server_info.version}")
        else:
            lines.append("  Server Info: Unknown")
        tools = self.registry.list_tools()
        lines.append(f"  Available Tools: {len(tools)}")
        for tool in tools:
            lines.append(f"    - {tool.name}: {tool.description}")
        caps = self._server_capabilities
        if caps:
            lines.append("  Server Capabilities:")
            lines.append(f"    Tools: {'✅' if caps.tools else '❌'}")
            lines.append(f"    Resources: {'✅' if caps.resources else '❌'}")
            lines.append(f"    Prompts: {'✅' if caps.prompts else '❌'}")
        return "\n".join(lines)
