"""
Message model for the tool-call protocol.

Tool descriptors, call requests/responses and content blocks are defined here
as pydantic models that serialize to the MCP wire shape. Handshake and
capability types are taken from ``mcp.types`` unchanged.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from typing import Annotated, Any, Literal, Optional, Union

from mcp import types
from mcp.shared.exceptions import McpError
from mcp.types import (
    ErrorData,
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
)
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

PROTOCOL_VERSION = "2024-11-05"

# Server-defined JSON-RPC codes (reserved range -32000..-32099)
SERVER_ERROR = -32000
METHOD_NOT_ALLOWED = -32001
INVALID_TOOL_NAME = -32002
NOT_CONNECTED = -32003


class MCPMethod:
    INITIALIZE = "initialize"
    INITIALIZED = "notifications/initialized"
    PING = "ping"
    LIST_TOOLS = "tools/list"
    CALL_TOOL = "tools/call"
    LIST_RESOURCES = "resources/list"
    READ_RESOURCE = "resources/read"
    LIST_PROMPTS = "prompts/list"
    GET_PROMPT = "prompts/get"
    CREATE_MESSAGE = "sampling/createMessage"


# Containers nested deeper than this are collapsed to a placeholder string
MAX_JSON_DEPTH = 64


def sanitize_json(value: Any) -> Any:
    """Coerce a value into something ``json.dumps`` accepts.

    Strings, numbers, booleans and None pass through; lists, tuples and
    mappings recurse; anything else is replaced by its string form. A
    container that contains itself becomes ``"<cycle>"`` and nesting past
    ``MAX_JSON_DEPTH`` is cut off. Idempotent, never raises.
    """
    return _sanitize(value, set(), 0)


def _sanitize(value: Any, active: set[int], depth: int) -> Any:
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    is_mapping = isinstance(value, Mapping)
    if not is_mapping and not isinstance(value, (list, tuple)):
        return _stringify(value)
    if id(value) in active:
        return "<cycle>"
    if depth >= MAX_JSON_DEPTH:
        return f"<{type(value).__name__} nested too deep>"

    # only ids on the current path count, shared siblings still expand
    active.add(id(value))
    try:
        if is_mapping:
            return {
                _stringify(k): _sanitize(v, active, depth + 1) for k, v in value.items()
            }
        return [_sanitize(v, active, depth + 1) for v in value]
    finally:
        active.discard(id(value))


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    try:
        return str(value)
    except Exception:
        # __str__ itself blew up; object.__repr__ cannot
        return object.__repr__(value)


## Tool descriptions

class PropertySchema(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: str
    description: Optional[str] = None
    enum_values: Optional[tuple[str, ...]] = Field(default=None, alias="enum")
    format: Optional[str] = None


class ParameterSchema(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: Literal["object"] = "object"
    properties: dict[str, PropertySchema] = Field(default_factory=dict)
    required: tuple[str, ...] = ()
    additional_properties: bool = Field(default=False, alias="additionalProperties")

    @field_validator("required", mode="before")
    @classmethod
    def _dedupe_required(cls, value: Any) -> Any:
        if value is None:
            return ()
        seen: list[str] = []
        for name in value:
            if name not in seen:
                seen.append(name)
        return tuple(seen)

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class ToolDescriptor(BaseModel):
    """Name, description and input schema of one tool. Immutable."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    description: str = ""
    input_schema: ParameterSchema = Field(default_factory=ParameterSchema, alias="inputSchema")

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")

    def to_mcp(self) -> types.Tool:
        return types.Tool(
            name=self.name,
            description=self.description,
            inputSchema=self.input_schema.to_json(),
        )

    @classmethod
    def from_mcp(cls, tool: types.Tool) -> "ToolDescriptor":
        schema = dict(tool.inputSchema or {})
        # Remote servers may describe nested schemas we do not model; keep what maps
        properties = {
            name: {
                "type": spec.get("type", "string") if isinstance(spec.get("type"), str) else "string",
                "description": spec.get("description"),
                "enum": [str(v) for v in spec["enum"]] if isinstance(spec.get("enum"), list) else None,
                "format": spec.get("format"),
            }
            for name, spec in (schema.get("properties") or {}).items()
            if isinstance(spec, dict)
        }
        return cls(
            name=tool.name,
            description=tool.description or "",
            input_schema=ParameterSchema(
                properties=properties,
                required=schema.get("required") or (),
                additional_properties=bool(schema.get("additionalProperties", False)),
            ),
        )


## Tool calls

class TextContent(BaseModel):
    type: Literal["text"] = "text"
    text: str


class DataContent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["data"] = "data"
    data: str
    mime_type: str = Field(alias="mimeType")


ContentBlock = Annotated[Union[TextContent, DataContent], Field(discriminator="type")]


class ToolCallRequest(BaseModel):
    name: str
    arguments: Optional[dict[str, Any]] = None

    @field_serializer("arguments")
    def _serialize_arguments(self, arguments: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
        if arguments is None:
            return None
        return sanitize_json(arguments)

    def argument(self, key: str, default: Any = None) -> Any:
        """Return a single argument, or ``default`` when absent or null."""
        if not self.arguments:
            return default
        value = self.arguments.get(key)
        return default if value is None else value


class ToolCallResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: list[ContentBlock] = Field(default_factory=list)
    is_error: bool = Field(default=False, alias="isError")

    @field_validator("is_error", mode="before")
    @classmethod
    def _null_is_false(cls, value: Any) -> Any:
        return False if value is None else value

    @classmethod
    def text(cls, text: str) -> "ToolCallResponse":
        return cls(content=[TextContent(text=text)])

    @classmethod
    def error(cls, message: str) -> "ToolCallResponse":
        return cls(content=[TextContent(text=message)], is_error=True)

    def first_text(self) -> Optional[str]:
        for block in self.content:
            if isinstance(block, TextContent):
                return block.text
        return None

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")

    @classmethod
    def from_mcp(cls, result: types.CallToolResult) -> "ToolCallResponse":
        blocks: list[Union[TextContent, DataContent]] = []
        for item in result.content:
            if isinstance(item, types.TextContent):
                blocks.append(TextContent(text=item.text))
            elif isinstance(item, (types.ImageContent, types.AudioContent)):
                blocks.append(DataContent(data=item.data, mime_type=item.mimeType))
            else:
                blocks.append(TextContent(text=item.model_dump_json()))
        return cls(content=blocks, is_error=bool(result.isError))


## JSON-RPC helpers

def build_request(method: str, params: Optional[Mapping[str, Any]] = None) -> types.JSONRPCRequest:
    """Build a JSON-RPC request envelope with sanitized params."""
    return types.JSONRPCRequest(
        jsonrpc="2.0",
        id=str(uuid.uuid4()),
        method=method,
        params=sanitize_json(params) if params is not None else None,
    )


def default_client_capabilities() -> types.ClientCapabilities:
    return types.ClientCapabilities()


def in_process_server_capabilities() -> types.ServerCapabilities:
    return types.ServerCapabilities(tools=types.ToolsCapability(listChanged=True))


## Errors

class MCPClientError(McpError):
    """Base class for errors raised by the registry and the protocol client."""

    code: int = INTERNAL_ERROR

    def __init__(self, message: str, data: Any = None):
        super().__init__(ErrorData(code=self.code, message=message, data=data))


class NotConnected(MCPClientError):
    code = NOT_CONNECTED

    def __init__(self, message: str = "MCP client is not connected"):
        super().__init__(message)


class ConnectionFailed(MCPClientError):
    code = SERVER_ERROR

    def __init__(self, cause: BaseException):
        super().__init__(f"MCP connection failed: {cause}")
        self.cause = cause


class InitializationFailed(MCPClientError):
    code = SERVER_ERROR

    def __init__(self, cause: BaseException):
        super().__init__(f"MCP initialization failed: {cause}")
        self.cause = cause


class ToolNotFound(MCPClientError):
    code = INVALID_TOOL_NAME

    def __init__(self, tool_name: str):
        super().__init__(f"Tool '{tool_name}' not found", data={"name": tool_name})
        self.tool_name = tool_name


class InvalidResponse(MCPClientError):
    code = INVALID_PARAMS

    def __init__(self, message: str = "Invalid MCP response received"):
        super().__init__(message)


class ProtocolError(MCPClientError):
    code = INVALID_REQUEST

    def __init__(self, message: str):
        super().__init__(f"MCP protocol error: {message}")


class InternalError(MCPClientError):
    code = INTERNAL_ERROR

    def __init__(self, message: str):
        super().__init__(f"MCP internal error: {message}")
