"""
Tool registry: the single name -> handler dispatch point.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from src.toolrouter.protocol import ToolCallRequest, ToolCallResponse, ToolDescriptor, ToolNotFound
from src.utils.logger import get_logger

ToolHandler = Callable[[ToolCallRequest], Awaitable[ToolCallResponse]]


@dataclass(frozen=True)
class ToolEntry:
    descriptor: ToolDescriptor
    handler: ToolHandler


class ToolRegistry:
    """
    Maps tool names to their descriptor and async handler.

    Registering an existing name replaces descriptor and handler together and
    keeps the tool's original position in ``list_tools()``.
    """

    def __init__(self):
        self._entries: Dict[str, ToolEntry] = {}
        self.logger = get_logger("tool_router.ToolRegistry")

    def register(self, descriptor: ToolDescriptor, handler: ToolHandler) -> None:
        replaced = descriptor.name in self._entries
        self._entries[descriptor.name] = ToolEntry(descriptor=descriptor, handler=handler)
        if replaced:
            self.logger.debug(f"🔁 Replaced tool: {descriptor.name}")
        else:
            self.logger.debug(f"🔧 Registered tool: {descriptor.name}")

    def unregister(self, name: str) -> None:
        if self._entries.pop(name, None) is not None:
            self.logger.debug(f"🗑️ Unregistered tool: {name}")

    def list_tools(self) -> List[ToolDescriptor]:
        return [entry.descriptor for entry in self._entries.values()]

    def get_tool(self, name: str) -> Optional[ToolDescriptor]:
        entry = self._entries.get(name)
        return entry.descriptor if entry else None

    def has_tool(self, name: str) -> bool:
        return name in self._entries

    def clear(self) -> None:
        self._entries.clear()

    async def invoke(
        self, name: str, arguments: Optional[Dict[str, Any]] = None
    ) -> ToolCallResponse:
        """
        Run the handler registered under ``name``.

        Raises:
            ToolNotFound: If no tool is registered under ``name``.

        Handler exceptions are not caught here.
        """
        entry = self._entries.get(name)
        if entry is None:
            raise ToolNotFound(name)
        return await entry.handler(ToolCallRequest(name=name, arguments=arguments))

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)
