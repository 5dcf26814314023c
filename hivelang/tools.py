from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from loguru import logger

from .context import RunContext, maybe_await
from .errors import ToolError
from .schemas import ToolResult

DELEGATE_TOOL = "agent.delegate"


@dataclass
class ToolDescriptor:
    """A named capability. ``run(args, context)`` may be sync or async."""
    name: str
    run: Callable[[Dict[str, Any], RunContext], Any]
    capability: str = ""
    description: str = ""

    async def invoke(self, args: Dict[str, Any], context: RunContext) -> ToolResult:
        return ToolResult.coerce(await maybe_await(self.run(args, context)))


class ToolRegistry:
    """Dispatches tool calls by name, falling back to capability.

    Capabilities are registered first and names second, so a tool's name
    wins when it clashes with another tool's capability. Exceptions raised
    by a tool are caught here and turned into failed results.
    """

    def __init__(self, tools: Optional[Iterable[ToolDescriptor]] = None):
        self.tools: List[ToolDescriptor] = []
        self._index: Dict[str, ToolDescriptor] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: ToolDescriptor) -> None:
        if not tool.name:
            raise ToolError("Tools must have a name")
        self.tools.append(tool)
        self._reindex()

    def _reindex(self) -> None:
        index: Dict[str, ToolDescriptor] = {}
        for tool in self.tools:
            if tool.capability:
                index[tool.capability] = tool
        for tool in self.tools:
            index[tool.name] = tool
        self._index = index

    def __contains__(self, name: str) -> bool:
        return name in self._index

    def __iter__(self):
        return iter(self.tools)

    def __len__(self) -> int:
        return len(self.tools)

    def get(self, name: str) -> Optional[ToolDescriptor]:
        return self._index.get(name)

    @property
    def names(self) -> List[str]:
        return [t.name for t in self.tools]

    def narrowed(self, allowed: Iterable[str]) -> "ToolRegistry":
        """Registry holding only tools whose name or capability is in ``allowed``."""
        allowed = set(allowed)
        return ToolRegistry(t for t in self.tools if t.name in allowed or (t.capability and t.capability in allowed))

    async def dispatch(self, name: str, args: Dict[str, Any], context: RunContext) -> Dict[str, Any]:
        tool = self.get(name)
        if tool is None:
            logger.warning("[tools] unknown tool '{}'", name)
            result = ToolResult(success=False, output=f"Tool '{name}' not found. Available tools: {', '.join(self.names)}")
            return result.model_dump()
        try:
            result = await tool.invoke(args, context)
        except Exception as e:
            logger.warning("[tools] {} raised: {}", name, e)
            result = ToolResult(success=False, output=f"Error executing {name}: {e}")
        logger.debug("[tools] {} -> success={}", name, result.success)
        return result.model_dump()

    # RunContext.call_tool signature
    async def __call__(self, name: str, args: Dict[str, Any], context: RunContext) -> Dict[str, Any]:
        return await self.dispatch(name, args, context)
