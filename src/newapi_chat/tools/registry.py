"""Tool registry: local tools plus external tool providers."""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

from newapi_chat.tools.base import Tool, ToolResult
from newapi_chat.types import ToolDefinition

_logger = logging.getLogger(__name__)


@runtime_checkable
class ExternalToolProvider(Protocol):
    """A remote tool server (for example an MCP client connection).

    ``tools`` may use any shape accepted by :func:`normalize_tool_definition`.
    """

    name: str
    tools: list[Any]

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> Any: ...


def normalize_tool_definition(tool: Any) -> ToolDefinition | None:
    """Coerce one tool description into a :class:`ToolDefinition`.

    Accepted shapes: nested OpenAI (``{"type": "function", "function":
    {...}}``), flat OpenAI (``{"type": "function", "name": ...}``) and MCP
    style (``{"name", "description", "inputSchema"}``).  Anything else
    returns ``None``.
    """
    if isinstance(tool, ToolDefinition):
        return tool
    if not isinstance(tool, dict):
        return None

    func = tool.get("function")
    if tool.get("type") == "function" and isinstance(func, dict):
        fn = func
    elif tool.get("type") == "function" and tool.get("name"):
        fn = tool
    elif tool.get("name") and "inputSchema" in tool:
        fn = {**tool, "parameters": tool["inputSchema"]}
    else:
        return None

    name = fn.get("name")
    if not name or not isinstance(name, str):
        return None
    parameters = fn.get("parameters")
    if not isinstance(parameters, dict):
        parameters = {"type": "object", "properties": {}}
    return ToolDefinition(
        name=name,
        description=fn.get("description") or "",
        parameters=parameters,
    )


def _smart_truncate(text: str, max_length: int) -> str:
    """Keep the head and tail of long output with a marker in between."""
    if len(text) <= max_length:
        return text
    head_size = max_length // 4
    tail_size = max_length - head_size
    omitted = len(text) - max_length
    return (
        text[:head_size]
        + f"\n\n... [{omitted} chars truncated] ...\n\n"
        + text[-tail_size:]
    )


class ToolRegistry:
    """Ordered registry of local tools and external providers."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}
        self._providers: list[ExternalToolProvider] = []

    def register(self, tool: Tool) -> None:
        """Register a local tool instance."""
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def add_provider(self, provider: ExternalToolProvider) -> None:
        self._providers.append(provider)

    def provider_definitions(
        self, provider: ExternalToolProvider,
    ) -> list[ToolDefinition]:
        result: list[ToolDefinition] = []
        for raw in provider.tools or []:
            definition = normalize_tool_definition(raw)
            if definition is None:
                _logger.debug("Skipping malformed tool from %s: %r", provider.name, raw)
                continue
            result.append(definition)
        return result

    def providers_for(self, name: str) -> list[ExternalToolProvider]:
        """Providers advertising a tool called *name*, in registration order."""
        return [
            p for p in self._providers
            if any(d.name == name for d in self.provider_definitions(p))
        ]

    def definitions(self) -> list[ToolDefinition]:
        """All advertised tools: local first, then providers; first name wins."""
        seen: set[str] = set()
        result: list[ToolDefinition] = []
        candidates = [t.to_definition() for t in self._tools.values()]
        for provider in self._providers:
            candidates.extend(self.provider_definitions(provider))
        for definition in candidates:
            if definition.name in seen:
                continue
            seen.add(definition.name)
            result.append(definition)
        return result

    def names(self) -> list[str]:
        return [d.name for d in self.definitions()]

    async def dispatch_local(self, name: str, arguments: dict[str, Any]) -> str | None:
        """Run a local tool; ``None`` when no local tool has this name.

        Output is truncated to the tool's ``max_output``.  Exceptions are
        turned into an error string.
        """
        tool = self.get(name)
        if tool is None:
            return None
        try:
            result = await tool.execute(**arguments)
        except Exception as e:
            _logger.warning("Tool %s raised: %s", name, e)
            return f"Error: Tool '{name}' execution failed: {type(e).__name__}: {e}"

        max_out = getattr(tool, "max_output", 20000)
        if max_out > 0 and len(result.output) > max_out:
            result = ToolResult(
                success=result.success,
                output=_smart_truncate(result.output, max_out),
                error=result.error,
                metadata=result.metadata,
            )
        return result.to_message()
