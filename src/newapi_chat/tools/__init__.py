"""Tool system: local tools, external providers and dispatch."""

from newapi_chat.tools.base import Tool, ToolParameter, ToolResult
from newapi_chat.tools.dispatcher import ToolDispatcher
from newapi_chat.tools.registry import (
    ExternalToolProvider,
    ToolRegistry,
    normalize_tool_definition,
)

__all__ = [
    "ExternalToolProvider",
    "Tool",
    "ToolDispatcher",
    "ToolParameter",
    "ToolRegistry",
    "ToolResult",
    "normalize_tool_definition",
]
