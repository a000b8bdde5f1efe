"""Built-in local tools."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from newapi_chat.tools.registry import ToolRegistry


def register_builtins(registry: ToolRegistry) -> None:
    """Register all built-in tools with the given registry."""
    from newapi_chat.tools.builtin.file_ops import (
        EditFileTool,
        ListDirectoryTool,
        ReadFileTool,
        SearchFilesTool,
        WriteFileTool,
    )
    from newapi_chat.tools.builtin.shell import RunCommandTool
    from newapi_chat.tools.builtin.web import ReadUrlTool, SearchWebTool

    for tool_cls in [
        ReadFileTool,
        SearchFilesTool,
        WriteFileTool,
        EditFileTool,
        ListDirectoryTool,
        RunCommandTool,
        ReadUrlTool,
        SearchWebTool,
    ]:
        registry.register(tool_cls())
