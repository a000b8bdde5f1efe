"""Tests for the tool registry and base Tool class."""

from __future__ import annotations

from typing import Any

import pytest

from newapi_chat.tools.base import Tool, ToolParameter, ToolResult
from newapi_chat.tools.registry import (
    ExternalToolProvider,
    ToolRegistry,
    _smart_truncate,
    normalize_tool_definition,
)
from newapi_chat.types import ToolDefinition


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class EchoTool(Tool):
    """Simple mock tool for testing."""

    name = "echo"
    description = "Echoes the input message."
    parameters = [
        ToolParameter(name="message", type="string", description="Message to echo"),
        ToolParameter(name="loud", type="boolean", description="Shout", required=False),
    ]

    async def execute(self, **kwargs: Any) -> ToolResult:
        msg = kwargs.get("message", "")
        return ToolResult(success=True, output=f"Echo: {msg}")


class FailTool(Tool):
    """Tool that always raises."""

    name = "fail"
    description = "Always fails."
    parameters: list[ToolParameter] = []

    async def execute(self, **kwargs: Any) -> ToolResult:
        raise RuntimeError("intentional failure")


class BigOutputTool(Tool):
    """Tool that produces large output for truncation testing."""

    name = "big_output"
    description = "Produces a lot of output."
    max_output = 100
    parameters: list[ToolParameter] = []

    async def execute(self, **kwargs: Any) -> ToolResult:
        return ToolResult(success=True, output="x" * 500)


class SilentTool(Tool):
    name = "silent"
    description = "Succeeds without output."
    parameters: list[ToolParameter] = []

    async def execute(self, **kwargs: Any) -> ToolResult:
        return ToolResult(success=True, output="")


class FakeProvider:
    def __init__(self, name: str, tools: list[Any]):
        self.name = name
        self.tools = tools

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> Any:
        return {"tool": name}


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestSmartTruncate:
    def test_no_truncation_when_short(self):
        assert _smart_truncate("hello", 100) == "hello"

    def test_truncation_preserves_head_and_tail(self):
        text = "A" * 100 + "B" * 100
        result = _smart_truncate(text, 100)
        assert result.startswith("A" * 25)
        assert result.endswith("B" * 75)
        assert "[100 chars truncated]" in result

    def test_exact_length_not_truncated(self):
        text = "x" * 100
        assert _smart_truncate(text, 100) == text


class TestToolBase:
    def test_to_definition(self):
        definition = EchoTool().to_definition()
        assert definition.name == "echo"
        assert definition.parameters["required"] == ["message"]
        assert set(definition.parameters["properties"]) == {"message", "loud"}

    def test_wire_shape(self):
        wire = EchoTool().to_definition().to_wire()
        assert wire["type"] == "function"
        assert wire["function"]["name"] == "echo"
        assert wire["function"]["parameters"]["type"] == "object"


class TestToolResult:
    def test_success_message(self):
        assert ToolResult(success=True, output="done").to_message() == "done"

    def test_empty_success_message(self):
        assert ToolResult(success=True, output="").to_message() == "(no output)"

    def test_failure_message(self):
        result = ToolResult(success=False, output="", error="boom")
        assert result.to_message() == "Error: boom"

    def test_failure_keeps_output(self):
        result = ToolResult(success=False, output="partial", error="exit 1")
        assert result.to_message() == "Error: exit 1\npartial"


class TestNormalize:
    def test_nested_openai(self):
        d = normalize_tool_definition({
            "type": "function",
            "function": {"name": "a", "description": "A", "parameters": {"type": "object"}},
        })
        assert d == ToolDefinition("a", "A", {"type": "object"})

    def test_flat_openai(self):
        d = normalize_tool_definition({"type": "function", "name": "b", "description": "B"})
        assert d.name == "b"
        assert d.parameters == {"type": "object", "properties": {}}

    def test_mcp_style(self):
        schema = {"type": "object", "properties": {"q": {"type": "string"}}}
        d = normalize_tool_definition({"name": "c", "inputSchema": schema})
        assert d.name == "c"
        assert d.parameters == schema

    def test_definition_passes_through(self):
        d = ToolDefinition("d")
        assert normalize_tool_definition(d) is d

    @pytest.mark.parametrize("raw", [
        None,
        "read_file",
        {"description": "no name"},
        {"type": "function", "function": {"description": "no name"}},
    ])
    def test_malformed(self, raw):
        assert normalize_tool_definition(raw) is None


class TestToolRegistry:
    def test_register_and_get(self):
        reg = ToolRegistry()
        tool = EchoTool()
        reg.register(tool)
        assert reg.get("echo") is tool
        assert reg.get("nope") is None

    def test_provider_satisfies_protocol(self):
        assert isinstance(FakeProvider("p", []), ExternalToolProvider)

    def test_definitions_local_first_and_deduplicated(self):
        reg = ToolRegistry()
        reg.register(EchoTool())
        reg.add_provider(FakeProvider("p1", [
            {"name": "echo", "inputSchema": {}},
            {"name": "search", "inputSchema": {}},
            "garbage",
        ]))
        reg.add_provider(FakeProvider("p2", [
            {"type": "function", "function": {"name": "search"}},
            {"type": "function", "function": {"name": "fetch"}},
        ]))

        assert reg.names() == ["echo", "search", "fetch"]
        assert reg.definitions()[0].description == "Echoes the input message."
        assert [d.to_wire()["function"]["name"] for d in reg.definitions()] == reg.names()

    def test_providers_for(self):
        reg = ToolRegistry()
        p1 = FakeProvider("p1", [{"name": "search", "inputSchema": {}}])
        p2 = FakeProvider("p2", [{"name": "fetch", "inputSchema": {}}])
        p3 = FakeProvider("p3", [{"name": "search", "inputSchema": {}}])
        for p in (p1, p2, p3):
            reg.add_provider(p)

        assert reg.providers_for("search") == [p1, p3]
        assert reg.providers_for("unknown") == []


class TestDispatchLocal:
    async def test_runs_tool(self):
        reg = ToolRegistry()
        reg.register(EchoTool())
        assert await reg.dispatch_local("echo", {"message": "hi"}) == "Echo: hi"

    async def test_unknown_returns_none(self):
        assert await ToolRegistry().dispatch_local("echo", {}) is None

    async def test_exception_becomes_error_string(self):
        reg = ToolRegistry()
        reg.register(FailTool())
        result = await reg.dispatch_local("fail", {})
        assert result == "Error: Tool 'fail' execution failed: RuntimeError: intentional failure"

    async def test_output_truncated(self):
        reg = ToolRegistry()
        reg.register(BigOutputTool())
        result = await reg.dispatch_local("big_output", {})
        assert "truncated" in result
        assert len(result) < 500

    async def test_empty_output_placeholder(self):
        reg = ToolRegistry()
        reg.register(SilentTool())
        assert await reg.dispatch_local("silent", {}) == "(no output)"
