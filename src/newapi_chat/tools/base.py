"""Async Tool abstract base class for local tools."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from newapi_chat.types import ToolDefinition


@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    type: str  # string, integer, boolean, array, object
    description: str
    required: bool = True
    default: Any = None
    enum: list[str] | None = None


@dataclass
class ToolResult:
    """Result of a tool execution."""

    success: bool
    output: str
    error: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> str:
        """Text placed in the ``tool`` message sent back to the model."""
        if self.success:
            return self.output or "(no output)"
        if self.output:
            return f"Error: {self.error}\n{self.output}"
        return f"Error: {self.error}"


class Tool(ABC):
    """Base class for all local tools.

    Subclasses must set ``name``, ``description``, ``parameters`` as class
    attributes and implement the async ``execute()`` method.
    """

    name: str
    description: str
    parameters: list[ToolParameter]
    max_output: int = 20000  # Per-tool output limit (chars). Override in subclasses.

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        """Execute the tool asynchronously."""

    def to_definition(self) -> ToolDefinition:
        """Convert to the canonical definition advertised to the model."""
        properties: dict[str, Any] = {}
        required: list[str] = []
        for p in self.parameters:
            prop: dict[str, Any] = {
                "type": p.type,
                "description": p.description,
            }
            if p.enum:
                prop["enum"] = p.enum
            if p.default is not None:
                prop["default"] = p.default
            properties[p.name] = prop
            if p.required:
                required.append(p.name)

        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters={
                "type": "object",
                "properties": properties,
                "required": required,
            },
        )
