"""Shared data types for newapi-chat."""

from __future__ import annotations

import enum
import json
import time
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


# ---------------------------------------------------------------------------
# Tool types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ToolDefinition:
    """Canonical tool definition advertised to the model."""

    name: str
    description: str = ""
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}},
    )

    def to_wire(self) -> dict[str, Any]:
        """Convert to the nested OpenAI function-calling shape."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass
class ToolCallRef:
    """A tool call requested by the model.

    ``raw_arguments`` stays an unparsed JSON string until dispatch time,
    since streaming delivers it in fragments.
    """

    id: str
    name: str = ""
    raw_arguments: str = ""

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.raw_arguments},
        }


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------

@dataclass
class Message:
    """One entry in the conversation list.

    ``content`` is either plain text or an ordered list of multipart
    entries (``{"type": "text", ...}`` / ``{"type": "image_url", ...}``).
    """

    role: str  # system, user, assistant, tool
    content: str | list[dict[str, Any]] = ""
    tool_calls: list[ToolCallRef] = field(default_factory=list)
    tool_call_id: str | None = None
    usage: dict[str, int] = field(default_factory=dict)

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str | list[dict[str, Any]]) -> Message:
        return cls(role="user", content=content)

    @classmethod
    def assistant(
        cls,
        content: str,
        tool_calls: list[ToolCallRef] | None = None,
        usage: dict[str, int] | None = None,
    ) -> Message:
        return cls(
            role="assistant",
            content=content,
            tool_calls=list(tool_calls or []),
            usage=dict(usage or {}),
        )

    @classmethod
    def tool(cls, tool_call_id: str, content: str) -> Message:
        return cls(role="tool", content=content, tool_call_id=tool_call_id)

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the OpenAI chat-completions message shape."""
        wire: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            wire["tool_calls"] = [tc.to_wire() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            wire["tool_call_id"] = self.tool_call_id
        return wire


# ---------------------------------------------------------------------------
# Request / response types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AttemptDescriptor:
    """One concrete (URL, tool-inclusion) variant tried for a turn."""

    url: str
    include_tools: bool
    label: str


@dataclass
class StreamResult:
    """Everything decoded from one successful attempt."""

    reply: str = ""
    content: str = ""
    thinking: str = ""
    raw: str = ""
    tool_calls: list[ToolCallRef] = field(default_factory=list)
    usage: dict[str, int] = field(default_factory=dict)
    attempt: AttemptDescriptor | None = None

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0


class TurnStatus(enum.Enum):
    DONE = "done"
    DEPTH_EXCEEDED = "depth_exceeded"
    CANCELLED = "cancelled"


@dataclass
class TurnResult:
    """Outcome of a full turn, including every tool-triggered continuation."""

    reply: str = ""
    status: TurnStatus = TurnStatus.DONE
    depth: int = 0
    requests: int = 0
    usage: dict[str, int] = field(default_factory=dict)
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.status is TurnStatus.DONE


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------

@runtime_checkable
class CancelFlag(Protocol):
    """Anything flag-like; the core only ever reads it."""

    def is_set(self) -> bool: ...


class CancelToken:
    """Minimal settable cancellation flag."""

    def __init__(self) -> None:
        self._set = False

    def set(self) -> None:
        self._set = True

    def clear(self) -> None:
        self._set = False

    def is_set(self) -> bool:
        return self._set


def is_cancelled(cancel: CancelFlag | None) -> bool:
    return cancel is not None and cancel.is_set()


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

class EventType(enum.Enum):
    """Event types emitted by the chat engine."""

    # Turn lifecycle
    TURN_STARTED = "turn.started"
    TURN_DONE = "turn.done"
    TURN_CANCELLED = "turn.cancelled"
    DEPTH_EXCEEDED = "turn.depth_exceeded"
    CONFIG_CHANGED = "config.changed"

    # Request events
    ATTEMPT_STARTED = "request.attempt_started"
    ATTEMPT_FAILED = "request.attempt_failed"
    USAGE = "request.usage"

    # Tool events
    TOOL_NAME_CORRECTED = "tool.name_corrected"
    TOOL_EXECUTING = "tool.executing"
    TOOL_EXECUTED = "tool.executed"
    TOOL_ERROR = "tool.error"


@dataclass
class ChatEvent:
    """Event emitted by the engine via the EventBus."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


def dumps_result(value: Any) -> str:
    """Serialize a non-string tool result for the conversation."""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)
