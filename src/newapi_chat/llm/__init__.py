"""Request, streaming and endpoint handling for OpenAI-compatible APIs."""

from newapi_chat.llm.attempts import AttemptSequencer, plan_attempts, strip_tool_history
from newapi_chat.llm.client import ChatClient
from newapi_chat.llm.endpoints import resolve_endpoint
from newapi_chat.llm.stream import StreamDecoder, ThinkingFilter
from newapi_chat.llm.tool_calls import (
    ToolCallAccumulator,
    correct_tool_calls,
    correct_tool_name,
    repair_arguments,
)
from newapi_chat.llm.transport import RequestExecutor

__all__ = [
    "AttemptSequencer",
    "ChatClient",
    "RequestExecutor",
    "StreamDecoder",
    "ThinkingFilter",
    "ToolCallAccumulator",
    "correct_tool_calls",
    "correct_tool_name",
    "plan_attempts",
    "repair_arguments",
    "resolve_endpoint",
    "strip_tool_history",
]
