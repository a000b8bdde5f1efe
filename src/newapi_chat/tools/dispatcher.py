"""Execute completed tool calls and append the results to the conversation."""

from __future__ import annotations

import json
import logging
from typing import Any

from newapi_chat.events.bus import EventBus
from newapi_chat.tools.registry import ToolRegistry
from newapi_chat.types import EventType, Message, ToolCallRef, dumps_result

_logger = logging.getLogger(__name__)

TOOL_NOT_FOUND = "Error: Tool not found or failed."


class ToolDispatcher:
    """Routes tool calls to local tools first, then to external providers.

    Calls are executed one at a time, in the order the model emitted them,
    so results land in the conversation in that same order.
    """

    def __init__(self, registry: ToolRegistry, event_bus: EventBus | None = None) -> None:
        self._registry = registry
        self._bus = event_bus

    async def dispatch(self, call: ToolCallRef) -> str:
        """Execute one call; always returns the text for the tool message."""
        try:
            args = json.loads(call.raw_arguments or "{}")
        except json.JSONDecodeError as e:
            result = f"Error: Invalid arguments for {call.name}: {e}"
            await self._publish(EventType.TOOL_ERROR, tool=call.name, error=result)
            return result
        if not isinstance(args, dict):
            result = f"Error: Arguments for {call.name} must be a JSON object"
            await self._publish(EventType.TOOL_ERROR, tool=call.name, error=result)
            return result

        await self._publish(
            EventType.TOOL_EXECUTING,
            tool=call.name, call_id=call.id, arguments=call.raw_arguments,
        )
        result = await self._registry.dispatch_local(call.name, args)
        if result is None:
            result = await self._dispatch_external(call.name, args)
        if result is None:
            result = TOOL_NOT_FOUND
        await self._publish(
            EventType.TOOL_EXECUTED, tool=call.name, call_id=call.id, result=result,
        )
        return result

    async def dispatch_all(
        self,
        calls: list[ToolCallRef],
        messages: list[Message],
    ) -> list[Message]:
        """Dispatch *calls* sequentially, appending one tool message per call."""
        appended: list[Message] = []
        for call in calls:
            content = await self.dispatch(call)
            msg = Message.tool(call.id, content)
            messages.append(msg)
            appended.append(msg)
        return appended

    async def _dispatch_external(self, name: str, args: dict[str, Any]) -> str | None:
        failure: str | None = None
        for provider in self._registry.providers_for(name):
            try:
                value = await provider.call_tool(name, args)
            except Exception as e:
                _logger.warning("Provider %s failed calling %s: %s", provider.name, name, e)
                await self._publish(
                    EventType.TOOL_ERROR, tool=name, provider=provider.name, error=str(e),
                )
                failure = f"Error: {e}"
                continue
            if value:
                return dumps_result(value)
        return failure

    async def _publish(self, event_type: EventType, **data: Any) -> None:
        if self._bus is not None:
            await self._bus.publish(event_type, **data)
