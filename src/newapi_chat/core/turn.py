"""Turn controller: the loop that ties requests and tool dispatch together.

    START -> REQUESTING -> STREAMING -> DONE
                                     -> TOOLS_PENDING -> DISPATCHING -> START (depth + 1)

The controller is the only writer of the conversation apart from the tool
dispatcher, which appends tool results while the controller waits.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any

from newapi_chat.config import ConfigSnapshot, ConfigWatcher, has_changed
from newapi_chat.display import DisplaySink
from newapi_chat.errors import CancellationError, DepthExceededError
from newapi_chat.events.bus import EventBus
from newapi_chat.llm.client import ChatClient
from newapi_chat.llm.tool_calls import correct_tool_calls
from newapi_chat.tools.dispatcher import ToolDispatcher
from newapi_chat.tools.registry import ToolRegistry
from newapi_chat.types import (
    CancelFlag,
    EventType,
    Message,
    StreamResult,
    TurnResult,
    TurnStatus,
    is_cancelled,
)

_logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 15


class TurnState(enum.Enum):
    START = "start"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    TOOLS_PENDING = "tools_pending"
    DISPATCHING = "dispatching"
    DONE = "done"


@dataclass
class TurnContext:
    """Everything one conversation turn operates on."""

    messages: list[Message]
    config: ConfigSnapshot
    registry: ToolRegistry | None = None
    cancel: CancelFlag | None = None
    depth: int = 0
    tools_enabled: bool = True


def _merge_usage(total: dict[str, int], usage: dict[str, int]) -> None:
    for key, value in usage.items():
        total[key] = total.get(key, 0) + value


class TurnController:
    """Runs one user turn, following tool calls until the model stops.

    Parameters
    ----------
    client:
        Chat client used for every request of the turn.
    sink:
        Display sink receiving streamed content and thinking text.
    event_bus:
        Event bus for UI decoupling (optional).
    max_depth:
        Highest continuation depth allowed; a turn makes at most
        ``max_depth + 1`` requests.
    config_watcher:
        Polled once per top-level turn to pick up configuration switched
        outside the process.
    """

    def __init__(
        self,
        client: ChatClient,
        sink: DisplaySink | None = None,
        event_bus: EventBus | None = None,
        *,
        max_depth: int = DEFAULT_MAX_DEPTH,
        config_watcher: ConfigWatcher | None = None,
    ) -> None:
        self._client = client
        self._sink = sink
        self._bus = event_bus
        self.max_depth = max_depth
        self._watcher = config_watcher

    async def run(
        self,
        ctx: TurnContext,
        user_input: str | list[dict[str, Any]] | None = None,
    ) -> TurnResult:
        """Run a top-level turn; *user_input* (if any) is appended first."""
        ctx.depth = 0
        await self._refresh_config(ctx)
        if user_input is not None:
            ctx.messages.append(Message.user(user_input))

        dispatcher = (
            ToolDispatcher(ctx.registry, self._bus) if ctx.registry is not None else None
        )
        await self._publish(EventType.TURN_STARTED, model=ctx.config.model)

        state = TurnState.START
        requests = 0
        usage: dict[str, int] = {}
        result = StreamResult()
        tools = None

        while state is not TurnState.DONE:
            if state is TurnState.START:
                if is_cancelled(ctx.cancel):
                    return await self._cancelled(ctx, requests, usage)
                if ctx.depth > self.max_depth:
                    return await self._depth_exceeded(ctx, requests, usage)
                state = TurnState.REQUESTING

            elif state is TurnState.REQUESTING:
                if ctx.registry is not None and ctx.tools_enabled:
                    tools = ctx.registry.definitions()
                requests += 1
                state = TurnState.STREAMING

            elif state is TurnState.STREAMING:
                try:
                    result = await self._client.stream_chat(
                        ctx.config, ctx.messages, tools, self._sink, ctx.cancel,
                    )
                except CancellationError as e:
                    return await self._cancelled(ctx, requests, usage, e)
                _merge_usage(usage, result.usage)
                if result.has_tool_calls and dispatcher is not None:
                    state = TurnState.TOOLS_PENDING
                else:
                    ctx.messages.append(
                        Message.assistant(result.reply, usage=result.usage),
                    )
                    state = TurnState.DONE

            elif state is TurnState.TOOLS_PENDING:
                assert ctx.registry is not None
                renamed = correct_tool_calls(result.tool_calls, ctx.registry.names())
                for original, corrected in renamed:
                    await self._publish(
                        EventType.TOOL_NAME_CORRECTED,
                        original=original, corrected=corrected,
                    )
                ctx.messages.append(Message.assistant(
                    result.reply, tool_calls=result.tool_calls, usage=result.usage,
                ))
                state = TurnState.DISPATCHING

            elif state is TurnState.DISPATCHING:
                assert dispatcher is not None
                await dispatcher.dispatch_all(result.tool_calls, ctx.messages)
                ctx.depth += 1
                state = TurnState.START

        await self._publish(
            EventType.TURN_DONE, depth=ctx.depth, requests=requests, usage=usage,
        )
        return TurnResult(
            reply=result.reply,
            status=TurnStatus.DONE,
            depth=ctx.depth,
            requests=requests,
            usage=usage,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _refresh_config(self, ctx: TurnContext) -> None:
        if self._watcher is None:
            return
        snapshot = self._watcher.poll()
        if snapshot is not None and has_changed(ctx.config, snapshot):
            _logger.info(
                "Configuration changed: %s @ %s -> %s @ %s",
                ctx.config.model, ctx.config.base_url,
                snapshot.model, snapshot.base_url,
            )
            ctx.config = snapshot
            await self._publish(
                EventType.CONFIG_CHANGED,
                model=snapshot.model, base_url=snapshot.base_url,
                provider=snapshot.provider_name,
            )

    async def _cancelled(
        self,
        ctx: TurnContext,
        requests: int,
        usage: dict[str, int],
        error: CancellationError | None = None,
    ) -> TurnResult:
        await self._publish(EventType.TURN_CANCELLED, depth=ctx.depth)
        return TurnResult(
            status=TurnStatus.CANCELLED,
            depth=ctx.depth,
            requests=requests,
            usage=usage,
            error=error or CancellationError("Turn cancelled"),
        )

    async def _depth_exceeded(
        self,
        ctx: TurnContext,
        requests: int,
        usage: dict[str, int],
    ) -> TurnResult:
        error = DepthExceededError(self.max_depth)
        _logger.warning("%s Stopping after %d requests", error, requests)
        await self._publish(
            EventType.DEPTH_EXCEEDED, depth=ctx.depth, max_depth=self.max_depth,
        )
        return TurnResult(
            reply=str(error),
            status=TurnStatus.DEPTH_EXCEEDED,
            depth=ctx.depth,
            requests=requests,
            usage=usage,
            error=error,
        )

    async def _publish(self, event_type: EventType, **data: Any) -> None:
        if self._bus is not None:
            await self._bus.publish(event_type, **data)
