"""Ordered request variants tried until the server accepts one."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, TypeVar

from newapi_chat.errors import CancellationError, ChatError
from newapi_chat.events.bus import EventBus
from newapi_chat.types import AttemptDescriptor, EventType

from .endpoints import chat_completions_sibling, is_messages_endpoint

_logger = logging.getLogger(__name__)

T = TypeVar("T")


def plan_attempts(url: str) -> list[AttemptDescriptor]:
    """Build the fallback ladder for a resolved endpoint.

    1. the endpoint with tools
    2. the endpoint without tools
    3. for a ``/messages`` endpoint, its ``/chat/completions`` sibling
       without tools
    """
    attempts = [
        AttemptDescriptor(url=url, include_tools=True, label="primary"),
        AttemptDescriptor(url=url, include_tools=False, label="without tools"),
    ]
    if is_messages_endpoint(url):
        attempts.append(AttemptDescriptor(
            url=chat_completions_sibling(url),
            include_tools=False,
            label="chat/completions without tools",
        ))
    return attempts


def strip_tool_history(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Return a copy of wire *messages* with every trace of tool use removed.

    ``tool`` messages are dropped, assistant messages lose ``tool_calls``,
    and assistant messages left without content disappear.  The input list
    and its dicts are not modified.
    """
    cleaned: list[dict[str, Any]] = []
    for msg in messages:
        role = msg.get("role")
        if role == "tool":
            continue
        if role == "assistant" and "tool_calls" in msg:
            msg = {k: v for k, v in msg.items() if k != "tool_calls"}
            if not msg.get("content"):
                continue
        cleaned.append(msg)
    return cleaned


class AttemptSequencer:
    """Run attempts strictly in order until one succeeds.

    Any :class:`ChatError` other than cancellation moves on to the next
    attempt; the error of the final attempt propagates.
    """

    def __init__(self, event_bus: EventBus | None = None) -> None:
        self._bus = event_bus

    async def run(
        self,
        attempts: list[AttemptDescriptor],
        run_attempt: Callable[[AttemptDescriptor], Awaitable[T]],
    ) -> T:
        if not attempts:
            raise ValueError("No attempts to run")

        last_error: ChatError | None = None
        for i, attempt in enumerate(attempts):
            is_last = i == len(attempts) - 1
            await self._publish(
                EventType.ATTEMPT_STARTED,
                url=attempt.url, label=attempt.label,
                include_tools=attempt.include_tools,
            )
            try:
                return await run_attempt(attempt)
            except CancellationError:
                raise
            except ChatError as e:
                last_error = e
                if not is_last:
                    _logger.warning(
                        "Attempt '%s' (%s) failed: %s; trying next variant",
                        attempt.label, attempt.url, e,
                    )
                await self._publish(
                    EventType.ATTEMPT_FAILED,
                    url=attempt.url, label=attempt.label,
                    error=str(e), last=is_last,
                )

        assert last_error is not None
        raise last_error

    async def _publish(self, event_type: EventType, **data: Any) -> None:
        if self._bus is not None:
            await self._bus.publish(event_type, **data)
