"""Async pub/sub EventBus that keeps the engine decoupled from the terminal."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable

from newapi_chat.types import ChatEvent, EventType

_logger = logging.getLogger(__name__)

_WILDCARD = "*"

Handler = Callable[[ChatEvent], Any]


class EventBus:
    """Lightweight async pub/sub event bus.

    Handlers subscribe to one ``EventType`` or to ``"*"`` for everything.
    They may be plain functions or coroutines; both are awaited from
    :meth:`emit`, and a failing handler never breaks the emitter.
    """

    def __init__(self, max_history: int = 200) -> None:
        self._handlers: dict[str, list[Handler]] = {}
        self._history: list[ChatEvent] = []
        self._max_history = max_history

    def subscribe(self, event_type: EventType | str, handler: Handler) -> None:
        self._handlers.setdefault(self._key(event_type), []).append(handler)

    def unsubscribe(self, event_type: EventType | str, handler: Handler) -> None:
        handlers = self._handlers.get(self._key(event_type), [])
        if handler in handlers:
            handlers.remove(handler)

    async def emit(self, event: ChatEvent) -> None:
        """Deliver *event* to type-specific handlers, then wildcard ones."""
        self._history.append(event)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

        handlers = list(self._handlers.get(self._key(event.type), []))
        handlers.extend(self._handlers.get(_WILDCARD, []))
        if not handlers:
            return
        await asyncio.gather(
            *(self._call_handler(h, event) for h in handlers),
            return_exceptions=True,
        )

    async def publish(self, event_type: EventType, **data: Any) -> None:
        """Shorthand for ``emit(ChatEvent(event_type, data))``."""
        await self.emit(ChatEvent(type=event_type, data=data))

    @property
    def history(self) -> list[ChatEvent]:
        return list(self._history)

    def clear(self) -> None:
        self._handlers.clear()
        self._history.clear()

    @staticmethod
    def _key(event_type: EventType | str) -> str:
        if isinstance(event_type, EventType):
            return event_type.value
        return str(event_type)

    @staticmethod
    async def _call_handler(handler: Handler, event: ChatEvent) -> None:
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            _logger.exception(
                "EventBus handler %s raised for event %s",
                getattr(handler, "__name__", handler),
                event.type,
            )
