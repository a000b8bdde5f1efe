"""Tests for the async EventBus."""

import pytest

from newapi_chat.events.bus import EventBus
from newapi_chat.types import ChatEvent, EventType


@pytest.fixture
def bus():
    return EventBus()


class TestSubscribeAndEmit:
    @pytest.mark.asyncio
    async def test_async_handler(self, bus: EventBus):
        received = []

        async def handler(event: ChatEvent):
            received.append(event)

        bus.subscribe(EventType.TURN_STARTED, handler)
        ev = ChatEvent(type=EventType.TURN_STARTED, data={"model": "gpt-4o"})
        await bus.emit(ev)

        assert received == [ev]

    @pytest.mark.asyncio
    async def test_sync_handler(self, bus: EventBus):
        received = []

        def handler(event: ChatEvent):
            received.append(event)

        bus.subscribe(EventType.TOOL_EXECUTED, handler)
        await bus.emit(ChatEvent(type=EventType.TOOL_EXECUTED))

        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_no_cross_delivery(self, bus: EventBus):
        received = []
        bus.subscribe(EventType.TURN_STARTED, received.append)
        await bus.emit(ChatEvent(type=EventType.TURN_DONE))

        assert received == []

    @pytest.mark.asyncio
    async def test_publish_builds_event(self, bus: EventBus):
        received = []
        bus.subscribe(EventType.USAGE, received.append)

        await bus.publish(EventType.USAGE, prompt_tokens=3, total_tokens=5)

        assert received[0].type is EventType.USAGE
        assert received[0].data == {"prompt_tokens": 3, "total_tokens": 5}

    @pytest.mark.asyncio
    async def test_string_key_matches_enum(self, bus: EventBus):
        received = []
        bus.subscribe("tool.error", received.append)

        await bus.publish(EventType.TOOL_ERROR, tool="x")

        assert len(received) == 1


class TestWildcard:
    @pytest.mark.asyncio
    async def test_wildcard_receives_all(self, bus: EventBus):
        received = []

        async def handler(event: ChatEvent):
            received.append(event.type)

        bus.subscribe("*", handler)
        await bus.emit(ChatEvent(type=EventType.TURN_STARTED))
        await bus.emit(ChatEvent(type=EventType.TOOL_EXECUTED))
        await bus.emit(ChatEvent(type=EventType.ATTEMPT_FAILED))

        assert received == [
            EventType.TURN_STARTED, EventType.TOOL_EXECUTED, EventType.ATTEMPT_FAILED,
        ]

    @pytest.mark.asyncio
    async def test_wildcard_plus_specific(self, bus: EventBus):
        calls = []

        async def specific(event: ChatEvent):
            calls.append("specific")

        async def wildcard(event: ChatEvent):
            calls.append("wildcard")

        bus.subscribe(EventType.TURN_STARTED, specific)
        bus.subscribe("*", wildcard)
        await bus.emit(ChatEvent(type=EventType.TURN_STARTED))

        assert sorted(calls) == ["specific", "wildcard"]


class TestUnsubscribe:
    @pytest.mark.asyncio
    async def test_unsubscribe(self, bus: EventBus):
        received = []

        async def handler(event: ChatEvent):
            received.append(event)

        bus.subscribe(EventType.TURN_DONE, handler)
        await bus.emit(ChatEvent(type=EventType.TURN_DONE))
        bus.unsubscribe(EventType.TURN_DONE, handler)
        await bus.emit(ChatEvent(type=EventType.TURN_DONE))

        assert len(received) == 1

    def test_unsubscribe_nonexistent(self, bus: EventBus):
        async def handler(event: ChatEvent):
            pass

        bus.unsubscribe(EventType.TURN_DONE, handler)


class TestHistory:
    @pytest.mark.asyncio
    async def test_history_recorded(self, bus: EventBus):
        await bus.emit(ChatEvent(type=EventType.TURN_STARTED))
        await bus.emit(ChatEvent(type=EventType.TURN_DONE))

        assert [e.type for e in bus.history] == [EventType.TURN_STARTED, EventType.TURN_DONE]

    @pytest.mark.asyncio
    async def test_history_limit(self):
        bus = EventBus(max_history=5)
        for i in range(10):
            await bus.publish(EventType.USAGE, i=i)

        assert len(bus.history) == 5
        assert bus.history[0].data == {"i": 5}

    @pytest.mark.asyncio
    async def test_clear(self, bus: EventBus):
        bus.subscribe(EventType.TURN_STARTED, lambda e: None)
        await bus.emit(ChatEvent(type=EventType.TURN_STARTED))

        bus.clear()

        assert bus.history == []
        assert len(bus._handlers) == 0


class TestErrorHandling:
    @pytest.mark.asyncio
    async def test_handler_exception_does_not_propagate(self, bus: EventBus):
        async def bad_handler(event: ChatEvent):
            raise ValueError("boom")

        received = []
        bus.subscribe(EventType.TURN_STARTED, bad_handler)
        bus.subscribe(EventType.TURN_STARTED, received.append)

        await bus.emit(ChatEvent(type=EventType.TURN_STARTED))

        assert len(received) == 1
