"""Tests for the async EventBus."""

import pytest

from completion_harness.events.bus import EventBus
from completion_harness.types import AgentEvent, EventType


@pytest.fixture
def bus():
    return EventBus()


class TestSubscribeAndEmit:
    @pytest.mark.asyncio
    async def test_async_handler(self, bus: EventBus):
        received = []

        async def handler(event: AgentEvent):
            received.append(event)

        bus.subscribe(EventType.SESSION_STARTED, handler)
        ev = AgentEvent(type=EventType.SESSION_STARTED, data={"model": "m"})
        await bus.emit(ev)

        assert len(received) == 1
        assert received[0] is ev

    @pytest.mark.asyncio
    async def test_sync_handler(self, bus: EventBus):
        received = []
        bus.subscribe(EventType.TOOL_EXECUTED, received.append)
        await bus.emit(AgentEvent(type=EventType.TOOL_EXECUTED))
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_no_cross_delivery(self, bus: EventBus):
        received = []
        bus.subscribe(EventType.SESSION_STARTED, received.append)
        await bus.emit(AgentEvent(type=EventType.SESSION_DONE))
        assert received == []

    @pytest.mark.asyncio
    async def test_wildcard(self, bus: EventBus):
        received = []
        bus.subscribe("*", received.append)
        await bus.publish(EventType.ROUND_STARTED, round=0)
        await bus.publish(EventType.SESSION_DONE)
        assert [e.type for e in received] == [EventType.ROUND_STARTED, EventType.SESSION_DONE]
        assert received[0].data == {"round": 0}


class TestUnsubscribe:
    @pytest.mark.asyncio
    async def test_returned_callable(self, bus: EventBus):
        received = []
        unsubscribe = bus.subscribe(EventType.SESSION_DONE, received.append)
        unsubscribe()
        await bus.publish(EventType.SESSION_DONE)
        assert received == []


class TestErrorIsolation:
    @pytest.mark.asyncio
    async def test_failing_handler_does_not_block_others(self, bus: EventBus):
        received = []

        def bad(event):
            raise ValueError("boom")

        bus.subscribe(EventType.SESSION_ERROR, bad)
        bus.subscribe(EventType.SESSION_ERROR, received.append)
        await bus.publish(EventType.SESSION_ERROR, error="x")
        assert len(received) == 1


class TestHistory:
    @pytest.mark.asyncio
    async def test_bounded(self):
        bus = EventBus(max_history=3)
        for i in range(5):
            await bus.publish(EventType.ROUND_STARTED, round=i)
        assert [e.data["round"] for e in bus.history] == [2, 3, 4]

    @pytest.mark.asyncio
    async def test_clear(self, bus: EventBus):
        await bus.publish(EventType.SESSION_STARTED)
        bus.clear()
        assert bus.history == []

    @pytest.mark.asyncio
    async def test_history_of(self, bus: EventBus):
        await bus.publish(EventType.SESSION_STARTED)
        await bus.publish(EventType.ROUND_STARTED, round=0)
        await bus.publish(EventType.SESSION_DONE)
        picked = bus.history_of(EventType.SESSION_STARTED, EventType.SESSION_DONE)
        assert [e.type for e in picked] == [EventType.SESSION_STARTED, EventType.SESSION_DONE]


class TestHandlersFor:
    def test_includes_wildcard_once(self, bus: EventBus):
        def specific(event):
            pass

        def anything(event):
            pass

        bus.subscribe(EventType.SESSION_DONE, specific)
        bus.subscribe("*", anything)
        assert bus.handlers_for(EventType.SESSION_DONE) == [specific, anything]
        assert bus.handlers_for("*") == [anything]
