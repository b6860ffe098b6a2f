"""Session lifecycle events.

A ``CompletionSession`` publishes ``AgentEvent`` objects here (session
started, round started, tool executed, round limit, done, cancelled,
error).  Front ends subscribe to the types they care about, or to ``"*"``.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict, deque
from typing import Any, Callable

from completion_harness.types import AgentEvent, EventType

_logger = logging.getLogger(__name__)

ALL_EVENTS = "*"

Handler = Callable[[AgentEvent], Any]


def _topic(event_type: EventType | str) -> str:
    return event_type.value if isinstance(event_type, EventType) else str(event_type)


class EventBus:
    """Fan-out of lifecycle events to sync or async handlers.

    Delivery to one event's handlers is concurrent.  A handler that raises
    is logged and the remaining handlers still run.  The last
    ``max_history`` events are kept for inspection.
    """

    def __init__(self, max_history: int = 200) -> None:
        self._subscribers: defaultdict[str, list[Handler]] = defaultdict(list)
        self._recent: deque[AgentEvent] = deque(maxlen=max_history)

    def subscribe(self, event_type: EventType | str, handler: Handler) -> Callable[[], None]:
        """Add *handler* for *event_type*; the return value removes it again."""
        self._subscribers[_topic(event_type)].append(handler)
        return lambda: self.unsubscribe(event_type, handler)

    def unsubscribe(self, event_type: EventType | str, handler: Handler) -> None:
        topic = _topic(event_type)
        subscribers = self._subscribers.get(topic)
        if subscribers and handler in subscribers:
            subscribers.remove(handler)
            if not subscribers:
                del self._subscribers[topic]

    def handlers_for(self, event_type: EventType | str) -> list[Handler]:
        topic = _topic(event_type)
        found = list(self._subscribers.get(topic, ()))
        if topic != ALL_EVENTS:
            found += self._subscribers.get(ALL_EVENTS, ())
        return found

    async def emit(self, event: AgentEvent) -> None:
        self._recent.append(event)
        handlers = self.handlers_for(event.type)
        if handlers:
            await asyncio.gather(*(self._deliver(h, event) for h in handlers))

    async def publish(self, event_type: EventType, **data: Any) -> AgentEvent:
        event = AgentEvent(type=event_type, data=data)
        await self.emit(event)
        return event

    @property
    def history(self) -> list[AgentEvent]:
        return list(self._recent)

    def history_of(self, *event_types: EventType) -> list[AgentEvent]:
        """Recorded events restricted to *event_types*."""
        wanted = set(event_types)
        return [e for e in self._recent if e.type in wanted]

    def clear(self) -> None:
        self._subscribers.clear()
        self._recent.clear()

    @staticmethod
    async def _deliver(handler: Handler, event: AgentEvent) -> None:
        try:
            outcome = handler(event)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            _logger.exception(
                "Handler %s failed on %s",
                getattr(handler, "__qualname__", repr(handler)),
                _topic(event.type),
            )
