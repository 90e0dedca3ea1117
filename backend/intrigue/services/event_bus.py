"""
Simple in-memory event bus.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, List

from intrigue.duel.models.session import DuelEvent, DuelEventType

logger = logging.getLogger(__name__)

EventHandler = Callable[[DuelEvent], Awaitable[None] | None]


class EventBus:
    """In-memory pub/sub for duel events."""

    def __init__(self) -> None:
        self._subscribers: Dict[DuelEventType, List[EventHandler]] = {}
        self._wildcard: List[EventHandler] = []

    def subscribe(self, event_type: DuelEventType, handler: EventHandler) -> None:
        self._subscribers.setdefault(event_type, []).append(handler)

    def subscribe_all(self, handler: EventHandler) -> None:
        self._wildcard.append(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        self._wildcard = [h for h in self._wildcard if h is not handler]
        for event_type, handlers in self._subscribers.items():
            self._subscribers[event_type] = [h for h in handlers if h is not handler]

    async def publish(self, event: DuelEvent) -> None:
        handlers = list(self._subscribers.get(event.event_type, [])) + list(self._wildcard)
        for handler in handlers:
            result = handler(event)
            if asyncio.iscoroutine(result):
                await result

    async def publish_many(self, events: List[DuelEvent]) -> None:
        for event in events:
            await self.publish(event)
