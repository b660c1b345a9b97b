"""Outbound notifications for the presentation layer.

Delivery is best effort: a failing subscriber is logged and skipped and
never changes the outcome of the engine operation that published.
"""

from __future__ import annotations

import inspect
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Union

from pydantic import BaseModel, Field

from arena.utils.helpers import utc_now

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    BATTLE_MATCHED = "battle.matched"
    BATTLE_STARTED = "battle.started"
    BATTLE_UPDATED = "battle.updated"
    BATTLE_ENDED = "battle.ended"
    QUEUE_ERROR = "queue.error"


class ArenaEvent(BaseModel):
    event_type: EventType
    battle_id: int | None = None
    combatant_ids: list[int] = Field(default_factory=list)
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)


Handler = Callable[[ArenaEvent], Union[None, Awaitable[None]]]


class EventBus:
    """Fan events out to subscribed handlers (sync or async)."""

    def __init__(self) -> None:
        self._handlers: list[Handler] = []

    def subscribe(self, handler: Handler) -> None:
        self._handlers.append(handler)

    def unsubscribe(self, handler: Handler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    async def publish(self, event: ArenaEvent) -> None:
        for handler in list(self._handlers):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Event handler failed for %s", event.event_type.value)

    async def publish_all(self, events: list[ArenaEvent]) -> None:
        for event in events:
            await self.publish(event)
