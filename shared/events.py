"""
shared/events.py
Domain event base class and an in-process event bus.

Handlers run inside the caller's database transaction, so whatever they write
commits or rolls back together with the change that raised the event.
Handler errors propagate to the publisher.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, DefaultDict, List, Type

from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DomainEvent:
    occurred_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc), kw_only=True
    )


EventHandler = Callable[[DomainEvent, AsyncSession], Awaitable[None]]


class EventBus:
    def __init__(self):
        self._handlers: DefaultDict[Type[DomainEvent], List[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        self._handlers[event_type].append(handler)

    def handlers_for(self, event_type: Type[DomainEvent]) -> List[EventHandler]:
        return list(self._handlers.get(event_type, []))

    async def publish(self, event: DomainEvent, db: AsyncSession) -> None:
        handlers = self.handlers_for(type(event))
        if not handlers:
            logger.debug(f"No subscribers for {type(event).__name__}")
            return
        for handler in handlers:
            await handler(event, db)
