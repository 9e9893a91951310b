"""Domain events and the synchronous dispatcher that delivers them."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Type, TypeVar
from uuid import uuid4

from .domain import Alert, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DomainEvent:
    """Base class for all domain events."""

    event_id: str = field(default_factory=lambda: str(uuid4()), kw_only=True)
    occurred_at: datetime = field(default_factory=utcnow, kw_only=True)


@dataclass(frozen=True, slots=True)
class StepCompleted(DomainEvent):
    """A process step reached ``done``."""

    order_id: str
    step_id: str
    step_number: int
    acting_user: str


@dataclass(frozen=True, slots=True)
class AlertRaised(DomainEvent):
    """A new alert was persisted and is ready for notification."""

    alert: Alert


E = TypeVar("E", bound=DomainEvent)


class EventDispatcher:
    """Delivers events to handlers subscribed to their type.

    Delivery is synchronous: a handler runs inside the caller's transaction
    and any exception it raises propagates to the publisher, aborting that
    transaction.
    """

    def __init__(self) -> None:
        self._handlers: Dict[Type[DomainEvent], List[Callable[[DomainEvent], None]]] = {}

    def subscribe(self, event_type: Type[E], handler: Callable[[E], None]) -> None:
        handlers = self._handlers.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)  # type: ignore[arg-type]

    def unsubscribe(self, event_type: Type[E], handler: Callable[[E], None]) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)  # type: ignore[arg-type]

    def publish(self, event: DomainEvent) -> None:
        handlers = list(self._handlers.get(type(event), ()))
        logger.debug(
            "Dispatching %s to %d handler(s)", type(event).__name__, len(handlers)
        )
        for handler in handlers:
            handler(event)


__all__ = ["DomainEvent", "StepCompleted", "AlertRaised", "EventDispatcher"]
