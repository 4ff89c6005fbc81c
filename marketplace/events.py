"""Domain events emitted by the engine and the dispatchers that ship them.

Events are handed to the dispatcher after the owning transaction commits. The
engine does not wait for delivery; turning events into user-facing
notifications is the notification subsystem's job.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Any, ClassVar, Protocol

from kombu.exceptions import OperationalError

from marketplace.tasks import deliver_domain_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DomainEvent:
    name: ClassVar[str] = "domain_event"

    def as_payload(self) -> dict[str, Any]:
        payload = asdict(self)
        for key, value in payload.items():
            if isinstance(value, Decimal):
                payload[key] = str(value)
        return payload


@dataclass(frozen=True)
class ApplicationSubmitted(DomainEvent):
    name: ClassVar[str] = "application_submitted"

    order_id: int
    application_id: int
    executor_id: int
    customer_id: int
    proposed_price: Decimal | None = None


@dataclass(frozen=True)
class ApplicationAccepted(DomainEvent):
    name: ClassVar[str] = "application_accepted"

    order_id: int
    application_id: int
    executor_id: int
    rejected_application_ids: tuple[int, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ApplicationRejected(DomainEvent):
    name: ClassVar[str] = "application_rejected"

    order_id: int
    application_id: int
    executor_id: int
    reason: str | None = None


@dataclass(frozen=True)
class OrderStatusChanged(DomainEvent):
    name: ClassVar[str] = "order_status_changed"

    order_id: int
    from_status: str
    to_status: str
    actor_id: int | None = None


@dataclass(frozen=True)
class OrderCompleted(DomainEvent):
    name: ClassVar[str] = "order_completed"

    order_id: int
    customer_id: int
    executor_id: int | None
    rating: int | None = None


@dataclass(frozen=True)
class OrderCancellationRequested(DomainEvent):
    name: ClassVar[str] = "order_cancellation_requested"

    order_id: int
    executor_id: int
    customer_id: int


class EventDispatcher(Protocol):
    def dispatch(self, event: DomainEvent) -> None: ...


class CeleryEventDispatcher:
    """Queues events for the notification worker."""

    def dispatch(self, event: DomainEvent) -> None:
        try:
            deliver_domain_event.delay(event.name, event.as_payload())
        except OperationalError:
            # State is already committed; a lost notification must not undo it
            logger.exception("Failed to queue domain event", extra={"event": event.name})


class InMemoryEventDispatcher:
    """Collects events; used by tests and local scripts."""

    def __init__(self) -> None:
        self.events: list[DomainEvent] = []

    def dispatch(self, event: DomainEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: type[DomainEvent]) -> list[DomainEvent]:
        return [e for e in self.events if isinstance(e, event_type)]


def dispatch_all(dispatcher: EventDispatcher, events: list[DomainEvent]) -> None:
    for event in events:
        logger.info("Domain event", extra={"event": event.name, "order_id": getattr(event, "order_id", None)})
        dispatcher.dispatch(event)
