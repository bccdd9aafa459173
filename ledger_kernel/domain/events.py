"""
Domain events emitted by the ledger for external consumers.

Services append events to an ``EventBuffer`` while they work; the caller
that owns the transaction (``LedgerCore``) hands the buffer to an
``EventPublisher`` only after commit, so a rolled-back operation never
announces anything.
"""

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable
from uuid import UUID, uuid4

from ledger_kernel.logging_config import get_logger

logger = get_logger("domain.events")

ENTRY_POSTED = "ledger.entry.posted"
ENTRY_REVERSED = "ledger.entry.reversed"
PERIOD_CLOSED = "ledger.period.closed"
PERIOD_REOPENED = "ledger.period.reopened"
YEAR_CLOSED = "ledger.year.closed"
RECONCILIATION_COMPLETED = "ledger.reconciliation.completed"
RECONCILIATION_CANCELLED = "ledger.reconciliation.cancelled"


@dataclass(frozen=True)
class DomainEvent:
    event_type: str
    tenant_id: str
    aggregate_id: UUID
    occurred_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)
    event_id: UUID = field(default_factory=uuid4)


class EventBuffer:
    """Events recorded inside one unit of work, in emission order."""

    def __init__(self) -> None:
        self._events: list[DomainEvent] = []

    def record(self, event: DomainEvent) -> None:
        self._events.append(event)

    def drain(self) -> list[DomainEvent]:
        events, self._events = self._events, []
        return events

    def clear(self) -> None:
        self._events.clear()

    def __iter__(self) -> Iterator[DomainEvent]:
        return iter(self._events)

    def __len__(self) -> int:
        return len(self._events)


@runtime_checkable
class EventPublisher(Protocol):
    """Port for delivering committed domain events."""

    def publish(self, event: DomainEvent) -> None: ...


class LoggingEventPublisher:
    """Default publisher: writes each event to the structured log."""

    def publish(self, event: DomainEvent) -> None:
        logger.info(
            "domain_event_published",
            extra={
                "event_type": event.event_type,
                "event_id": str(event.event_id),
                "aggregate_id": str(event.aggregate_id),
                "event_tenant_id": event.tenant_id,
            },
        )


class InMemoryEventPublisher:
    """Collects published events; used by tests and embedded callers."""

    def __init__(self) -> None:
        self.events: list[DomainEvent] = []

    def publish(self, event: DomainEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list[DomainEvent]:
        return [e for e in self.events if e.event_type == event_type]
