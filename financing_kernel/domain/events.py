"""
Domain events emitted after each committed workflow operation.

Responsibility:
    Defines the event envelope handed to the external notification
    collaborator and the publisher seam it plugs into.  Payloads carry only
    the ids and amounts needed to render a message, never the aggregate.

Architecture position:
    Kernel > Domain.  Pure value objects plus two trivial publishers.  The
    orchestrator publishes after commit, outside the transaction.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable
from uuid import UUID, uuid4

from financing_kernel.logging_config import get_logger

logger = get_logger("domain.events")


class EventType(str, Enum):
    INVOICE_CREATED = "InvoiceCreated"
    INVOICE_UPDATED = "InvoiceUpdated"
    INVOICE_SUBMITTED = "InvoiceSubmitted"
    INVOICE_CANCELLED = "InvoiceCancelled"
    OFFER_CREATED = "OfferCreated"
    OFFER_UPDATED = "OfferUpdated"
    OFFER_WITHDRAWN = "OfferWithdrawn"
    OFFER_ACCEPTED = "OfferAccepted"
    OFFER_REJECTED = "OfferRejected"
    OFFER_EXPIRED = "OfferExpired"
    FUNDING_TYPE_SELECTED = "FundingTypeSelected"
    PAYMENT_AUTHORIZED = "PaymentAuthorized"
    BIDDING_OPENED = "BiddingOpened"
    BID_SUBMITTED = "BidSubmitted"
    BID_WITHDRAWN = "BidWithdrawn"
    BID_SELECTED = "BidSelected"
    BID_EXPIRED = "BidExpired"
    BIDDING_EXPIRED = "BiddingExpired"
    DISBURSEMENT_RECORDED = "DisbursementRecorded"
    DISBURSEMENT_SENT = "DisbursementSent"
    DISBURSEMENT_COMPLETED = "DisbursementCompleted"
    DISBURSEMENT_FAILED = "DisbursementFailed"
    REPAYMENT_DUE = "RepaymentDue"
    REPAYMENT_PAID = "RepaymentPaid"
    REPAYMENT_OVERDUE = "RepaymentOverdue"
    INVOICE_SETTLED = "InvoiceSettled"


@dataclass(frozen=True)
class DomainEvent:
    """One notification-worthy fact about an invoice."""

    event_type: EventType
    invoice_id: UUID
    actor_id: UUID
    occurred_at: datetime
    data: dict[str, Any] = field(default_factory=dict)
    event_id: UUID = field(default_factory=uuid4)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": str(self.event_id),
            "event_type": self.event_type.value,
            "invoice_id": str(self.invoice_id),
            "actor_id": str(self.actor_id),
            "occurred_at": self.occurred_at.isoformat(),
            "data": {k: _plain(v) for k, v in self.data.items()},
        }


def _plain(value: Any) -> Any:
    if isinstance(value, (UUID,)):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if value is None or isinstance(value, (str, int, bool)):
        return value
    return str(value)


@runtime_checkable
class EventPublisher(Protocol):
    """Seam to the external notification component."""

    def publish(self, event: DomainEvent) -> None: ...


class InMemoryEventPublisher:
    """Collects events in order; used by tests and local runs."""

    def __init__(self) -> None:
        self._events: list[DomainEvent] = []
        self._lock = threading.Lock()

    def publish(self, event: DomainEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> list[DomainEvent]:
        with self._lock:
            return list(self._events)

    def of_type(self, event_type: EventType) -> list[DomainEvent]:
        return [e for e in self.events if e.event_type == event_type]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


class LoggingEventPublisher:
    """Writes each event as a structured log line."""

    def publish(self, event: DomainEvent) -> None:
        logger.info("domain_event_published", extra={"event": event.to_dict()})
