"""
Sweep tasks: offer expiry, bid expiry, repayment overdue.

Each task finds candidates without locks, then handles one invoice per
unit of work: lock the invoice, re-check under the lock, apply.  Rows that
changed in between are reported SKIPPED, which makes every sweep safe to
re-run with the same ``as_of``.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from financing_batch.domain.types import SweepItemStatus
from financing_batch.tasks.base import (
    SYSTEM_ACTOR,
    SweepItemInput,
    SweepTaskResult,
    TaskRegistry,
)
from financing_config.schema import FinancingConfig
from financing_kernel.domain.clock import Clock
from financing_kernel.domain.events import DomainEvent, EventType
from financing_modules.bidding.models import BidStatus
from financing_modules.bidding.orm import BidModel
from financing_modules.bidding.service import BiddingMarketplace
from financing_modules.discounts.models import OfferStatus
from financing_modules.discounts.orm import DiscountOfferModel
from financing_modules.discounts.service import DiscountNegotiator
from financing_modules.disbursements.models import RepaymentStatus
from financing_modules.disbursements.orm import RepaymentModel
from financing_modules.disbursements.service import DisbursementTracker
from financing_modules.invoices.models import InvoiceStatus
from financing_modules.invoices.orm import InvoiceModel
from financing_modules.invoices.service import InvoiceService

_NOT_ELIGIBLE = {"reason": "not_eligible"}


def _as_items(keys: list[UUID]) -> tuple[SweepItemInput, ...]:
    ordered = sorted({str(k) for k in keys})
    return tuple(
        SweepItemInput(item_index=i, item_key=key, payload={"invoice_id": key})
        for i, key in enumerate(ordered)
    )


def _event(event_type: EventType, invoice_id: UUID, as_of: datetime, **data) -> DomainEvent:
    return DomainEvent(
        event_type=event_type,
        invoice_id=invoice_id,
        actor_id=SYSTEM_ACTOR.actor_id,
        occurred_at=as_of,
        data=data,
    )


class OfferExpiryTask:
    """PENDING offers past ``expires_at`` -> EXPIRED, invoice per expiry policy."""

    def __init__(self, config: FinancingConfig, clock: Clock):
        self._config = config
        self._clock = clock

    @property
    def task_type(self) -> str:
        return "offers.expire"

    @property
    def description(self) -> str:
        return "Expire pending discount offers past their expiry time"

    def prepare_items(self, session: Session, as_of: datetime) -> tuple[SweepItemInput, ...]:
        rows = session.execute(
            select(DiscountOfferModel.invoice_id).where(
                DiscountOfferModel.status == OfferStatus.PENDING.value,
                DiscountOfferModel.expires_at < as_of,
            )
        ).scalars().all()
        return _as_items(list(rows))

    def execute_item(
        self, item: SweepItemInput, session: Session, as_of: datetime,
    ) -> SweepTaskResult:
        invoice = InvoiceService(session, self._clock, self._config).load(
            UUID(item.payload["invoice_id"]), for_update=True,
        )
        negotiator = DiscountNegotiator(session, self._clock, self._config)
        offer = negotiator.pending_offer(invoice.id)
        if offer is None or not negotiator.expire_offer(offer, invoice, SYSTEM_ACTOR, as_of):
            return SweepTaskResult(status=SweepItemStatus.SKIPPED, result_data=_NOT_ELIGIBLE)
        return SweepTaskResult(
            status=SweepItemStatus.SUCCEEDED,
            result_data={"offer_id": str(offer.id), "invoice_status": invoice.status},
            events=(
                _event(
                    EventType.OFFER_EXPIRED, invoice.id, as_of,
                    offer_id=offer.id, invoice_status=invoice.status,
                ),
            ),
        )


class BidExpiryTask:
    """ACTIVE bids past ``valid_until`` -> EXPIRED; exhausted bidding -> invoice EXPIRED."""

    def __init__(self, config: FinancingConfig, clock: Clock):
        self._config = config
        self._clock = clock

    @property
    def task_type(self) -> str:
        return "bids.expire"

    @property
    def description(self) -> str:
        return "Expire lapsed bids and close exhausted bidding windows"

    def prepare_items(self, session: Session, as_of: datetime) -> tuple[SweepItemInput, ...]:
        lapsed = session.execute(
            select(BidModel.invoice_id).where(
                BidModel.status == BidStatus.ACTIVE.value,
                BidModel.valid_until <= as_of,
            )
        ).scalars().all()
        window_start = as_of - timedelta(hours=self._config.max_bidding_window_hours)
        stale = session.execute(
            select(InvoiceModel.id).where(
                InvoiceModel.status == InvoiceStatus.OPEN_FOR_BIDDING.value,
                InvoiceModel.bidding_opened_at <= window_start,
            )
        ).scalars().all()
        return _as_items(list(lapsed) + list(stale))

    def execute_item(
        self, item: SweepItemInput, session: Session, as_of: datetime,
    ) -> SweepTaskResult:
        invoice = InvoiceService(session, self._clock, self._config).load(
            UUID(item.payload["invoice_id"]), for_update=True,
        )
        marketplace = BiddingMarketplace(session, self._clock, self._config)
        expired, invoice_expired = marketplace.expire_bids(invoice, SYSTEM_ACTOR, as_of)
        if not expired and not invoice_expired:
            return SweepTaskResult(status=SweepItemStatus.SKIPPED, result_data=_NOT_ELIGIBLE)

        bid_ids = [str(b.id) for b in expired]
        event_type = EventType.BIDDING_EXPIRED if invoice_expired else EventType.BID_EXPIRED
        return SweepTaskResult(
            status=SweepItemStatus.SUCCEEDED,
            result_data={"bid_ids": bid_ids, "invoice_expired": invoice_expired},
            events=(
                _event(
                    event_type, invoice.id, as_of,
                    bid_ids=",".join(bid_ids), invoice_status=invoice.status,
                ),
            ),
        )


class RepaymentOverdueTask:
    """PENDING repayments with ``due_date`` before the sweep date -> OVERDUE."""

    def __init__(self, config: FinancingConfig, clock: Clock):
        self._config = config
        self._clock = clock

    @property
    def task_type(self) -> str:
        return "repayments.mark_overdue"

    @property
    def description(self) -> str:
        return "Flag pending repayments past their due date"

    def prepare_items(self, session: Session, as_of: datetime) -> tuple[SweepItemInput, ...]:
        today = as_of.astimezone(UTC).date()
        rows = session.execute(
            select(RepaymentModel.id, RepaymentModel.invoice_id)
            .where(
                RepaymentModel.status == RepaymentStatus.PENDING.value,
                RepaymentModel.due_date < today,
            )
            .order_by(RepaymentModel.due_date, RepaymentModel.id)
        ).all()
        return tuple(
            SweepItemInput(
                item_index=i,
                item_key=str(repayment_id),
                payload={"invoice_id": str(invoice_id), "repayment_id": str(repayment_id)},
            )
            for i, (repayment_id, invoice_id) in enumerate(rows)
        )

    def execute_item(
        self, item: SweepItemInput, session: Session, as_of: datetime,
    ) -> SweepTaskResult:
        invoice = InvoiceService(session, self._clock, self._config).load(
            UUID(item.payload["invoice_id"]), for_update=True,
        )
        tracker = DisbursementTracker(session, self._clock, self._config)
        repayment = tracker.load_repayment(UUID(item.payload["repayment_id"]))
        today = as_of.astimezone(UTC).date()
        if not tracker.mark_overdue(repayment, invoice, SYSTEM_ACTOR, today):
            return SweepTaskResult(status=SweepItemStatus.SKIPPED, result_data=_NOT_ELIGIBLE)
        return SweepTaskResult(
            status=SweepItemStatus.SUCCEEDED,
            result_data={"repayment_id": str(repayment.id)},
            events=(
                _event(
                    EventType.REPAYMENT_OVERDUE, invoice.id, as_of,
                    repayment_id=repayment.id,
                    amount=invoice.amount_text(repayment.amount),
                    due_date=repayment.due_date.isoformat(),
                ),
            ),
        )


def default_task_registry(config: FinancingConfig, clock: Clock) -> TaskRegistry:
    """A registry holding the three financing sweeps."""
    registry = TaskRegistry()
    registry.register(OfferExpiryTask(config, clock))
    registry.register(BidExpiryTask(config, clock))
    registry.register(RepaymentOverdueTask(config, clock))
    return registry
