"""
financing_services.workflow_orchestrator -- operation-level financing API.

Responsibility:
    Single entry point for every invoice financing operation.  Each call is
    one unit of work scoped to one invoice:

        bind log context -> open session -> lock invoice FOR UPDATE ->
        run module services -> snapshot aggregate -> commit ->
        publish one DomainEvent

Architecture position:
    Services -- the only layer that opens sessions and commits.  Module
    services below it flush only.

Invariants enforced:
    - Conflicting concurrent operations on one invoice: the loser's write
      fails the version check, is rolled back, and is retried once against
      fresh state (``FinancingConfig.concurrency_retries``).  A second
      conflict propagates as ConcurrentModificationError.
    - Events are published after commit, never inside the transaction.  A
      publisher failure is logged and does not undo the transition.
    - Typed errors reach the caller unchanged; bulk operations and sweeps
      report them per item instead.

Failure modes:
    - Any FinancingKernelError subclass raised by the module services.
    - ConcurrentModificationError after retries are exhausted.

Usage:
    orchestrator = WorkflowOrchestrator(get_session_factory(), clock, config)
    agg = orchestrator.create_invoice(seller, invoice_number="INV-1", ...)
    agg = orchestrator.create_offer(agg.invoice.id, buyer, Decimal("2"), date(2024, 2, 1))
    agg = orchestrator.accept_offer(agg.active_offer.id, seller)
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from financing_batch.domain.types import SweepRunResult
from financing_batch.services.executor import SweepExecutor
from financing_batch.tasks.base import TaskRegistry
from financing_batch.tasks.sweeps import default_task_registry
from financing_config import get_active_config
from financing_config.schema import FinancingConfig
from financing_kernel.db.engine import get_session_factory, session_scope
from financing_kernel.db.types import round_rate
from financing_kernel.domain.actor import Actor, ActorRole
from financing_kernel.domain.clock import Clock, SystemClock
from financing_kernel.domain.events import DomainEvent, EventPublisher, EventType
from financing_kernel.exceptions import (
    BidNotFoundError,
    ConcurrentModificationError,
    DisbursementNotFoundError,
    FinancingKernelError,
    InvalidActorError,
    NotFoundError,
    OfferNotFoundError,
    RepaymentNotFoundError,
)
from financing_kernel.logging_config import LogContext, get_logger
from financing_modules.bidding.models import Bid, BidStatus
from financing_modules.bidding.orm import BidModel
from financing_modules.bidding.service import BiddingMarketplace
from financing_modules.discounts.models import FundingType
from financing_modules.discounts.orm import DiscountOfferModel
from financing_modules.discounts.service import DiscountNegotiator
from financing_modules.disbursements.models import (
    Disbursement,
    DisbursementStatus,
    PayerType,
    Repayment,
)
from financing_modules.disbursements.orm import DisbursementModel, RepaymentModel
from financing_modules.disbursements.service import DisbursementTracker
from financing_modules.invoices.models import Invoice, InvoiceStatus, ProductType
from financing_modules.invoices.orm import InvoiceModel
from financing_modules.invoices.service import InvoiceService
from financing_services.invoice_aggregate import InvoiceAggregate

logger = get_logger("services.workflow_orchestrator")

T = TypeVar("T")


@dataclass(frozen=True)
class BulkOfferResult:
    """Outcome of one item in ``bulk_create_offers``."""

    invoice_id: UUID
    aggregate: InvoiceAggregate | None = None
    error_code: str | None = None
    error_message: str | None = None

    @property
    def ok(self) -> bool:
        return self.error_code is None


@dataclass(frozen=True)
class _Outcome:
    aggregate: InvoiceAggregate
    event: DomainEvent | None = None


class _UnitOfWork:
    """Services sharing one session for one operation attempt."""

    def __init__(self, session: Session, clock: Clock, config: FinancingConfig):
        self.session = session
        self.clock = clock
        self.invoices = InvoiceService(session, clock, config)
        self.negotiator = DiscountNegotiator(session, clock, config)
        self.marketplace = BiddingMarketplace(session, clock, config)
        self.tracker = DisbursementTracker(session, clock, config)

    def lock(self, invoice_id: UUID) -> InvoiceModel:
        return self.invoices.load(invoice_id, for_update=True)

    def locate(
        self, model: type, not_found: type[NotFoundError], entity_id: UUID,
    ) -> InvoiceModel:
        """Lock the invoice that owns a child row, looked up by the child's id."""
        invoice_id = self.session.execute(
            select(model.invoice_id).where(model.id == entity_id)
        ).scalar_one_or_none()
        if invoice_id is None:
            raise not_found(entity_id)
        return self.lock(invoice_id)

    def aggregate(self, invoice: InvoiceModel) -> InvoiceAggregate:
        return InvoiceAggregate.load(
            self.session, invoice, self.negotiator, self.marketplace, self.tracker,
        )

    def outcome(
        self,
        invoice: InvoiceModel,
        event_type: EventType,
        actor: Actor,
        **data: Any,
    ) -> _Outcome:
        event = DomainEvent(
            event_type=event_type,
            invoice_id=invoice.id,
            actor_id=actor.actor_id,
            occurred_at=self.clock.now(),
            data=data,
        )
        return _Outcome(self.aggregate(invoice), event)


class WorkflowOrchestrator:
    """Facade over the financing modules.

    Contract:
        Every mutating method runs as its own transaction, returns an
        ``InvoiceAggregate`` snapshot and publishes exactly one event.
        Read methods return DTOs and publish nothing.

    Non-goals:
        - Does NOT authenticate callers; ``Actor`` is trusted input.
        - Does NOT deliver notifications; the publisher does.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
        config: FinancingConfig | None = None,
        publisher: EventPublisher | None = None,
        task_registry: TaskRegistry | None = None,
    ):
        self._session_factory = session_factory or get_session_factory()
        self._clock = clock or SystemClock()
        self._config = config or get_active_config()
        self._publisher = publisher
        self._sweeps = SweepExecutor(
            self._session_factory,
            task_registry or default_task_registry(self._config, self._clock),
            self._clock,
            publisher,
        )

    @property
    def config(self) -> FinancingConfig:
        return self._config

    # =========================================================================
    # Invoices
    # =========================================================================

    def create_invoice(
        self,
        actor: Actor,
        *,
        invoice_number: str,
        issue_date: date,
        due_date: date,
        total_amount: Decimal | int | str,
        seller_id: UUID,
        buyer_id: UUID,
        product_type: ProductType,
        currency: str | None = None,
        subtotal: Decimal | int | str | None = None,
        tax_amount: Decimal | int | str | None = None,
        description: str | None = None,
    ) -> InvoiceAggregate:
        def work(uow: _UnitOfWork) -> _Outcome:
            invoice = uow.invoices.create_invoice(
                actor,
                invoice_number=invoice_number,
                issue_date=issue_date,
                due_date=due_date,
                total_amount=total_amount,
                seller_id=seller_id,
                buyer_id=buyer_id,
                product_type=product_type,
                currency=currency,
                subtotal=subtotal,
                tax_amount=tax_amount,
                description=description,
            )
            return uow.outcome(
                invoice, EventType.INVOICE_CREATED, actor,
                invoice_number=invoice.invoice_number,
                product_type=invoice.product_type,
                total_amount=invoice.amount_text(invoice.total_amount),
            )

        return self._execute("create_invoice", actor, work)

    def update_draft(self, invoice_id: UUID, actor: Actor, **changes: Any) -> InvoiceAggregate:
        def work(uow: _UnitOfWork) -> _Outcome:
            invoice = uow.invoices.update_draft(uow.lock(invoice_id), actor, **changes)
            return uow.outcome(
                invoice, EventType.INVOICE_UPDATED, actor, fields=",".join(sorted(changes)),
            )

        return self._execute("update_draft", actor, work, invoice_id)

    def submit(self, invoice_id: UUID, actor: Actor) -> InvoiceAggregate:
        def work(uow: _UnitOfWork) -> _Outcome:
            invoice = uow.lock(invoice_id)
            pending = uow.negotiator.pending_offer(invoice.id)
            uow.invoices.submit(invoice, actor, has_pending_offer=pending is not None)
            return uow.outcome(
                invoice, EventType.INVOICE_SUBMITTED, actor, status=invoice.status,
            )

        return self._execute("submit", actor, work, invoice_id)

    def cancel(self, invoice_id: UUID, actor: Actor) -> InvoiceAggregate:
        """Cancel the invoice, closing its pending offer and rejecting active bids."""
        def work(uow: _UnitOfWork) -> _Outcome:
            invoice = uow.lock(invoice_id)
            uow.invoices.cancel(invoice, actor)
            offer = uow.negotiator.cancel_pending_offer(invoice, actor)
            bids = uow.marketplace.reject_active_bids(invoice, actor)
            return uow.outcome(
                invoice, EventType.INVOICE_CANCELLED, actor,
                offer_id=offer.id if offer is not None else None,
                rejected_bids=len(bids),
            )

        return self._execute("cancel", actor, work, invoice_id)

    def get_invoice(self, invoice_id: UUID, actor: Actor) -> InvoiceAggregate:
        def read(uow: _UnitOfWork) -> InvoiceAggregate:
            invoice = uow.invoices.load(invoice_id)
            self._require_visible(uow, invoice, actor)
            return uow.aggregate(invoice)

        return self._read(read)

    def list_invoices(
        self,
        actor: Actor,
        status: InvoiceStatus | None = None,
        product_type: ProductType | None = None,
    ) -> list[Invoice]:
        return self._read(
            lambda uow: [
                row.to_dto() for row in uow.invoices.list_invoices(actor, status, product_type)
            ]
        )

    # =========================================================================
    # Discount offers
    # =========================================================================

    def create_offer(
        self,
        invoice_id: UUID,
        actor: Actor,
        discount_percentage: Decimal | int | str,
        early_payment_date: date,
        expires_at: datetime | None = None,
    ) -> InvoiceAggregate:
        def work(uow: _UnitOfWork) -> _Outcome:
            invoice = uow.lock(invoice_id)
            offer = uow.negotiator.create_offer(
                invoice, actor, discount_percentage, early_payment_date, expires_at,
            )
            return uow.outcome(
                invoice, EventType.OFFER_CREATED, actor,
                offer_id=offer.id,
                discount_percentage=str(round_rate(offer.discount_percentage)),
                discount_amount=invoice.amount_text(offer.discount_amount),
                net_amount=invoice.amount_text(offer.net_amount),
                expires_at=offer.expires_at.isoformat(),
            )

        return self._execute("create_offer", actor, work, invoice_id)

    def bulk_create_offers(
        self, actor: Actor, requests: Iterable[Mapping[str, Any]],
    ) -> list[BulkOfferResult]:
        """Create one offer per request, each in its own unit of work.

        Each request carries ``invoice_id``, ``discount_percentage``,
        ``early_payment_date`` and optionally ``expires_at``.  A failure on
        one invoice is reported in its result and does not stop the rest.
        """
        results: list[BulkOfferResult] = []
        for request in requests:
            invoice_id = request["invoice_id"]
            try:
                aggregate = self.create_offer(
                    invoice_id,
                    actor,
                    request["discount_percentage"],
                    request["early_payment_date"],
                    request.get("expires_at"),
                )
            except FinancingKernelError as exc:
                logger.warning(
                    "bulk_offer_item_failed",
                    extra={"invoice_id": str(invoice_id), "error_code": exc.code},
                )
                results.append(BulkOfferResult(
                    invoice_id=invoice_id, error_code=exc.code, error_message=str(exc),
                ))
            else:
                results.append(BulkOfferResult(invoice_id=invoice_id, aggregate=aggregate))

        logger.info(
            "bulk_offers_completed",
            extra={
                "total": len(results),
                "succeeded": sum(1 for r in results if r.ok),
                "failed": sum(1 for r in results if not r.ok),
            },
        )
        return results

    def update_offer(
        self,
        offer_id: UUID,
        actor: Actor,
        discount_percentage: Decimal | int | str | None = None,
        early_payment_date: date | None = None,
        expires_at: datetime | None = None,
    ) -> InvoiceAggregate:
        def work(uow: _UnitOfWork) -> _Outcome:
            invoice = uow.locate(DiscountOfferModel, OfferNotFoundError, offer_id)
            offer = uow.negotiator.update_offer(
                uow.negotiator.load_offer(offer_id), invoice, actor,
                discount_percentage, early_payment_date, expires_at,
            )
            return uow.outcome(
                invoice, EventType.OFFER_UPDATED, actor,
                offer_id=offer.id,
                discount_percentage=str(round_rate(offer.discount_percentage)),
                net_amount=invoice.amount_text(offer.net_amount),
            )

        return self._execute("update_offer", actor, work)

    def withdraw_offer(self, offer_id: UUID, actor: Actor) -> InvoiceAggregate:
        def work(uow: _UnitOfWork) -> _Outcome:
            invoice = uow.locate(DiscountOfferModel, OfferNotFoundError, offer_id)
            offer = uow.negotiator.withdraw_offer(
                uow.negotiator.load_offer(offer_id), invoice, actor,
            )
            return uow.outcome(invoice, EventType.OFFER_WITHDRAWN, actor, offer_id=offer.id)

        return self._execute("withdraw_offer", actor, work)

    def accept_offer(self, offer_id: UUID, actor: Actor) -> InvoiceAggregate:
        def work(uow: _UnitOfWork) -> _Outcome:
            invoice = uow.locate(DiscountOfferModel, OfferNotFoundError, offer_id)
            offer = uow.negotiator.accept_offer(
                uow.negotiator.load_offer(offer_id), invoice, actor,
            )
            return uow.outcome(
                invoice, EventType.OFFER_ACCEPTED, actor,
                offer_id=offer.id,
                net_amount=invoice.amount_text(offer.net_amount),
                early_payment_date=offer.early_payment_date.isoformat(),
            )

        return self._execute("accept_offer", actor, work)

    def reject_offer(self, offer_id: UUID, actor: Actor, reason: str) -> InvoiceAggregate:
        def work(uow: _UnitOfWork) -> _Outcome:
            invoice = uow.locate(DiscountOfferModel, OfferNotFoundError, offer_id)
            offer = uow.negotiator.reject_offer(
                uow.negotiator.load_offer(offer_id), invoice, actor, reason,
            )
            return uow.outcome(
                invoice, EventType.OFFER_REJECTED, actor,
                offer_id=offer.id, reason=offer.rejection_reason,
            )

        return self._execute("reject_offer", actor, work)

    def select_funding_type(
        self, offer_id: UUID, actor: Actor, funding_type: FundingType,
    ) -> InvoiceAggregate:
        """SELF_FUNDED keeps the invoice ACCEPTED; FINANCIER_FUNDED opens bidding."""
        def work(uow: _UnitOfWork) -> _Outcome:
            invoice = uow.locate(DiscountOfferModel, OfferNotFoundError, offer_id)
            offer = uow.negotiator.select_funding_type(
                uow.negotiator.load_offer(offer_id), invoice, actor, funding_type,
            )
            if offer.funding_type == FundingType.FINANCIER_FUNDED.value:
                uow.marketplace.open_for_bidding(invoice, actor, offer)
            return uow.outcome(
                invoice, EventType.FUNDING_TYPE_SELECTED, actor,
                offer_id=offer.id,
                funding_type=offer.funding_type,
                invoice_status=invoice.status,
            )

        return self._execute("select_funding_type", actor, work)

    def authorize_payment(
        self, offer_id: UUID, actor: Actor, bank_account_id: str,
    ) -> InvoiceAggregate:
        def work(uow: _UnitOfWork) -> _Outcome:
            invoice = uow.locate(DiscountOfferModel, OfferNotFoundError, offer_id)
            disbursement = uow.tracker.authorize_payment(
                uow.negotiator.load_offer(offer_id), invoice, actor, bank_account_id,
            )
            return uow.outcome(
                invoice, EventType.PAYMENT_AUTHORIZED, actor,
                offer_id=offer_id,
                disbursement_id=disbursement.id,
                amount=invoice.amount_text(disbursement.amount),
            )

        return self._execute("authorize_payment", actor, work)

    # =========================================================================
    # Bidding
    # =========================================================================

    def open_for_bidding(self, invoice_id: UUID, actor: Actor) -> InvoiceAggregate:
        def work(uow: _UnitOfWork) -> _Outcome:
            invoice = uow.lock(invoice_id)
            uow.marketplace.open_for_bidding(
                invoice, actor, uow.negotiator.accepted_offer(invoice.id),
            )
            return uow.outcome(
                invoice, EventType.BIDDING_OPENED, actor,
                bidding_opened_at=invoice.bidding_opened_at.isoformat(),
            )

        return self._execute("open_for_bidding", actor, work, invoice_id)

    def submit_bid(
        self,
        invoice_id: UUID,
        actor: Actor,
        discount_rate: Decimal | int | str,
        processing_fee_rate: Decimal | int | str,
        valid_until: datetime,
    ) -> InvoiceAggregate:
        def work(uow: _UnitOfWork) -> _Outcome:
            invoice = uow.lock(invoice_id)
            bid = uow.marketplace.submit_bid(
                invoice, actor, discount_rate, processing_fee_rate, valid_until,
            )
            return uow.outcome(
                invoice, EventType.BID_SUBMITTED, actor,
                bid_id=bid.id,
                financier_id=bid.financier_id,
                discount_rate=str(round_rate(bid.discount_rate)),
                net_amount=invoice.amount_text(bid.net_amount),
            )

        return self._execute("submit_bid", actor, work, invoice_id)

    def withdraw_bid(self, bid_id: UUID, actor: Actor) -> InvoiceAggregate:
        def work(uow: _UnitOfWork) -> _Outcome:
            invoice = uow.locate(BidModel, BidNotFoundError, bid_id)
            bid = uow.marketplace.withdraw_bid(uow.marketplace.load_bid(bid_id), invoice, actor)
            return uow.outcome(invoice, EventType.BID_WITHDRAWN, actor, bid_id=bid.id)

        return self._execute("withdraw_bid", actor, work)

    def select_bid(self, bid_id: UUID, actor: Actor) -> InvoiceAggregate:
        """Accept a bid, reject its siblings and record the financier's disbursement."""
        def work(uow: _UnitOfWork) -> _Outcome:
            invoice = uow.locate(BidModel, BidNotFoundError, bid_id)
            bid = uow.marketplace.select_bid(uow.marketplace.load_bid(bid_id), invoice, actor)
            disbursement = uow.tracker.record_disbursement(invoice, actor, PayerType.FINANCIER)
            return uow.outcome(
                invoice, EventType.BID_SELECTED, actor,
                bid_id=bid.id,
                financier_id=bid.financier_id,
                net_amount=invoice.amount_text(bid.net_amount),
                disbursement_id=disbursement.id,
            )

        return self._execute("select_bid", actor, work)

    def ranked_bids(self, invoice_id: UUID, actor: Actor) -> list[Bid]:
        """ACTIVE bids in display order: lowest discount rate, then earliest."""
        def read(uow: _UnitOfWork) -> list[Bid]:
            invoice = uow.invoices.load(invoice_id)
            self._require_visible(uow, invoice, actor)
            return [b.to_dto(invoice.decimal_places) for b in uow.marketplace.ranked_bids(invoice.id)]

        return self._read(read)

    def list_bids(self, actor: Actor, status: BidStatus | None = None) -> list[Bid]:
        """The calling financier's bids on every invoice, newest first."""
        return self._read(lambda uow: [
            bid.to_dto(invoice.decimal_places)
            for bid, invoice in uow.marketplace.list_bids(actor, status)
        ])

    # =========================================================================
    # Disbursements and repayments
    # =========================================================================

    def record_disbursement(
        self,
        invoice_id: UUID,
        actor: Actor,
        payer_type: PayerType,
        amount: Decimal | int | str | None = None,
        bank_account_id: str | None = None,
    ) -> InvoiceAggregate:
        def work(uow: _UnitOfWork) -> _Outcome:
            invoice = uow.lock(invoice_id)
            disbursement = uow.tracker.record_disbursement(
                invoice, actor, payer_type, amount, bank_account_id,
            )
            return uow.outcome(
                invoice, EventType.DISBURSEMENT_RECORDED, actor,
                disbursement_id=disbursement.id,
                payer_type=disbursement.payer_type,
                amount=invoice.amount_text(disbursement.amount),
            )

        return self._execute("record_disbursement", actor, work, invoice_id)

    def mark_disbursed(
        self, disbursement_id: UUID, actor: Actor, transaction_ref: str | None = None,
    ) -> InvoiceAggregate:
        def work(uow: _UnitOfWork) -> _Outcome:
            invoice = uow.locate(DisbursementModel, DisbursementNotFoundError, disbursement_id)
            disbursement = uow.tracker.mark_disbursed(
                uow.tracker.load_disbursement(disbursement_id), invoice, actor, transaction_ref,
            )
            return uow.outcome(
                invoice, EventType.DISBURSEMENT_SENT, actor,
                disbursement_id=disbursement.id,
                transaction_ref=disbursement.transaction_ref,
            )

        return self._execute("mark_disbursed", actor, work)

    def mark_completed(
        self, disbursement_id: UUID, actor: Actor, transaction_ref: str,
    ) -> InvoiceAggregate:
        def work(uow: _UnitOfWork) -> _Outcome:
            invoice = uow.locate(DisbursementModel, DisbursementNotFoundError, disbursement_id)
            disbursement = uow.tracker.mark_completed(
                uow.tracker.load_disbursement(disbursement_id), invoice, actor, transaction_ref,
            )
            settled = invoice.status == InvoiceStatus.SETTLED.value
            return uow.outcome(
                invoice,
                EventType.INVOICE_SETTLED if settled else EventType.DISBURSEMENT_COMPLETED,
                actor,
                disbursement_id=disbursement.id,
                amount=invoice.amount_text(disbursement.amount),
                transaction_ref=disbursement.transaction_ref,
            )

        return self._execute("mark_completed", actor, work)

    def mark_failed(self, disbursement_id: UUID, actor: Actor, reason: str) -> InvoiceAggregate:
        def work(uow: _UnitOfWork) -> _Outcome:
            invoice = uow.locate(DisbursementModel, DisbursementNotFoundError, disbursement_id)
            disbursement = uow.tracker.mark_failed(
                uow.tracker.load_disbursement(disbursement_id), invoice, actor, reason,
            )
            return uow.outcome(
                invoice, EventType.DISBURSEMENT_FAILED, actor,
                disbursement_id=disbursement.id,
                reason=disbursement.failure_reason,
                invoice_status=invoice.status,
            )

        return self._execute("mark_failed", actor, work)

    def record_repayment_due(self, disbursement_id: UUID, actor: Actor) -> InvoiceAggregate:
        def work(uow: _UnitOfWork) -> _Outcome:
            invoice = uow.locate(DisbursementModel, DisbursementNotFoundError, disbursement_id)
            repayment = uow.tracker.record_repayment_due(
                uow.tracker.load_disbursement(disbursement_id), invoice, actor,
            )
            return uow.outcome(
                invoice, EventType.REPAYMENT_DUE, actor,
                repayment_id=repayment.id,
                amount=invoice.amount_text(repayment.amount),
                due_date=repayment.due_date.isoformat(),
            )

        return self._execute("record_repayment_due", actor, work)

    def mark_repayment_paid(
        self, repayment_id: UUID, actor: Actor, transaction_ref: str | None = None,
    ) -> InvoiceAggregate:
        def work(uow: _UnitOfWork) -> _Outcome:
            invoice = uow.locate(RepaymentModel, RepaymentNotFoundError, repayment_id)
            repayment = uow.tracker.mark_repayment_paid(
                uow.tracker.load_repayment(repayment_id), invoice, actor, transaction_ref,
            )
            settled = invoice.status == InvoiceStatus.SETTLED.value
            return uow.outcome(
                invoice,
                EventType.INVOICE_SETTLED if settled else EventType.REPAYMENT_PAID,
                actor,
                repayment_id=repayment.id,
                amount=invoice.amount_text(repayment.amount),
            )

        return self._execute("mark_repayment_paid", actor, work)

    def list_repayments(self, actor: Actor, upcoming: bool = False) -> list[Repayment]:
        return self._read(
            lambda uow: [r.to_dto() for r in uow.tracker.list_repayments(actor, upcoming)]
        )

    def list_disbursements(
        self, actor: Actor, status: DisbursementStatus | None = None,
    ) -> list[Disbursement]:
        return self._read(
            lambda uow: [d.to_dto() for d in uow.tracker.list_disbursements(actor, status)]
        )

    # =========================================================================
    # Sweeps
    # =========================================================================

    def expire_offers(self, now: datetime | None = None) -> SweepRunResult:
        return self._sweeps.run("offers.expire", now)

    def expire_bids(self, now: datetime | None = None) -> SweepRunResult:
        return self._sweeps.run("bids.expire", now)

    def mark_overdue_repayments(self, now: datetime | None = None) -> SweepRunResult:
        return self._sweeps.run("repayments.mark_overdue", now)

    # =========================================================================
    # Unit of work
    # =========================================================================

    def _execute(
        self,
        operation: str,
        actor: Actor,
        work: Callable[[_UnitOfWork], _Outcome],
        invoice_id: UUID | None = None,
    ) -> InvoiceAggregate:
        attempts = self._config.concurrency_retries + 1
        with LogContext.bind(
            correlation_id=str(uuid4()),
            invoice_id=invoice_id,
            actor_id=actor.actor_id,
            actor_role=actor.role.value,
            operation=operation,
        ):
            for attempt in range(1, attempts + 1):
                try:
                    with session_scope(self._session_factory) as session:
                        outcome = work(_UnitOfWork(session, self._clock, self._config))
                    break
                except (ConcurrentModificationError, StaleDataError) as exc:
                    if attempt >= attempts:
                        logger.warning(
                            "operation_conflict_exhausted",
                            extra={"attempts": attempt},
                        )
                        if isinstance(exc, ConcurrentModificationError):
                            raise
                        raise ConcurrentModificationError(
                            "Invoice", invoice_id or "unknown",
                        ) from exc
                    logger.info(
                        "operation_retry",
                        extra={"attempt": attempt, "reason": "concurrent_modification"},
                    )

            logger.info(
                "operation_committed",
                extra={
                    "invoice_status": outcome.aggregate.invoice.status.value,
                    "version": outcome.aggregate.invoice.version,
                },
            )
            if outcome.event is not None:
                self._publish(outcome.event)
        return outcome.aggregate

    def _read(self, fn: Callable[[_UnitOfWork], T]) -> T:
        with session_scope(self._session_factory) as session:
            return fn(_UnitOfWork(session, self._clock, self._config))

    def _publish(self, event: DomainEvent) -> None:
        if self._publisher is None:
            return
        try:
            self._publisher.publish(event)
        except Exception:
            logger.error(
                "event_publish_failed",
                extra={"event_type": event.event_type.value},
                exc_info=True,
            )

    @staticmethod
    def _require_visible(uow: _UnitOfWork, invoice: InvoiceModel, actor: Actor) -> None:
        if actor.is_privileged:
            return
        if actor.role == ActorRole.BUYER and actor.actor_id == invoice.buyer_id:
            return
        if actor.role == ActorRole.SELLER and actor.actor_id == invoice.seller_id:
            return
        if actor.role == ActorRole.FINANCIER:
            if invoice.status == InvoiceStatus.OPEN_FOR_BIDDING.value:
                return
            if any(b.financier_id == actor.actor_id for b in uow.marketplace.bids_for(invoice.id)):
                return
        raise InvalidActorError(actor.actor_id, "view_invoice", "invoice is not visible to caller")
