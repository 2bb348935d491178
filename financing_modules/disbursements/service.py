"""
Disbursement & Repayment Tracker -- the money legs of a financed invoice.

Thin glue layer that:
1. Records exactly one live disbursement per invoice (buyer- or
   financier-funded) and moves the invoice to DISBURSED
2. Creates the face-value repayment owed to a funding financier
3. Settles the invoice once every money leg is complete

Invariants:
    - At most one disbursement with status != FAILED per invoice.  Checked
      under the invoice lock; a second attempt raises
      DuplicateDisbursementError.
    - The disbursed amount is the accepted offer's or bid's net amount; a
      caller-supplied amount must match it exactly.
    - A failed disbursement rolls the invoice back (ACCEPTED or
      BID_SELECTED) and cancels its repayment.

Flushes only.  The workflow orchestrator owns the transaction boundary.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from financing_config.schema import FinancingConfig
from financing_kernel.db.types import round_money, to_decimal
from financing_kernel.domain.actor import Actor, ActorRole
from financing_kernel.domain.clock import Clock
from financing_kernel.exceptions import (
    DisbursementNotFoundError,
    DuplicateDisbursementError,
    InvalidTransitionError,
    RepaymentNotFoundError,
    ValidationError,
)
from financing_kernel.logging_config import get_logger
from financing_kernel.services.base import BaseService
from financing_modules import _transitions
from financing_modules.bidding.models import BidStatus
from financing_modules.bidding.orm import BidModel
from financing_modules.discounts.models import FundingType, OfferStatus
from financing_modules.discounts.orm import DiscountOfferModel
from financing_modules.disbursements.models import (
    DisbursementStatus,
    PayerType,
    RepaymentStatus,
)
from financing_modules.disbursements.orm import DisbursementModel, RepaymentModel
from financing_modules.disbursements.workflows import DISBURSEMENT_WORKFLOW, REPAYMENT_WORKFLOW
from financing_modules.invoices.models import InvoiceStatus, ProductType
from financing_modules.invoices.orm import InvoiceModel
from financing_modules.invoices.permissions import require_buyer, require_one_of
from financing_modules.invoices.state_machine import InvoiceStateMachine, TransitionContext

logger = get_logger("modules.disbursements.service")

_DISBURSEMENT = "Disbursement"
_REPAYMENT = "Repayment"
_SENT_STATUSES = (DisbursementStatus.DISBURSED.value, DisbursementStatus.COMPLETED.value)


class DisbursementTracker(BaseService[DisbursementModel]):
    """Records disbursements and repayments and settles invoices."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: FinancingConfig | None = None,
    ):
        super().__init__(session, clock)
        self.config = config or FinancingConfig.with_defaults()
        self.state_machine = InvoiceStateMachine(self.clock)

    # =========================================================================
    # Lookup
    # =========================================================================

    def load_disbursement(self, disbursement_id: UUID) -> DisbursementModel:
        row = self.session.execute(
            select(DisbursementModel)
            .where(DisbursementModel.id == disbursement_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if row is None:
            raise DisbursementNotFoundError(disbursement_id)
        return row

    def load_repayment(self, repayment_id: UUID) -> RepaymentModel:
        row = self.session.execute(
            select(RepaymentModel)
            .where(RepaymentModel.id == repayment_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if row is None:
            raise RepaymentNotFoundError(repayment_id)
        return row

    def disbursements_for(self, invoice_id: UUID) -> list[DisbursementModel]:
        return list(self.session.execute(
            select(DisbursementModel)
            .where(DisbursementModel.invoice_id == invoice_id)
            .order_by(DisbursementModel.created_at, DisbursementModel.id)
        ).scalars())

    def repayments_for(self, invoice_id: UUID) -> list[RepaymentModel]:
        return list(self.session.execute(
            select(RepaymentModel)
            .where(RepaymentModel.invoice_id == invoice_id)
            .order_by(RepaymentModel.due_date, RepaymentModel.id)
        ).scalars())

    def live_disbursement(self, invoice_id: UUID) -> DisbursementModel | None:
        """The invoice's disbursement that has not FAILED, if any."""
        return self.session.execute(
            select(DisbursementModel).where(
                DisbursementModel.invoice_id == invoice_id,
                DisbursementModel.status != DisbursementStatus.FAILED.value,
            )
        ).scalar_one_or_none()

    def live_repayment(self, disbursement_id: UUID) -> RepaymentModel | None:
        return self.session.execute(
            select(RepaymentModel).where(
                RepaymentModel.disbursement_id == disbursement_id,
                RepaymentModel.status != RepaymentStatus.CANCELLED.value,
            )
        ).scalar_one_or_none()

    def list_repayments(self, actor: Actor, upcoming: bool = False) -> list[RepaymentModel]:
        """Repayments the actor pays or receives, earliest due date first.

        ``upcoming`` keeps only PENDING and OVERDUE rows.
        """
        stmt = select(RepaymentModel)
        if actor.role == ActorRole.FINANCIER:
            stmt = stmt.where(RepaymentModel.payee_id == actor.actor_id)
        elif actor.role in (ActorRole.BUYER, ActorRole.SELLER):
            stmt = stmt.where(RepaymentModel.payer_id == actor.actor_id)
        if upcoming:
            stmt = stmt.where(RepaymentModel.status.in_(
                (RepaymentStatus.PENDING.value, RepaymentStatus.OVERDUE.value)
            ))
        stmt = stmt.order_by(RepaymentModel.due_date, RepaymentModel.id)
        return list(self.session.execute(stmt).scalars())

    def list_disbursements(
        self, actor: Actor, status: DisbursementStatus | None = None,
    ) -> list[DisbursementModel]:
        """Disbursements the actor pays or receives, newest first.

        Admin and system actors see every row.
        """
        stmt = select(DisbursementModel)
        if not actor.is_privileged:
            stmt = stmt.where(or_(
                DisbursementModel.payer_id == actor.actor_id,
                DisbursementModel.recipient_id == actor.actor_id,
            ))
        if status is not None:
            stmt = stmt.where(DisbursementModel.status == status.value)
        stmt = stmt.order_by(DisbursementModel.created_at.desc(), DisbursementModel.id)
        return list(self.session.execute(stmt).scalars())

    # =========================================================================
    # Disbursement
    # =========================================================================

    def authorize_payment(
        self,
        offer: DiscountOfferModel,
        invoice: InvoiceModel,
        actor: Actor,
        bank_account_id: str,
    ) -> DisbursementModel:
        """Buyer authorizes a self-funded early payment of the offer's net amount."""
        require_buyer(invoice, actor, "authorize_payment")
        if not (bank_account_id or "").strip():
            raise ValidationError("bank_account_id", "cannot be empty")
        if offer.funding_type != FundingType.SELF_FUNDED.value:
            raise InvalidTransitionError(
                "DiscountOffer", offer.id, offer.status, "authorize_payment",
                reason="offer is not self-funded",
            )
        return self.record_disbursement(
            invoice, actor, PayerType.BUYER, bank_account_id=bank_account_id.strip(),
        )

    def record_disbursement(
        self,
        invoice: InvoiceModel,
        actor: Actor,
        payer_type: PayerType,
        amount: Decimal | int | str | None = None,
        bank_account_id: str | None = None,
    ) -> DisbursementModel:
        """Record the early payment to the seller and move the invoice to DISBURSED.

        Raises:
            DuplicateDisbursementError: a non-FAILED disbursement already exists.
            InvalidTransitionError: invoice or funding source not ready.
            InvalidActorError: caller is not a party to the payment.
            ValidationError: supplied amount differs from the payable amount.
        """
        payer_type = PayerType(payer_type)
        live = self.live_disbursement(invoice.id)
        if live is not None:
            raise DuplicateDisbursementError(invoice.id, live.id)

        offer_id = bid_id = None
        if payer_type == PayerType.BUYER:
            offer = self._self_funded_offer(invoice)
            require_buyer(invoice, actor, "record_disbursement")
            payable, payer_id, offer_id = offer.net_amount, invoice.buyer_id, offer.id
            funding = FundingType.SELF_FUNDED
        elif payer_type == PayerType.FINANCIER:
            bid = self._accepted_bid(invoice)
            require_one_of(
                actor, "record_disbursement",
                (bid.financier_id, invoice.buyer_id, invoice.seller_id),
            )
            payable, payer_id, bid_id = bid.net_amount, bid.financier_id, bid.id
            funding = FundingType.FINANCIER_FUNDED
        else:
            raise ValidationError("payer_type", f"{payer_type.value} cannot fund a disbursement")

        places = invoice.decimal_places
        payable = round_money(payable, places)
        if amount is not None:
            supplied = to_decimal(amount, "amount")
            if supplied != payable:
                raise ValidationError("amount", f"{supplied} does not equal payable {payable}")

        disbursement = DisbursementModel(
            id=uuid4(),
            invoice_id=invoice.id,
            offer_id=offer_id,
            bid_id=bid_id,
            payer_type=payer_type.value,
            payer_id=payer_id,
            recipient_id=invoice.seller_id,
            amount=payable,
            currency=invoice.currency,
            bank_account_id=bank_account_id,
            status=DisbursementStatus.PENDING.value,
            created_by_id=actor.actor_id,
        )
        self.session.add(disbursement)
        self.state_machine.transition(
            invoice, "disburse", actor, TransitionContext(funding_type=funding.value),
        )
        self.flush("Invoice", invoice.id)

        logger.info(
            "disbursement_recorded",
            extra={
                "disbursement_id": str(disbursement.id),
                "invoice_id": str(invoice.id),
                "payer_type": payer_type.value,
                "amount": str(payable),
                "currency": invoice.currency,
            },
        )

        if payer_type == PayerType.FINANCIER:
            self._create_repayment(disbursement, invoice, actor)
        return disbursement

    def mark_disbursed(
        self,
        disbursement: DisbursementModel,
        invoice: InvoiceModel,
        actor: Actor,
        transaction_ref: str | None = None,
    ) -> DisbursementModel:
        """PENDING -> DISBURSED: funds sent, awaiting confirmation."""
        require_one_of(actor, "mark_disbursed", (disbursement.payer_id,))
        _transitions.advance(DISBURSEMENT_WORKFLOW, _DISBURSEMENT, disbursement, "send")
        disbursement.disbursed_at = self.clock.now()
        if transaction_ref:
            disbursement.transaction_ref = transaction_ref
        disbursement.updated_by_id = actor.actor_id
        self.state_machine.touch(invoice, actor)
        self.flush("Invoice", invoice.id)

        logger.info(
            "disbursement_sent",
            extra={"disbursement_id": str(disbursement.id), "transaction_ref": transaction_ref},
        )
        return disbursement

    def mark_completed(
        self,
        disbursement: DisbursementModel,
        invoice: InvoiceModel,
        actor: Actor,
        transaction_ref: str,
    ) -> DisbursementModel:
        """Confirm the seller received the funds; settle when nothing is owed."""
        require_one_of(
            actor, "mark_completed", (disbursement.payer_id, disbursement.recipient_id),
        )
        if not (transaction_ref or "").strip():
            raise ValidationError("transaction_ref", "cannot be empty")
        _transitions.advance(DISBURSEMENT_WORKFLOW, _DISBURSEMENT, disbursement, "complete")
        now = self.clock.now()
        disbursement.completed_at = now
        if disbursement.disbursed_at is None:
            disbursement.disbursed_at = now
        disbursement.transaction_ref = transaction_ref.strip()
        disbursement.updated_by_id = actor.actor_id

        repayment = self.live_repayment(disbursement.id)
        settled = repayment is None or repayment.status == RepaymentStatus.PAID.value
        self._settle_or_touch(invoice, actor, settled)
        self.flush("Invoice", invoice.id)

        logger.info(
            "disbursement_completed",
            extra={
                "disbursement_id": str(disbursement.id),
                "invoice_id": str(invoice.id),
                "invoice_status": invoice.status,
            },
        )
        return disbursement

    def mark_failed(
        self,
        disbursement: DisbursementModel,
        invoice: InvoiceModel,
        actor: Actor,
        reason: str,
    ) -> DisbursementModel:
        """Record a failed payout and reopen the invoice for a fresh disbursement."""
        require_one_of(actor, "mark_failed", (disbursement.payer_id,))
        cleaned = (reason or "").strip()
        if not cleaned:
            raise ValidationError("failure_reason", "cannot be empty")
        _transitions.check(DISBURSEMENT_WORKFLOW, _DISBURSEMENT, disbursement, "fail")
        repayment = self.live_repayment(disbursement.id)
        if repayment is not None:
            # a repaid advance cannot be unwound by a payout failure
            _transitions.check(REPAYMENT_WORKFLOW, _REPAYMENT, repayment, "cancel")
        funding = (
            FundingType.SELF_FUNDED
            if disbursement.payer_type == PayerType.BUYER.value
            else FundingType.FINANCIER_FUNDED
        )
        self.state_machine.transition(
            invoice, "fail_disbursement", actor, TransitionContext(funding_type=funding.value),
        )
        _transitions.advance(DISBURSEMENT_WORKFLOW, _DISBURSEMENT, disbursement, "fail")
        disbursement.failed_at = self.clock.now()
        disbursement.failure_reason = cleaned
        disbursement.updated_by_id = actor.actor_id

        if repayment is not None:
            _transitions.advance(REPAYMENT_WORKFLOW, _REPAYMENT, repayment, "cancel")
            repayment.updated_by_id = actor.actor_id
        self.flush("Invoice", invoice.id)

        logger.warning(
            "disbursement_failed",
            extra={
                "disbursement_id": str(disbursement.id),
                "invoice_id": str(invoice.id),
                "failure_reason": cleaned,
                "repayment_cancelled": repayment is not None,
            },
        )
        return disbursement

    # =========================================================================
    # Repayment
    # =========================================================================

    def record_repayment_due(
        self, disbursement: DisbursementModel, invoice: InvoiceModel, actor: Actor,
    ) -> RepaymentModel:
        """Create the PENDING repayment for a financier-funded disbursement.

        Raises:
            InvalidTransitionError: buyer-funded or failed disbursement, or a
                live repayment already exists.
        """
        if disbursement.payer_type != PayerType.FINANCIER.value:
            raise InvalidTransitionError(
                _DISBURSEMENT, disbursement.id, disbursement.status, "record_repayment_due",
                reason="only financier-funded disbursements are repaid",
            )
        if disbursement.status == DisbursementStatus.FAILED.value:
            raise InvalidTransitionError(
                _DISBURSEMENT, disbursement.id, disbursement.status, "record_repayment_due",
            )
        existing = self.live_repayment(disbursement.id)
        if existing is not None:
            raise InvalidTransitionError(
                _REPAYMENT, existing.id, existing.status, "record_repayment_due",
                reason="repayment already recorded",
            )
        require_one_of(
            actor, "record_repayment_due",
            (disbursement.payer_id, invoice.buyer_id, invoice.seller_id),
        )
        return self._create_repayment(disbursement, invoice, actor)

    def mark_repayment_paid(
        self,
        repayment: RepaymentModel,
        invoice: InvoiceModel,
        actor: Actor,
        transaction_ref: str | None = None,
    ) -> RepaymentModel:
        """PENDING/OVERDUE -> PAID, confirmed by the financier; settles when possible."""
        require_one_of(actor, "mark_repayment_paid", (repayment.payee_id,))
        _transitions.check(REPAYMENT_WORKFLOW, _REPAYMENT, repayment, "pay")
        disbursement = self.load_disbursement(repayment.disbursement_id)
        if disbursement.status not in _SENT_STATUSES:
            raise InvalidTransitionError(
                _REPAYMENT, repayment.id, repayment.status, "pay",
                reason=f"disbursement {disbursement.id} has not been sent",
            )
        _transitions.advance(REPAYMENT_WORKFLOW, _REPAYMENT, repayment, "pay")
        repayment.paid_at = self.clock.now()
        if transaction_ref:
            repayment.transaction_ref = transaction_ref
        repayment.updated_by_id = actor.actor_id

        settled = disbursement.status == DisbursementStatus.COMPLETED.value
        self._settle_or_touch(invoice, actor, settled)
        self.flush("Invoice", invoice.id)

        logger.info(
            "repayment_paid",
            extra={
                "repayment_id": str(repayment.id),
                "invoice_id": str(invoice.id),
                "amount": str(repayment.amount),
                "invoice_status": invoice.status,
            },
        )
        return repayment

    def mark_overdue(
        self, repayment: RepaymentModel, invoice: InvoiceModel, actor: Actor, today: date,
    ) -> bool:
        """PENDING past its due date -> OVERDUE.  Returns False when nothing changed."""
        if repayment.status != RepaymentStatus.PENDING.value or not repayment.due_date < today:
            return False
        _transitions.advance(REPAYMENT_WORKFLOW, _REPAYMENT, repayment, "mark_overdue")
        repayment.updated_by_id = actor.actor_id
        self.state_machine.touch(invoice, actor)
        self.flush("Invoice", invoice.id)

        logger.warning(
            "repayment_overdue",
            extra={
                "repayment_id": str(repayment.id),
                "invoice_id": str(invoice.id),
                "due_date": repayment.due_date.isoformat(),
                "amount": str(repayment.amount),
            },
        )
        return True

    # =========================================================================
    # Helpers
    # =========================================================================

    def _create_repayment(
        self, disbursement: DisbursementModel, invoice: InvoiceModel, actor: Actor,
    ) -> RepaymentModel:
        if invoice.product_type == ProductType.GST_BACKED.value:
            payer_type, payer_id = PayerType.SELLER, invoice.seller_id
        else:
            payer_type, payer_id = PayerType.BUYER, invoice.buyer_id

        repayment = RepaymentModel(
            id=uuid4(),
            invoice_id=invoice.id,
            disbursement_id=disbursement.id,
            payer_type=payer_type.value,
            payer_id=payer_id,
            payee_id=disbursement.payer_id,
            amount=round_money(invoice.total_amount, invoice.decimal_places),
            currency=invoice.currency,
            due_date=invoice.due_date,
            status=RepaymentStatus.PENDING.value,
            created_by_id=actor.actor_id,
        )
        self.session.add(repayment)
        self.flush("Invoice", invoice.id)

        logger.info(
            "repayment_due_recorded",
            extra={
                "repayment_id": str(repayment.id),
                "invoice_id": str(invoice.id),
                "payer_type": payer_type.value,
                "amount": str(repayment.amount),
                "due_date": repayment.due_date.isoformat(),
            },
        )
        return repayment

    def _settle_or_touch(self, invoice: InvoiceModel, actor: Actor, settled: bool) -> None:
        if settled:
            self.state_machine.transition(
                invoice, "settle", actor, TransitionContext(payment_settled=True),
            )
        else:
            self.state_machine.touch(invoice, actor)

    def _self_funded_offer(self, invoice: InvoiceModel) -> DiscountOfferModel:
        offer = self.session.execute(
            select(DiscountOfferModel).where(
                DiscountOfferModel.invoice_id == invoice.id,
                DiscountOfferModel.status == OfferStatus.ACCEPTED.value,
            )
        ).scalar_one_or_none()
        if invoice.status != InvoiceStatus.ACCEPTED.value or offer is None:
            raise InvalidTransitionError(
                "Invoice", invoice.id, invoice.status, "record_disbursement",
                reason="buyer-funded disbursement needs an accepted offer",
            )
        if offer.funding_type != FundingType.SELF_FUNDED.value:
            raise InvalidTransitionError(
                "Invoice", invoice.id, invoice.status, "record_disbursement",
                reason="offer is not self-funded",
            )
        return offer

    def _accepted_bid(self, invoice: InvoiceModel) -> BidModel:
        bid = self.session.execute(
            select(BidModel).where(
                BidModel.invoice_id == invoice.id,
                BidModel.status == BidStatus.ACCEPTED.value,
            )
        ).scalar_one_or_none()
        if invoice.status != InvoiceStatus.BID_SELECTED.value or bid is None:
            raise InvalidTransitionError(
                "Invoice", invoice.id, invoice.status, "record_disbursement",
                reason="financier-funded disbursement needs a selected bid",
            )
        return bid
