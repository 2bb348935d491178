"""
Discount Offer Negotiator -- the buyer -> seller offer lifecycle.

Thin glue layer that:
1. Prices offers through the discounting engine
2. Applies offer status changes through OFFER_WORKFLOW
3. Moves the invoice through InvoiceStateMachine in the same flush

Expiry is enforced twice: at point of use (accept, reject, update raise
OfferExpiredError with no writes) and by the expiry sweep, which calls
``expire_offer`` once per invoice.

Flushes only.  The workflow orchestrator owns the transaction boundary.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from financing_config.schema import FinancingConfig
from financing_engines.discounting import OfferQuote, quote_offer
from financing_kernel.db.types import round_money, to_decimal
from financing_kernel.domain.actor import Actor
from financing_kernel.domain.clock import Clock
from financing_kernel.exceptions import (
    InvalidTransitionError,
    OfferExpiredError,
    OfferNotFoundError,
    ValidationError,
)
from financing_kernel.logging_config import get_logger
from financing_kernel.services.base import BaseService
from financing_modules import _transitions
from financing_modules.discounts.models import FundingType, OfferStatus
from financing_modules.discounts.orm import DiscountOfferModel
from financing_modules.discounts.workflows import OFFER_WORKFLOW
from financing_modules.invoices.models import InvoiceStatus, ProductType
from financing_modules.invoices.orm import InvoiceModel
from financing_modules.invoices.permissions import require_buyer, require_seller
from financing_modules.invoices.state_machine import InvoiceStateMachine, TransitionContext

logger = get_logger("modules.discounts.service")

_ENTITY = "DiscountOffer"


class DiscountNegotiator(BaseService[DiscountOfferModel]):
    """Creates, prices and closes discount offers."""

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

    def load_offer(self, offer_id: UUID) -> DiscountOfferModel:
        offer = self.session.execute(
            select(DiscountOfferModel)
            .where(DiscountOfferModel.id == offer_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if offer is None:
            raise OfferNotFoundError(offer_id)
        return offer

    def offers_for(self, invoice_id: UUID) -> list[DiscountOfferModel]:
        """All offers on the invoice, oldest first."""
        return list(self.session.execute(
            select(DiscountOfferModel)
            .where(DiscountOfferModel.invoice_id == invoice_id)
            .order_by(DiscountOfferModel.offered_at, DiscountOfferModel.id)
        ).scalars())

    def pending_offer(self, invoice_id: UUID) -> DiscountOfferModel | None:
        return self.session.execute(
            select(DiscountOfferModel).where(
                DiscountOfferModel.invoice_id == invoice_id,
                DiscountOfferModel.status == OfferStatus.PENDING.value,
            )
        ).scalar_one_or_none()

    def accepted_offer(self, invoice_id: UUID) -> DiscountOfferModel | None:
        return self.session.execute(
            select(DiscountOfferModel).where(
                DiscountOfferModel.invoice_id == invoice_id,
                DiscountOfferModel.status == OfferStatus.ACCEPTED.value,
            )
        ).scalar_one_or_none()

    # =========================================================================
    # Buyer actions
    # =========================================================================

    def create_offer(
        self,
        invoice: InvoiceModel,
        actor: Actor,
        percent: Decimal | int | str,
        early_payment_date: date,
        expires_at: datetime | None = None,
    ) -> DiscountOfferModel:
        """Attach a PENDING offer and move a DRAFT invoice to PENDING_ACCEPTANCE.

        Raises:
            InvalidActorError: caller is not the invoice's buyer.
            InvalidTransitionError: invoice cannot take a new offer.
            ValidationError: percent, early-payment date or expiry out of bounds.
        """
        require_buyer(invoice, actor, "create_offer")
        if invoice.product_type == ProductType.GST_BACKED.value:
            raise InvalidTransitionError(
                "Invoice", invoice.id, invoice.status, "create_offer",
                reason="gst-backed invoices are financed through bidding",
            )
        pending = self.pending_offer(invoice.id)
        can_take_offer = invoice.status == InvoiceStatus.DRAFT.value or (
            invoice.status == InvoiceStatus.PENDING_ACCEPTANCE.value and pending is None
        )
        if not can_take_offer or pending is not None:
            raise InvalidTransitionError(
                "Invoice", invoice.id, invoice.status, "create_offer",
                reason="an active offer already exists" if pending is not None else None,
            )

        now = self.clock.now()
        pct = self._validated_percent(percent)
        quote = self._quote(invoice, pct, early_payment_date)
        expiry = self._validated_expiry(expires_at, now)

        offer = DiscountOfferModel(
            id=uuid4(),
            invoice_id=invoice.id,
            buyer_id=invoice.buyer_id,
            discount_percentage=pct,
            discount_amount=quote.discount_amount,
            net_amount=quote.net_amount,
            early_payment_date=early_payment_date,
            days_early=quote.days_early,
            expires_at=expiry,
            offered_at=now,
            status=OfferStatus.PENDING.value,
            created_by_id=actor.actor_id,
        )
        self.session.add(offer)

        if invoice.status == InvoiceStatus.DRAFT.value:
            self.state_machine.transition(
                invoice, "submit", actor, TransitionContext(has_pending_offer=True),
            )
        else:
            self.state_machine.touch(invoice, actor)
        self.flush("Invoice", invoice.id)

        logger.info(
            "offer_created",
            extra={
                "offer_id": str(offer.id),
                "invoice_id": str(invoice.id),
                "discount_percentage": str(pct),
                "discount_amount": str(quote.discount_amount),
                "net_amount": str(quote.net_amount),
                "days_early": quote.days_early,
                "expires_at": expiry.isoformat(),
            },
        )
        return offer

    def update_offer(
        self,
        offer: DiscountOfferModel,
        invoice: InvoiceModel,
        actor: Actor,
        percent: Decimal | int | str | None = None,
        early_payment_date: date | None = None,
        expires_at: datetime | None = None,
    ) -> DiscountOfferModel:
        """Re-price a PENDING offer before the seller responds."""
        require_buyer(invoice, actor, "update_offer")
        if offer.status != OfferStatus.PENDING.value:
            raise InvalidTransitionError(_ENTITY, offer.id, offer.status, "update_offer")
        now = self.clock.now()
        self._ensure_not_expired(offer, now)

        pct = self._validated_percent(percent) if percent is not None else offer.discount_percentage
        early = early_payment_date or offer.early_payment_date
        quote = self._quote(invoice, pct, early)
        expiry = self._validated_expiry(expires_at, now) if expires_at is not None else offer.expires_at

        offer.discount_percentage = pct
        offer.discount_amount = quote.discount_amount
        offer.net_amount = quote.net_amount
        offer.early_payment_date = early
        offer.days_early = quote.days_early
        offer.expires_at = expiry
        offer.updated_by_id = actor.actor_id
        self.state_machine.touch(invoice, actor)
        self.flush("Invoice", invoice.id)

        logger.info(
            "offer_updated",
            extra={
                "offer_id": str(offer.id),
                "discount_percentage": str(pct),
                "net_amount": str(quote.net_amount),
            },
        )
        return offer

    def withdraw_offer(
        self, offer: DiscountOfferModel, invoice: InvoiceModel, actor: Actor,
    ) -> DiscountOfferModel:
        """Buyer takes back a PENDING offer; the invoice returns to DRAFT."""
        require_buyer(invoice, actor, "withdraw_offer")
        _transitions.check(OFFER_WORKFLOW, _ENTITY, offer, "withdraw")
        self.state_machine.transition(invoice, "withdraw_offer", actor)
        _transitions.advance(OFFER_WORKFLOW, _ENTITY, offer, "withdraw")
        offer.closed_at = self.clock.now()
        offer.updated_by_id = actor.actor_id
        self.flush("Invoice", invoice.id)

        logger.info("offer_withdrawn", extra={"offer_id": str(offer.id)})
        return offer

    def select_funding_type(
        self,
        offer: DiscountOfferModel,
        invoice: InvoiceModel,
        actor: Actor,
        funding_type: FundingType,
    ) -> DiscountOfferModel:
        """Record who funds the early payment.  Chosen once, after acceptance.

        FINANCIER_FUNDED is followed by the marketplace opening bidding in the
        same unit of work; SELF_FUNDED leaves the invoice ACCEPTED.
        """
        require_buyer(invoice, actor, "select_funding_type")
        funding_type = FundingType(funding_type)
        if invoice.status != InvoiceStatus.ACCEPTED.value:
            raise InvalidTransitionError(
                "Invoice", invoice.id, invoice.status, "select_funding_type",
            )
        if offer.status != OfferStatus.ACCEPTED.value:
            raise InvalidTransitionError(
                _ENTITY, offer.id, offer.status, "select_funding_type",
            )
        if offer.funding_type is not None:
            raise InvalidTransitionError(
                _ENTITY, offer.id, offer.status, "select_funding_type",
                reason=f"funding type already {offer.funding_type}",
            )

        offer.funding_type = funding_type.value
        offer.funding_selected_at = self.clock.now()
        offer.updated_by_id = actor.actor_id
        self.state_machine.touch(invoice, actor)
        self.flush("Invoice", invoice.id)

        logger.info(
            "funding_type_selected",
            extra={"offer_id": str(offer.id), "funding_type": funding_type.value},
        )
        return offer

    # =========================================================================
    # Seller actions
    # =========================================================================

    def accept_offer(
        self, offer: DiscountOfferModel, invoice: InvoiceModel, actor: Actor,
    ) -> DiscountOfferModel:
        """Seller accepts: offer ACCEPTED, invoice ACCEPTED.

        Raises:
            InvalidActorError: caller is not the seller.
            InvalidTransitionError: offer is not PENDING.
            OfferExpiredError: now is past the offer's expiry.
        """
        require_seller(invoice, actor, "accept_offer")
        _transitions.check(OFFER_WORKFLOW, _ENTITY, offer, "accept")
        now = self.clock.now()
        self._ensure_not_expired(offer, now)

        self.state_machine.transition(invoice, "accept_offer", actor)
        _transitions.advance(OFFER_WORKFLOW, _ENTITY, offer, "accept")
        offer.responded_at = now
        offer.updated_by_id = actor.actor_id
        self.flush("Invoice", invoice.id)

        logger.info(
            "offer_accepted",
            extra={
                "offer_id": str(offer.id),
                "invoice_id": str(invoice.id),
                "net_amount": str(offer.net_amount),
            },
        )
        return offer

    def reject_offer(
        self,
        offer: DiscountOfferModel,
        invoice: InvoiceModel,
        actor: Actor,
        reason: str,
    ) -> DiscountOfferModel:
        """Seller rejects with a reason; offer and invoice end REJECTED."""
        require_seller(invoice, actor, "reject_offer")
        cleaned = (reason or "").strip()
        minimum = self.config.min_rejection_reason_length
        if len(cleaned) < minimum:
            raise ValidationError(
                "rejection_reason",
                f"must be at least {minimum} characters, got {len(cleaned)}",
            )
        _transitions.check(OFFER_WORKFLOW, _ENTITY, offer, "reject")
        now = self.clock.now()
        self._ensure_not_expired(offer, now)

        self.state_machine.transition(invoice, "reject_offer", actor)
        _transitions.advance(OFFER_WORKFLOW, _ENTITY, offer, "reject")
        offer.rejection_reason = cleaned
        offer.responded_at = now
        offer.updated_by_id = actor.actor_id
        self.flush("Invoice", invoice.id)

        logger.info(
            "offer_rejected",
            extra={"offer_id": str(offer.id), "invoice_id": str(invoice.id)},
        )
        return offer

    # =========================================================================
    # System actions
    # =========================================================================

    def expire_offer(
        self,
        offer: DiscountOfferModel,
        invoice: InvoiceModel,
        actor: Actor,
        now: datetime,
    ) -> bool:
        """Expire a lapsed PENDING offer.  Returns False when there is nothing to do."""
        if offer.status != OfferStatus.PENDING.value or not offer.expires_at < now:
            return False

        if invoice.status == InvoiceStatus.PENDING_ACCEPTANCE.value:
            self.state_machine.transition(
                invoice, "expire_offer", actor,
                TransitionContext(expired_offer_policy=self.config.expired_offer_policy),
            )
        else:
            self.state_machine.touch(invoice, actor)
        _transitions.advance(OFFER_WORKFLOW, _ENTITY, offer, "expire")
        offer.closed_at = now
        offer.updated_by_id = actor.actor_id
        self.flush("Invoice", invoice.id)

        logger.info(
            "offer_expired",
            extra={
                "offer_id": str(offer.id),
                "invoice_id": str(invoice.id),
                "invoice_status": invoice.status,
                "policy": self.config.expired_offer_policy,
            },
        )
        return True

    def cancel_pending_offer(self, invoice: InvoiceModel, actor: Actor) -> DiscountOfferModel | None:
        """Close the PENDING offer of an invoice being cancelled."""
        offer = self.pending_offer(invoice.id)
        if offer is None:
            return None
        _transitions.advance(OFFER_WORKFLOW, _ENTITY, offer, "cancel")
        offer.closed_at = self.clock.now()
        offer.updated_by_id = actor.actor_id
        self.flush("Invoice", invoice.id)
        logger.info("offer_cancelled", extra={"offer_id": str(offer.id)})
        return offer

    # =========================================================================
    # Helpers
    # =========================================================================

    def _ensure_not_expired(self, offer: DiscountOfferModel, now: datetime) -> None:
        if now > offer.expires_at:
            raise OfferExpiredError(offer.id, offer.expires_at)

    def _validated_percent(self, percent: Decimal | int | str) -> Decimal:
        pct = to_decimal(percent, "discount_percentage")
        if not Decimal("0") < pct <= self.config.max_discount_percent:
            raise ValidationError(
                "discount_percentage",
                f"must be greater than 0 and at most {self.config.max_discount_percent}, got {pct}",
            )
        return pct

    def _validated_expiry(self, expires_at: datetime | None, now: datetime) -> datetime:
        if expires_at is None:
            return now + timedelta(hours=self.config.offer_expiry_hours)
        if expires_at.tzinfo is None:
            raise ValidationError("expires_at", "must be timezone-aware")
        if expires_at <= now:
            raise ValidationError("expires_at", "must be in the future")
        return expires_at

    def _quote(self, invoice: InvoiceModel, pct: Decimal, early_payment_date: date) -> OfferQuote:
        if early_payment_date <= self.clock.today():
            raise ValidationError(
                "early_payment_date",
                f"{early_payment_date} must be after today {self.clock.today()}",
            )
        return quote_offer(
            total=round_money(invoice.total_amount, invoice.decimal_places),
            percent=pct,
            due_date=invoice.due_date,
            early_payment_date=early_payment_date,
            decimal_places=invoice.decimal_places,
        )
