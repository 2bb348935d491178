"""
Bidding Marketplace -- financier bids on invoices open for bidding.

Thin glue layer that:
1. Prices bids through the discounting engine (discount + processing fee)
2. Applies bid status changes through BID_WORKFLOW
3. Moves the invoice OPEN_FOR_BIDDING -> BID_SELECTED (or EXPIRED)

Selection is exclusive: the chosen bid becomes ACCEPTED and every sibling
ACTIVE bid becomes REJECTED in the same flush, under the invoice lock.

Flushes only.  The workflow orchestrator owns the transaction boundary.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from financing_config.schema import FinancingConfig
from financing_engines.discounting import quote_bid
from financing_kernel.db.types import round_money, to_decimal
from financing_kernel.domain.actor import Actor
from financing_kernel.domain.clock import Clock
from financing_kernel.exceptions import (
    BidExpiredError,
    BidNotFoundError,
    InvalidActorError,
    InvalidTransitionError,
    ValidationError,
)
from financing_kernel.logging_config import get_logger
from financing_kernel.services.base import BaseService
from financing_modules import _transitions
from financing_modules.bidding.models import BidStatus
from financing_modules.bidding.orm import BidModel
from financing_modules.bidding.workflows import BID_WORKFLOW
from financing_modules.discounts.orm import DiscountOfferModel
from financing_modules.invoices.models import InvoiceStatus
from financing_modules.invoices.orm import InvoiceModel
from financing_modules.invoices.permissions import (
    require_bid_selector,
    require_buyer,
    require_financier,
)
from financing_modules.invoices.state_machine import InvoiceStateMachine, TransitionContext

logger = get_logger("modules.bidding.service")

_ENTITY = "Bid"
_ZERO = Decimal("0")


class BiddingMarketplace(BaseService[BidModel]):
    """Collects, ranks and settles financier bids."""

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

    def load_bid(self, bid_id: UUID) -> BidModel:
        bid = self.session.execute(
            select(BidModel)
            .where(BidModel.id == bid_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if bid is None:
            raise BidNotFoundError(bid_id)
        return bid

    def bids_for(self, invoice_id: UUID) -> list[BidModel]:
        """Every bid on the invoice in submission order."""
        return list(self.session.execute(
            select(BidModel)
            .where(BidModel.invoice_id == invoice_id)
            .order_by(BidModel.submitted_at, BidModel.id)
        ).scalars())

    def active_bids(self, invoice_id: UUID) -> list[BidModel]:
        return [b for b in self.bids_for(invoice_id) if b.status == BidStatus.ACTIVE.value]

    def accepted_bid(self, invoice_id: UUID) -> BidModel | None:
        return self.session.execute(
            select(BidModel).where(
                BidModel.invoice_id == invoice_id,
                BidModel.status == BidStatus.ACCEPTED.value,
            )
        ).scalar_one_or_none()

    def ranked_bids(self, invoice_id: UUID) -> list[BidModel]:
        """ACTIVE bids, lowest discount rate first, ties by earliest submission."""
        return list(self.session.execute(
            select(BidModel)
            .where(
                BidModel.invoice_id == invoice_id,
                BidModel.status == BidStatus.ACTIVE.value,
            )
            .order_by(BidModel.discount_rate, BidModel.submitted_at, BidModel.id)
        ).scalars())

    def list_bids(
        self, actor: Actor, status: BidStatus | None = None,
    ) -> list[tuple[BidModel, InvoiceModel]]:
        """A financier's own bids across invoices, newest first, each with its invoice.

        Admin and system actors see every bid.
        """
        require_financier(actor, "list_bids")
        stmt = select(BidModel, InvoiceModel).join(
            InvoiceModel, InvoiceModel.id == BidModel.invoice_id,
        )
        if not actor.is_privileged:
            stmt = stmt.where(BidModel.financier_id == actor.actor_id)
        if status is not None:
            stmt = stmt.where(BidModel.status == status.value)
        stmt = stmt.order_by(BidModel.submitted_at.desc(), BidModel.id)
        return [(bid, invoice) for bid, invoice in self.session.execute(stmt)]

    # =========================================================================
    # Opening
    # =========================================================================

    def open_for_bidding(
        self, invoice: InvoiceModel, actor: Actor, offer: DiscountOfferModel | None,
    ) -> InvoiceModel:
        """ACCEPTED + FINANCIER_FUNDED offer -> OPEN_FOR_BIDDING."""
        require_buyer(invoice, actor, "open_for_bidding")
        funding = offer.funding_type if offer is not None else None
        self.state_machine.transition(
            invoice, "open_for_bidding", actor, TransitionContext(funding_type=funding),
        )
        self.flush("Invoice", invoice.id)
        logger.info(
            "bidding_opened",
            extra={
                "invoice_id": str(invoice.id),
                "bidding_opened_at": invoice.bidding_opened_at.isoformat(),
            },
        )
        return invoice

    # =========================================================================
    # Financier actions
    # =========================================================================

    def submit_bid(
        self,
        invoice: InvoiceModel,
        actor: Actor,
        discount_rate: Decimal | int | str,
        processing_fee_rate: Decimal | int | str,
        valid_until: datetime,
    ) -> BidModel:
        """Place a bid, replacing the financier's current ACTIVE bid if any.

        Raises:
            InvalidActorError: caller is not a financier.
            InvalidTransitionError: invoice is not OPEN_FOR_BIDDING.
            ValidationError: rates, validity or resulting net amount out of bounds.
        """
        require_financier(actor, "submit_bid")
        if invoice.status != InvoiceStatus.OPEN_FOR_BIDDING.value:
            raise InvalidTransitionError(
                "Invoice", invoice.id, invoice.status, "submit_bid",
            )
        now = self.clock.now()
        if valid_until.tzinfo is None:
            raise ValidationError("valid_until", "must be timezone-aware")
        if valid_until <= now:
            raise ValidationError("valid_until", "must be in the future")

        rate = to_decimal(discount_rate, "discount_rate")
        fee = to_decimal(processing_fee_rate, "processing_fee_rate")
        if not _ZERO < rate <= self.config.max_bid_discount_rate:
            raise ValidationError(
                "discount_rate",
                f"must be greater than 0 and at most {self.config.max_bid_discount_rate}, got {rate}",
            )
        if not _ZERO <= fee <= self.config.max_processing_fee_rate:
            raise ValidationError(
                "processing_fee_rate",
                f"must be between 0 and {self.config.max_processing_fee_rate}, got {fee}",
            )
        quote = quote_bid(
            total=round_money(invoice.total_amount, invoice.decimal_places),
            discount_rate=rate,
            processing_fee_rate=fee,
            decimal_places=invoice.decimal_places,
        )
        if quote.net_amount <= _ZERO:
            raise ValidationError(
                "net_amount", f"bid leaves nothing for the seller: {quote.net_amount}",
            )

        for previous in self.active_bids(invoice.id):
            if previous.financier_id == actor.actor_id:
                _transitions.advance(BID_WORKFLOW, _ENTITY, previous, "withdraw")
                previous.closed_at = now
                previous.updated_by_id = actor.actor_id
                logger.info(
                    "bid_replaced",
                    extra={"bid_id": str(previous.id), "financier_id": str(actor.actor_id)},
                )

        bid = BidModel(
            id=uuid4(),
            invoice_id=invoice.id,
            financier_id=actor.actor_id,
            discount_rate=rate,
            processing_fee_rate=fee,
            discount_amount=quote.discount_amount,
            processing_fee_amount=quote.processing_fee_amount,
            net_amount=quote.net_amount,
            valid_until=valid_until,
            submitted_at=now,
            status=BidStatus.ACTIVE.value,
            created_by_id=actor.actor_id,
        )
        self.session.add(bid)
        self.state_machine.touch(invoice, actor)
        self.flush("Invoice", invoice.id)

        logger.info(
            "bid_submitted",
            extra={
                "bid_id": str(bid.id),
                "invoice_id": str(invoice.id),
                "discount_rate": str(rate),
                "processing_fee_rate": str(fee),
                "net_amount": str(quote.net_amount),
            },
        )
        return bid

    def withdraw_bid(self, bid: BidModel, invoice: InvoiceModel, actor: Actor) -> BidModel:
        """Financier pulls an ACTIVE bid of their own."""
        require_financier(actor, "withdraw_bid")
        if not actor.is_privileged and bid.financier_id != actor.actor_id:
            raise InvalidActorError(actor.actor_id, "withdraw_bid", "bid belongs to another financier")
        _transitions.advance(BID_WORKFLOW, _ENTITY, bid, "withdraw")
        bid.closed_at = self.clock.now()
        bid.updated_by_id = actor.actor_id
        self.state_machine.touch(invoice, actor)
        self.flush("Invoice", invoice.id)

        logger.info("bid_withdrawn", extra={"bid_id": str(bid.id)})
        return bid

    # =========================================================================
    # Selection
    # =========================================================================

    def select_bid(self, bid: BidModel, invoice: InvoiceModel, actor: Actor) -> BidModel:
        """Accept one bid and reject every other ACTIVE bid on the invoice.

        Raises:
            InvalidActorError: caller is not the buyer (seller for GST-backed).
            InvalidTransitionError: invoice not OPEN_FOR_BIDDING or bid not ACTIVE.
            BidExpiredError: the bid's validity window has closed.
        """
        require_bid_selector(invoice, actor, "select_bid")
        self.state_machine.resolve(invoice, "select_bid")
        _transitions.check(BID_WORKFLOW, _ENTITY, bid, "select")
        now = self.clock.now()
        if now >= bid.valid_until:
            raise BidExpiredError(bid.id, bid.valid_until)

        rejected = 0
        for sibling in self.active_bids(invoice.id):
            if sibling.id == bid.id:
                continue
            _transitions.advance(BID_WORKFLOW, _ENTITY, sibling, "reject")
            sibling.closed_at = now
            sibling.updated_by_id = actor.actor_id
            rejected += 1
        _transitions.advance(BID_WORKFLOW, _ENTITY, bid, "select")
        bid.closed_at = now
        bid.updated_by_id = actor.actor_id
        self.state_machine.transition(invoice, "select_bid", actor)
        self.flush("Invoice", invoice.id)

        logger.info(
            "bid_selected",
            extra={
                "bid_id": str(bid.id),
                "invoice_id": str(invoice.id),
                "net_amount": str(bid.net_amount),
                "rejected_siblings": rejected,
            },
        )
        return bid

    def reject_active_bids(self, invoice: InvoiceModel, actor: Actor) -> list[BidModel]:
        """Close every ACTIVE bid of an invoice being cancelled."""
        now = self.clock.now()
        closed = []
        for bid in self.active_bids(invoice.id):
            _transitions.advance(BID_WORKFLOW, _ENTITY, bid, "reject")
            bid.closed_at = now
            bid.updated_by_id = actor.actor_id
            closed.append(bid)
        if closed:
            self.flush("Invoice", invoice.id)
            logger.info(
                "active_bids_rejected",
                extra={"invoice_id": str(invoice.id), "count": len(closed)},
            )
        return closed

    # =========================================================================
    # Expiry
    # =========================================================================

    def bidding_window_elapsed(self, invoice: InvoiceModel, now: datetime) -> bool:
        if invoice.bidding_opened_at is None:
            return False
        window = timedelta(hours=self.config.max_bidding_window_hours)
        return invoice.bidding_opened_at + window <= now

    def expire_bids(
        self, invoice: InvoiceModel, actor: Actor, now: datetime,
    ) -> tuple[list[BidModel], bool]:
        """Expire lapsed ACTIVE bids; expire the invoice once bidding is exhausted.

        Returns the bids expired by this call and whether the invoice itself
        moved to EXPIRED.  A second call with the same ``now`` changes nothing.
        """
        expired = []
        remaining = 0
        for bid in self.active_bids(invoice.id):
            if bid.valid_until <= now:
                _transitions.advance(BID_WORKFLOW, _ENTITY, bid, "expire")
                bid.closed_at = now
                bid.updated_by_id = actor.actor_id
                expired.append(bid)
            else:
                remaining += 1

        invoice_expired = False
        if (
            invoice.status == InvoiceStatus.OPEN_FOR_BIDDING.value
            and remaining == 0
            and self.bidding_window_elapsed(invoice, now)
        ):
            self.state_machine.transition(
                invoice, "expire_bidding", actor,
                TransitionContext(bidding_window_elapsed=True),
            )
            invoice_expired = True
        elif expired:
            self.state_machine.touch(invoice, actor)

        if expired or invoice_expired:
            self.flush("Invoice", invoice.id)
            logger.info(
                "bids_expired",
                extra={
                    "invoice_id": str(invoice.id),
                    "expired_bids": len(expired),
                    "invoice_expired": invoice_expired,
                },
            )
        return expired, invoice_expired
