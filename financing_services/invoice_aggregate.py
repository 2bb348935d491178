"""
financing_services.invoice_aggregate -- read snapshot of one invoice.

Responsibility:
    Freezes an invoice and every child row (offers, bids, disbursements,
    repayments) into DTOs at the end of a unit of work, so callers never
    hold live ORM objects past the session that loaded them.

Architecture position:
    Services -- built by the orchestrator inside the session, returned
    after commit.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from financing_modules.bidding.models import Bid, BidStatus
from financing_modules.bidding.service import BiddingMarketplace
from financing_modules.discounts.models import DiscountOffer, OfferStatus
from financing_modules.discounts.service import DiscountNegotiator
from financing_modules.disbursements.models import (
    Disbursement,
    DisbursementStatus,
    Repayment,
    RepaymentStatus,
)
from financing_modules.disbursements.service import DisbursementTracker
from financing_modules.invoices.models import Invoice
from financing_modules.invoices.orm import InvoiceModel


@dataclass(frozen=True)
class InvoiceAggregate:
    """Immutable view of an invoice and its children."""

    invoice: Invoice
    offers: tuple[DiscountOffer, ...] = ()
    bids: tuple[Bid, ...] = ()
    disbursements: tuple[Disbursement, ...] = ()
    repayments: tuple[Repayment, ...] = ()

    @property
    def active_offer(self) -> DiscountOffer | None:
        return next((o for o in self.offers if o.status == OfferStatus.PENDING), None)

    @property
    def accepted_offer(self) -> DiscountOffer | None:
        return next((o for o in self.offers if o.status == OfferStatus.ACCEPTED), None)

    @property
    def active_bids(self) -> tuple[Bid, ...]:
        return tuple(b for b in self.bids if b.status == BidStatus.ACTIVE)

    @property
    def accepted_bid(self) -> Bid | None:
        return next((b for b in self.bids if b.status == BidStatus.ACCEPTED), None)

    @property
    def live_disbursement(self) -> Disbursement | None:
        return next(
            (d for d in self.disbursements if d.status != DisbursementStatus.FAILED), None,
        )

    @property
    def repayment(self) -> Repayment | None:
        """The repayment that is not CANCELLED, if any."""
        return next(
            (r for r in self.repayments if r.status != RepaymentStatus.CANCELLED), None,
        )

    @classmethod
    def load(
        cls,
        session: Session,
        invoice: InvoiceModel,
        negotiator: DiscountNegotiator,
        marketplace: BiddingMarketplace,
        tracker: DisbursementTracker,
    ) -> InvoiceAggregate:
        session.flush()
        places = invoice.decimal_places
        return cls(
            invoice=invoice.to_dto(),
            offers=tuple(o.to_dto(places) for o in negotiator.offers_for(invoice.id)),
            bids=tuple(b.to_dto(places) for b in marketplace.bids_for(invoice.id)),
            disbursements=tuple(d.to_dto() for d in tracker.disbursements_for(invoice.id)),
            repayments=tuple(r.to_dto() for r in tracker.repayments_for(invoice.id)),
        )
