"""
Discount Offer Domain Models (``financing_modules.discounts.models``).

Frozen value objects for a buyer's early-payment discount offer.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class OfferStatus(str, Enum):
    """Discount offer lifecycle states."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class FundingType(str, Enum):
    """Who pays the seller early once an offer is accepted."""
    SELF_FUNDED = "self_funded"
    FINANCIER_FUNDED = "financier_funded"


@dataclass(frozen=True)
class DiscountOffer:
    """A buyer's proposal to pay an invoice early at a reduced amount."""
    id: UUID
    invoice_id: UUID
    buyer_id: UUID
    discount_percentage: Decimal
    discount_amount: Decimal
    net_amount: Decimal
    early_payment_date: date
    days_early: int
    expires_at: datetime
    offered_at: datetime
    status: OfferStatus
    funding_type: FundingType | None = None
    rejection_reason: str | None = None
    responded_at: datetime | None = None
    funding_selected_at: datetime | None = None
    closed_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == OfferStatus.PENDING
