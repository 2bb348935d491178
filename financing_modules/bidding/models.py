"""
Bid Domain Models (``financing_modules.bidding.models``).

Frozen value objects for financier bids on an invoice open for bidding.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class BidStatus(str, Enum):
    """Bid lifecycle states."""
    ACTIVE = "active"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"
    EXPIRED = "expired"


@dataclass(frozen=True)
class Bid:
    """A financier's quote to pay the seller early."""
    id: UUID
    invoice_id: UUID
    financier_id: UUID
    discount_rate: Decimal
    processing_fee_rate: Decimal
    discount_amount: Decimal
    processing_fee_amount: Decimal
    net_amount: Decimal
    valid_until: datetime
    submitted_at: datetime
    status: BidStatus
    closed_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == BidStatus.ACTIVE

    @property
    def financier_income(self) -> Decimal:
        return self.discount_amount + self.processing_fee_amount
