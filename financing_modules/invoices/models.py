"""
Invoice Domain Models (``financing_modules.invoices.models``).

Responsibility
--------------
Frozen dataclass value objects for the invoice aggregate root and the
closed enums describing its lifecycle and product type.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* All monetary fields use ``Decimal`` -- NEVER ``float``.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class InvoiceStatus(str, Enum):
    """Invoice lifecycle states."""
    DRAFT = "draft"
    PENDING_ACCEPTANCE = "pending_acceptance"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    OPEN_FOR_BIDDING = "open_for_bidding"
    BID_SELECTED = "bid_selected"
    DISBURSED = "disbursed"
    SETTLED = "settled"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class ProductType(str, Enum):
    """Financing product chosen for an invoice."""
    DYNAMIC_DISCOUNTING = "dynamic_discounting"  # buyer pays early from own funds
    DD_EARLY_PAYMENT = "dd_early_payment"  # financier pays early, buyer repays
    GST_BACKED = "gst_backed"  # seller-led, straight to bidding, seller repays


TERMINAL_STATUSES = frozenset({
    InvoiceStatus.SETTLED,
    InvoiceStatus.REJECTED,
    InvoiceStatus.CANCELLED,
    InvoiceStatus.EXPIRED,
})


@dataclass(frozen=True)
class Invoice:
    """An invoice offered for early payment."""
    id: UUID
    invoice_number: str
    issue_date: date
    due_date: date
    total_amount: Decimal
    subtotal: Decimal | None
    tax_amount: Decimal | None
    currency: str
    seller_id: UUID
    buyer_id: UUID
    product_type: ProductType
    status: InvoiceStatus
    version: int
    created_by_id: UUID
    description: str | None = None
    bidding_opened_at: datetime | None = None
    last_activity_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
