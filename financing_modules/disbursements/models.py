"""
Disbursement and Repayment Domain Models (``financing_modules.disbursements.models``).

Frozen value objects for the money legs of a financed invoice: the early
payment to the seller and, when a financier funded it, the repayment of the
invoice's face value on its due date.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class PayerType(str, Enum):
    """Party that moves the money on a disbursement or repayment."""
    BUYER = "buyer"
    FINANCIER = "financier"
    SELLER = "seller"


class DisbursementStatus(str, Enum):
    """Disbursement lifecycle states."""
    PENDING = "pending"
    DISBURSED = "disbursed"
    COMPLETED = "completed"
    FAILED = "failed"


class RepaymentStatus(str, Enum):
    """Repayment lifecycle states."""
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Disbursement:
    """An early payment to the seller."""
    id: UUID
    invoice_id: UUID
    payer_type: PayerType
    payer_id: UUID
    recipient_id: UUID
    amount: Decimal
    currency: str
    status: DisbursementStatus
    offer_id: UUID | None = None
    bid_id: UUID | None = None
    bank_account_id: str | None = None
    transaction_ref: str | None = None
    disbursed_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    failure_reason: str | None = None

    @property
    def is_live(self) -> bool:
        return self.status != DisbursementStatus.FAILED


@dataclass(frozen=True)
class Repayment:
    """Face-value repayment owed to the financier who funded a disbursement."""
    id: UUID
    invoice_id: UUID
    disbursement_id: UUID
    payer_type: PayerType
    payer_id: UUID
    payee_id: UUID
    amount: Decimal
    currency: str
    due_date: date
    status: RepaymentStatus
    paid_at: datetime | None = None
    transaction_ref: str | None = None

    @property
    def is_outstanding(self) -> bool:
        return self.status in (RepaymentStatus.PENDING, RepaymentStatus.OVERDUE)
