"""
Disbursement and Repayment ORM Models (``financing_modules.disbursements.orm``).
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from financing_kernel.db.base import TrackedBase
from financing_kernel.db.types import currency_decimal_places, round_money


class DisbursementModel(TrackedBase):
    """
    ORM model for early payments to the seller.

    Guarantees:
        - At most one non-FAILED row per invoice; checked under the invoice
          lock before insert.
        - offer_id is set for buyer-funded rows, bid_id for financier-funded.
    """

    __tablename__ = "disbursements"

    __table_args__ = (
        Index("idx_disbursements_invoice_id", "invoice_id"),
        Index("idx_disbursements_status", "status"),
    )

    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("invoices.id"), nullable=False)
    offer_id: Mapped[UUID | None] = mapped_column(ForeignKey("discount_offers.id"), nullable=True)
    bid_id: Mapped[UUID | None] = mapped_column(ForeignKey("bids.id"), nullable=True)
    payer_type: Mapped[str] = mapped_column(String(50), nullable=False)
    payer_id: Mapped[UUID] = mapped_column(nullable=False)
    recipient_id: Mapped[UUID] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    bank_account_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="pending")
    transaction_ref: Mapped[str | None] = mapped_column(String(200), nullable=True)
    disbursed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from financing_modules.disbursements.models import (
            Disbursement,
            DisbursementStatus,
            PayerType,
        )

        return Disbursement(
            id=self.id,
            invoice_id=self.invoice_id,
            payer_type=PayerType(self.payer_type),
            payer_id=self.payer_id,
            recipient_id=self.recipient_id,
            amount=round_money(self.amount, currency_decimal_places(self.currency)),
            currency=self.currency,
            status=DisbursementStatus(self.status),
            offer_id=self.offer_id,
            bid_id=self.bid_id,
            bank_account_id=self.bank_account_id,
            transaction_ref=self.transaction_ref,
            disbursed_at=self.disbursed_at,
            completed_at=self.completed_at,
            failed_at=self.failed_at,
            failure_reason=self.failure_reason,
        )

    def __repr__(self) -> str:
        return f"<DisbursementModel {self.id} {self.amount} {self.currency} [{self.status}]>"


class RepaymentModel(TrackedBase):
    """
    ORM model for financier repayments.

    Guarantees:
        - One live (non-CANCELLED) row per disbursement.
        - amount is the invoice's face value; due_date its due date.
    """

    __tablename__ = "repayments"

    __table_args__ = (
        Index("idx_repayments_invoice_id", "invoice_id"),
        Index("idx_repayments_status_due", "status", "due_date"),
    )

    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("invoices.id"), nullable=False)
    disbursement_id: Mapped[UUID] = mapped_column(ForeignKey("disbursements.id"), nullable=False)
    payer_type: Mapped[str] = mapped_column(String(50), nullable=False)
    payer_id: Mapped[UUID] = mapped_column(nullable=False)
    payee_id: Mapped[UUID] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="pending")
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    transaction_ref: Mapped[str | None] = mapped_column(String(200), nullable=True)

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from financing_modules.disbursements.models import PayerType, Repayment, RepaymentStatus

        return Repayment(
            id=self.id,
            invoice_id=self.invoice_id,
            disbursement_id=self.disbursement_id,
            payer_type=PayerType(self.payer_type),
            payer_id=self.payer_id,
            payee_id=self.payee_id,
            amount=round_money(self.amount, currency_decimal_places(self.currency)),
            currency=self.currency,
            due_date=self.due_date,
            status=RepaymentStatus(self.status),
            paid_at=self.paid_at,
            transaction_ref=self.transaction_ref,
        )

    def __repr__(self) -> str:
        return f"<RepaymentModel {self.id} {self.amount} due {self.due_date} [{self.status}]>"
