"""
Discount Offer ORM Model (``financing_modules.discounts.orm``).

Many offers per invoice are retained as history; the negotiator keeps at
most one PENDING at a time under the invoice lock.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from financing_kernel.db.base import TrackedBase
from financing_kernel.db.types import round_money, round_rate


class DiscountOfferModel(TrackedBase):
    """
    ORM model for discount offers.

    Guarantees:
        - invoice_id FK to invoices.id, indexed.
        - discount_amount + net_amount equals the invoice total at creation.
    """

    __tablename__ = "discount_offers"

    __table_args__ = (
        Index("idx_discount_offers_invoice_id", "invoice_id"),
        Index("idx_discount_offers_status_expires", "status", "expires_at"),
    )

    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("invoices.id"), nullable=False)
    buyer_id: Mapped[UUID] = mapped_column(nullable=False)
    discount_percentage: Mapped[Decimal] = mapped_column(nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(nullable=False)
    early_payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    days_early: Mapped[int] = mapped_column(nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    offered_at: Mapped[datetime] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="pending")
    funding_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    responded_at: Mapped[datetime | None] = mapped_column(nullable=True)
    funding_selected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self, decimal_places: int = 2):
        """Convert ORM model to frozen dataclass."""
        from financing_modules.discounts.models import DiscountOffer, FundingType, OfferStatus

        return DiscountOffer(
            id=self.id,
            invoice_id=self.invoice_id,
            buyer_id=self.buyer_id,
            discount_percentage=round_rate(self.discount_percentage),
            discount_amount=round_money(self.discount_amount, decimal_places),
            net_amount=round_money(self.net_amount, decimal_places),
            early_payment_date=self.early_payment_date,
            days_early=self.days_early,
            expires_at=self.expires_at,
            offered_at=self.offered_at,
            status=OfferStatus(self.status),
            funding_type=FundingType(self.funding_type) if self.funding_type else None,
            rejection_reason=self.rejection_reason,
            responded_at=self.responded_at,
            funding_selected_at=self.funding_selected_at,
            closed_at=self.closed_at,
        )

    def __repr__(self) -> str:
        return f"<DiscountOfferModel {self.id} {self.discount_percentage}% [{self.status}]>"
