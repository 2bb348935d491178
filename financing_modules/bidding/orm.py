"""
Bid ORM Model (``financing_modules.bidding.orm``).
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from financing_kernel.db.base import TrackedBase
from financing_kernel.db.types import round_money, round_rate


class BidModel(TrackedBase):
    """
    ORM model for financier bids.

    Guarantees:
        - invoice_id FK to invoices.id, indexed.
        - At most one row per invoice reaches ACCEPTED; enforced under the
          invoice lock by the marketplace.
    """

    __tablename__ = "bids"

    __table_args__ = (
        Index("idx_bids_invoice_id", "invoice_id"),
        Index("idx_bids_financier_id", "financier_id"),
        Index("idx_bids_status_valid_until", "status", "valid_until"),
    )

    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("invoices.id"), nullable=False)
    financier_id: Mapped[UUID] = mapped_column(nullable=False)
    discount_rate: Mapped[Decimal] = mapped_column(nullable=False)
    processing_fee_rate: Mapped[Decimal] = mapped_column(nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(nullable=False)
    processing_fee_amount: Mapped[Decimal] = mapped_column(nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(nullable=False)
    valid_until: Mapped[datetime] = mapped_column(nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="active")
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self, decimal_places: int = 2):
        """Convert ORM model to frozen dataclass."""
        from financing_modules.bidding.models import Bid, BidStatus

        return Bid(
            id=self.id,
            invoice_id=self.invoice_id,
            financier_id=self.financier_id,
            discount_rate=round_rate(self.discount_rate),
            processing_fee_rate=round_rate(self.processing_fee_rate),
            discount_amount=round_money(self.discount_amount, decimal_places),
            processing_fee_amount=round_money(self.processing_fee_amount, decimal_places),
            net_amount=round_money(self.net_amount, decimal_places),
            valid_until=self.valid_until,
            submitted_at=self.submitted_at,
            status=BidStatus(self.status),
            closed_at=self.closed_at,
        )

    def __repr__(self) -> str:
        return f"<BidModel {self.id} {self.discount_rate}%+{self.processing_fee_rate}% [{self.status}]>"
