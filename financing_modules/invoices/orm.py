"""
Invoice ORM Model (``financing_modules.invoices.orm``).

Responsibility
--------------
SQLAlchemy persistence for the invoice aggregate root.  The ``version``
column is the optimistic lock every financing operation bumps, so two
units of work on one invoice can never both commit.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``financing_kernel.db``.
Child tables (offers, bids, disbursements, repayments) reference
``invoices.id`` from their own modules.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from financing_kernel.db.base import TrackedBase
from financing_kernel.db.types import currency_decimal_places, round_money


class InvoiceModel(TrackedBase):
    """
    ORM model for invoices.

    Guarantees:
        - (invoice_number, seller_id) is unique.
        - status stored as the InvoiceStatus value string.
        - version is checked on every UPDATE (version_id_col) and bumped
          explicitly by the state machine.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint(
            "invoice_number", "seller_id", name="uq_invoices_number_seller"
        ),
        Index("idx_invoices_status", "status"),
        Index("idx_invoices_seller_id", "seller_id"),
        Index("idx_invoices_buyer_id", "buyer_id"),
        Index("idx_invoices_due_date", "due_date"),
    )

    invoice_number: Mapped[str] = mapped_column(String(100), nullable=False)
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    subtotal: Mapped[Decimal | None] = mapped_column(nullable=True)
    tax_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    seller_id: Mapped[UUID] = mapped_column(nullable=False)
    buyer_id: Mapped[UUID] = mapped_column(nullable=False)
    product_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="draft")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    bidding_opened_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_activity_at: Mapped[datetime | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    __mapper_args__ = {
        "version_id_col": version,
        "version_id_generator": False,
    }

    @property
    def decimal_places(self) -> int:
        return currency_decimal_places(self.currency)

    def amount_text(self, amount: Decimal) -> str:
        """An amount at this invoice's currency precision, as carried in event payloads."""
        return str(round_money(amount, self.decimal_places))

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from financing_modules.invoices.models import Invoice, InvoiceStatus, ProductType

        places = self.decimal_places
        return Invoice(
            id=self.id,
            invoice_number=self.invoice_number,
            issue_date=self.issue_date,
            due_date=self.due_date,
            total_amount=round_money(self.total_amount, places),
            subtotal=round_money(self.subtotal, places) if self.subtotal is not None else None,
            tax_amount=round_money(self.tax_amount, places) if self.tax_amount is not None else None,
            currency=self.currency,
            seller_id=self.seller_id,
            buyer_id=self.buyer_id,
            product_type=ProductType(self.product_type),
            status=InvoiceStatus(self.status),
            version=self.version,
            created_by_id=self.created_by_id,
            description=self.description,
            bidding_opened_at=self.bidding_opened_at,
            last_activity_at=self.last_activity_at,
        )

    def __repr__(self) -> str:
        return f"<InvoiceModel {self.invoice_number} [{self.status}] v{self.version}>"
