"""
Invoice Service -- registration, lookup and lifecycle transitions.

Thin service over InvoiceModel:
1. Registers invoices in DRAFT after validating amounts, dates and parties
2. Loads the invoice row FOR UPDATE at the start of every unit of work
3. Applies submit / cancel through InvoiceStateMachine

Flushes only.  The workflow orchestrator owns the transaction boundary.

Usage:
    service = InvoiceService(session, clock, config)
    invoice = service.create_invoice(
        seller, invoice_number="INV-001", issue_date=date(2024, 1, 1),
        due_date=date(2024, 3, 31), total_amount=Decimal("289100.00"),
        seller_id=seller.actor_id, buyer_id=buyer_id,
        product_type=ProductType.DYNAMIC_DISCOUNTING,
    )
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from financing_config.schema import FinancingConfig
from financing_engines.discounting import validate_total
from financing_kernel.db.types import currency_decimal_places, to_decimal, validate_currency
from financing_kernel.domain.actor import Actor, ActorRole
from financing_kernel.domain.clock import Clock
from financing_kernel.exceptions import (
    DuplicateInvoiceError,
    InvalidActorError,
    InvalidTransitionError,
    InvoiceNotFoundError,
    ValidationError,
)
from financing_kernel.logging_config import get_logger
from financing_kernel.services.base import BaseService
from financing_modules.invoices.models import InvoiceStatus, ProductType
from financing_modules.invoices.orm import InvoiceModel
from financing_modules.invoices.permissions import require_party
from financing_modules.invoices.state_machine import InvoiceStateMachine, TransitionContext

logger = get_logger("modules.invoices.service")

_UPDATABLE_FIELDS = frozenset({
    "invoice_number",
    "issue_date",
    "due_date",
    "total_amount",
    "subtotal",
    "tax_amount",
    "description",
})


class InvoiceService(BaseService[InvoiceModel]):
    """Registers invoices and applies invoice-level transitions."""

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

    def load(self, invoice_id: UUID, for_update: bool = False) -> InvoiceModel:
        """Fetch an invoice, optionally locking its row for this unit of work.

        Raises:
            InvoiceNotFoundError: if no invoice has this id.
        """
        stmt = select(InvoiceModel).where(InvoiceModel.id == invoice_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        invoice = self.session.execute(stmt).scalar_one_or_none()
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id)
        return invoice

    def list_invoices(
        self,
        actor: Actor,
        status: InvoiceStatus | None = None,
        product_type: ProductType | None = None,
    ) -> list[InvoiceModel]:
        """Invoices visible to the actor, newest issue date first."""
        stmt = select(InvoiceModel)
        if actor.role == ActorRole.BUYER:
            stmt = stmt.where(InvoiceModel.buyer_id == actor.actor_id)
        elif actor.role == ActorRole.SELLER:
            stmt = stmt.where(InvoiceModel.seller_id == actor.actor_id)
        elif actor.role == ActorRole.FINANCIER:
            from financing_modules.bidding.orm import BidModel

            bid_on = select(BidModel.invoice_id).where(
                BidModel.financier_id == actor.actor_id
            )
            stmt = stmt.where(
                (InvoiceModel.status == InvoiceStatus.OPEN_FOR_BIDDING.value)
                | InvoiceModel.id.in_(bid_on)
            )
        if status is not None:
            stmt = stmt.where(InvoiceModel.status == status.value)
        if product_type is not None:
            stmt = stmt.where(InvoiceModel.product_type == product_type.value)
        stmt = stmt.order_by(InvoiceModel.issue_date.desc(), InvoiceModel.invoice_number)
        return list(self.session.execute(stmt).scalars())

    # =========================================================================
    # Registration
    # =========================================================================

    def create_invoice(
        self,
        actor: Actor,
        *,
        invoice_number: str,
        issue_date: date,
        due_date: date,
        total_amount: Decimal | int | str,
        seller_id: UUID,
        buyer_id: UUID,
        product_type: ProductType,
        currency: str | None = None,
        subtotal: Decimal | int | str | None = None,
        tax_amount: Decimal | int | str | None = None,
        description: str | None = None,
    ) -> InvoiceModel:
        """Register an invoice in DRAFT.

        Raises:
            ValidationError: bad number, dates, amounts or currency.
            InvalidActorError: caller is neither the named buyer nor seller.
            DuplicateInvoiceError: seller already has this invoice number.
        """
        if not actor.is_privileged:
            if not (
                (actor.role == ActorRole.SELLER and actor.actor_id == seller_id)
                or (actor.role == ActorRole.BUYER and actor.actor_id == buyer_id)
            ):
                raise InvalidActorError(
                    actor.actor_id, "create_invoice", "caller is not a party to the invoice",
                )
        if seller_id == buyer_id:
            raise ValidationError("buyer_id", "buyer and seller must differ")

        currency = validate_currency(currency or self.config.default_currency)
        fields = self._validated_fields(
            {
                "invoice_number": invoice_number,
                "issue_date": issue_date,
                "due_date": due_date,
                "total_amount": total_amount,
                "subtotal": subtotal,
                "tax_amount": tax_amount,
                "description": description,
            },
            currency,
        )
        self._ensure_unique(fields["invoice_number"], seller_id)

        invoice = InvoiceModel(
            id=uuid4(),
            seller_id=seller_id,
            buyer_id=buyer_id,
            product_type=ProductType(product_type).value,
            currency=currency,
            status=InvoiceStatus.DRAFT.value,
            version=1,
            last_activity_at=self.clock.now(),
            created_by_id=actor.actor_id,
            **fields,
        )
        self.session.add(invoice)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise DuplicateInvoiceError(fields["invoice_number"], seller_id) from exc

        logger.info(
            "invoice_created",
            extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "product_type": invoice.product_type,
                "total_amount": str(invoice.total_amount),
                "currency": currency,
            },
        )
        return invoice

    def update_draft(self, invoice: InvoiceModel, actor: Actor, **changes: Any) -> InvoiceModel:
        """Edit a DRAFT invoice's header fields.

        Raises:
            InvalidTransitionError: invoice is no longer DRAFT.
            ValidationError: unknown field or invalid values.
        """
        require_party(invoice, actor, "update_draft")
        if invoice.status != InvoiceStatus.DRAFT.value:
            raise InvalidTransitionError(
                "Invoice", invoice.id, invoice.status, "update_draft",
                reason="only draft invoices can be edited",
            )
        unknown = sorted(set(changes) - _UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(unknown[0], "field cannot be updated")

        merged = {name: getattr(invoice, name) for name in _UPDATABLE_FIELDS}
        merged.update(changes)
        fields = self._validated_fields(merged, invoice.currency)
        if fields["invoice_number"] != invoice.invoice_number:
            self._ensure_unique(fields["invoice_number"], invoice.seller_id)

        for name, value in fields.items():
            setattr(invoice, name, value)
        self.state_machine.touch(invoice, actor)
        self.flush("Invoice", invoice.id)

        logger.info(
            "invoice_updated",
            extra={"invoice_id": str(invoice.id), "fields": sorted(changes)},
        )
        return invoice

    # =========================================================================
    # Transitions
    # =========================================================================

    def submit(self, invoice: InvoiceModel, actor: Actor, has_pending_offer: bool) -> InvoiceModel:
        """DRAFT -> PENDING_ACCEPTANCE (offer pending) or OPEN_FOR_BIDDING (GST-backed)."""
        require_party(invoice, actor, "submit")
        self.state_machine.transition(
            invoice, "submit", actor,
            TransitionContext(has_pending_offer=has_pending_offer),
        )
        self.flush("Invoice", invoice.id)
        return invoice

    def cancel(self, invoice: InvoiceModel, actor: Actor) -> InvoiceModel:
        """Move the invoice to CANCELLED.  Offer and bid clean-up is the caller's."""
        require_party(invoice, actor, "cancel")
        self.state_machine.transition(
            invoice, "cancel", actor,
            TransitionContext(
                allow_cancel_during_bidding=self.config.allow_cancel_during_bidding,
            ),
        )
        self.flush("Invoice", invoice.id)
        return invoice

    # =========================================================================
    # Helpers
    # =========================================================================

    def _validated_fields(self, raw: dict[str, Any], currency: str) -> dict[str, Any]:
        places = currency_decimal_places(currency)
        number = (raw["invoice_number"] or "").strip()
        if not number:
            raise ValidationError("invoice_number", "cannot be empty")
        issue_date, due_date = raw["issue_date"], raw["due_date"]
        if due_date <= issue_date:
            raise ValidationError("due_date", f"{due_date} must be after issue date {issue_date}")

        total = validate_total(to_decimal(raw["total_amount"], "total_amount"), places)
        subtotal = to_decimal(raw["subtotal"], "subtotal") if raw["subtotal"] is not None else None
        tax = to_decimal(raw["tax_amount"], "tax_amount") if raw["tax_amount"] is not None else None
        if subtotal is not None and subtotal < 0:
            raise ValidationError("subtotal", "cannot be negative")
        if tax is not None and tax < 0:
            raise ValidationError("tax_amount", "cannot be negative")
        if subtotal is not None and tax is not None:
            if abs(subtotal + tax - total) >= self.config.invoice_total_tolerance:
                raise ValidationError(
                    "total_amount",
                    f"{total} does not match subtotal {subtotal} plus tax {tax}",
                )
        return {
            "invoice_number": number,
            "issue_date": issue_date,
            "due_date": due_date,
            "total_amount": total,
            "subtotal": subtotal,
            "tax_amount": tax,
            "description": raw["description"],
        }

    def _ensure_unique(self, invoice_number: str, seller_id: UUID) -> None:
        existing = self.session.execute(
            select(InvoiceModel.id).where(
                InvoiceModel.invoice_number == invoice_number,
                InvoiceModel.seller_id == seller_id,
            )
        ).first()
        if existing is not None:
            raise DuplicateInvoiceError(invoice_number, seller_id)
