"""
financing_modules.invoices.state_machine -- guarded invoice transitions.

Responsibility:
    Owns the canonical ``status`` of an invoice.  Every status change goes
    through ``InvoiceStateMachine.transition()``, which looks the action up
    in INVOICE_WORKFLOW, evaluates the named guards against a
    ``TransitionContext`` supplied by the caller, applies the target state
    and bumps the optimistic-lock version.

Architecture position:
    Modules layer.  Pure decision logic over an ORM row; no queries.  The
    calling service gathers whatever facts the guards need (pending offer,
    funding type, policy) and passes them in.

Invariants enforced:
    - No status assignment happens anywhere else.
    - A refused transition raises before any attribute is written.
    - Every accepted transition, and every ``touch()``, increments
      ``invoice.version`` so concurrent writers on the same invoice conflict.

Failure modes:
    - InvalidTransitionError when no transition exists for the action from
      the current state, or when every candidate's guard fails.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

from financing_kernel.domain.actor import Actor
from financing_kernel.domain.clock import Clock
from financing_kernel.domain.workflow import Transition
from financing_kernel.exceptions import InvalidTransitionError
from financing_kernel.logging_config import get_logger
from financing_modules.invoices.models import InvoiceStatus, ProductType
from financing_modules.invoices.orm import InvoiceModel
from financing_modules.invoices.workflows import INVOICE_WORKFLOW

logger = get_logger("modules.invoices.state_machine")


@dataclass(frozen=True)
class TransitionContext:
    """Facts the guards need that do not live on the invoice row."""

    has_pending_offer: bool = False
    funding_type: str | None = None
    expired_offer_policy: str = "expire"
    bidding_window_elapsed: bool = False
    payment_settled: bool = False
    allow_cancel_during_bidding: bool = True


_GuardFn = Callable[[InvoiceModel, TransitionContext], bool]

_GUARD_EVALUATORS: dict[str, _GuardFn] = {
    "pending_offer_exists": lambda inv, ctx: ctx.has_pending_offer,
    "gst_backed_product": lambda inv, ctx: inv.product_type == ProductType.GST_BACKED.value,
    "expiry_policy_expire": lambda inv, ctx: ctx.expired_offer_policy == "expire",
    "expiry_policy_revert": lambda inv, ctx: ctx.expired_offer_policy == "revert_to_draft",
    "financier_funded": lambda inv, ctx: ctx.funding_type == "financier_funded",
    "self_funded": lambda inv, ctx: ctx.funding_type == "self_funded",
    "bidding_window_elapsed": lambda inv, ctx: ctx.bidding_window_elapsed,
    "payment_settled": lambda inv, ctx: ctx.payment_settled,
    "cancel_during_bidding_allowed": lambda inv, ctx: ctx.allow_cancel_during_bidding,
}


class InvoiceStateMachine:
    """Validates and applies invoice transitions."""

    def __init__(self, clock: Clock):
        self._clock = clock

    def resolve(
        self,
        invoice: InvoiceModel,
        action: str,
        context: TransitionContext | None = None,
    ) -> Transition:
        """Pick the transition ``action`` would take, without applying it.

        Raises:
            InvalidTransitionError: if the action is not legal right now.
        """
        ctx = context or TransitionContext()
        candidates = INVOICE_WORKFLOW.candidates(invoice.status, action)
        if not candidates:
            raise InvalidTransitionError(
                "Invoice", invoice.id, invoice.status, action,
            )
        failed: list[str] = []
        for candidate in candidates:
            if candidate.guard is None:
                return candidate
            if _GUARD_EVALUATORS[candidate.guard.name](invoice, ctx):
                return candidate
            failed.append(candidate.guard.name)
        raise InvalidTransitionError(
            "Invoice", invoice.id, invoice.status, action,
            reason=f"guard failed: {', '.join(failed)}",
        )

    def can(
        self,
        invoice: InvoiceModel,
        action: str,
        context: TransitionContext | None = None,
    ) -> bool:
        try:
            self.resolve(invoice, action, context)
        except InvalidTransitionError:
            return False
        return True

    def transition(
        self,
        invoice: InvoiceModel,
        action: str,
        actor: Actor,
        context: TransitionContext | None = None,
    ) -> Transition:
        """Apply ``action`` to the invoice or raise without writing anything."""
        t0 = time.monotonic()
        from_state = invoice.status
        try:
            chosen = self.resolve(invoice, action, context)
        except InvalidTransitionError as exc:
            logger.info(
                "invoice_transition_refused",
                extra={
                    "invoice_id": str(invoice.id),
                    "action": action,
                    "from_state": from_state,
                    "reason": exc.reason or "no_transition",
                },
            )
            raise

        invoice.status = chosen.to_state
        self.touch(invoice, actor)
        if chosen.to_state == InvoiceStatus.OPEN_FOR_BIDDING.value:
            invoice.bidding_opened_at = self._clock.now()

        logger.info(
            "invoice_transition",
            extra={
                "workflow": INVOICE_WORKFLOW.name,
                "invoice_id": str(invoice.id),
                "action": action,
                "from_state": from_state,
                "to_state": chosen.to_state,
                "guard": chosen.guard.name if chosen.guard else None,
                "moves_money": chosen.moves_money,
                "version": invoice.version,
                "duration_ms": round((time.monotonic() - t0) * 1000, 3),
            },
        )
        return chosen

    def touch(self, invoice: InvoiceModel, actor: Actor) -> None:
        """Record activity on the invoice and bump its version."""
        invoice.version = (invoice.version or 0) + 1
        invoice.last_activity_at = self._clock.now()
        invoice.updated_by_id = actor.actor_id
