"""
Tests for the workflow tables and the invoice state machine.

The state machine is exercised against transient InvoiceModel rows; no
session is involved, so these run without touching the database.
"""

from uuid import uuid4

import pytest

from financing_kernel.domain.actor import Actor
from financing_kernel.domain.workflow import Guard, Transition, Workflow
from financing_kernel.exceptions import InvalidTransitionError
from financing_modules import _transitions
from financing_modules.bidding.workflows import BID_WORKFLOW
from financing_modules.discounts.workflows import OFFER_WORKFLOW
from financing_modules.disbursements.workflows import (
    DISBURSEMENT_WORKFLOW,
    REPAYMENT_WORKFLOW,
)
from financing_modules.invoices.models import InvoiceStatus, ProductType
from financing_modules.invoices.orm import InvoiceModel
from financing_modules.invoices.state_machine import InvoiceStateMachine, TransitionContext
from financing_modules.invoices.workflows import INVOICE_WORKFLOW


def _invoice(status: InvoiceStatus, product_type: ProductType = ProductType.DYNAMIC_DISCOUNTING):
    return InvoiceModel(
        id=uuid4(),
        status=status.value,
        product_type=product_type.value,
        version=1,
    )


@pytest.fixture
def machine(deterministic_clock):
    return InvoiceStateMachine(deterministic_clock)


@pytest.fixture
def actor():
    return Actor.admin(uuid4())


class TestWorkflowDefinition:
    def test_unknown_initial_state_rejected(self):
        with pytest.raises(ValueError):
            Workflow(name="w", description="", initial_state="x", states=("a",), transitions=())

    def test_transition_to_unknown_state_rejected(self):
        with pytest.raises(ValueError):
            Workflow(
                name="w", description="", initial_state="a", states=("a",),
                transitions=(Transition("a", "b", action="go"),),
            )

    def test_terminal_state_cannot_have_outgoing(self):
        with pytest.raises(ValueError):
            Workflow(
                name="w", description="", initial_state="a", states=("a", "b"),
                transitions=(Transition("b", "a", action="back"),),
                terminal_states=("b",),
            )

    def test_candidates_keep_declaration_order(self):
        g1, g2 = Guard("first", ""), Guard("second", "")
        wf = Workflow(
            name="w", description="", initial_state="a", states=("a", "b", "c"),
            transitions=(
                Transition("a", "b", action="go", guard=g1),
                Transition("a", "c", action="go", guard=g2),
            ),
        )
        assert [t.to_state for t in wf.candidates("a", "go")] == ["b", "c"]
        assert wf.actions_from("a") == ("go",)

    @pytest.mark.parametrize(
        "workflow",
        [INVOICE_WORKFLOW, OFFER_WORKFLOW, BID_WORKFLOW, DISBURSEMENT_WORKFLOW, REPAYMENT_WORKFLOW],
    )
    def test_module_workflows_are_well_formed(self, workflow):
        assert workflow.initial_state in workflow.states
        for state in workflow.terminal_states:
            assert workflow.actions_from(state) == ()

    def test_invoice_terminal_states(self):
        assert set(INVOICE_WORKFLOW.terminal_states) == {
            "settled", "rejected", "cancelled", "expired",
        }

    def test_only_disburse_moves_money_on_invoice(self):
        money = {t.action for t in INVOICE_WORKFLOW.transitions if t.moves_money}
        assert money == {"disburse"}


class TestInvoiceStateMachine:
    def test_submit_with_pending_offer(self, machine, actor):
        invoice = _invoice(InvoiceStatus.DRAFT)
        machine.transition(invoice, "submit", actor, TransitionContext(has_pending_offer=True))
        assert invoice.status == InvoiceStatus.PENDING_ACCEPTANCE.value
        assert invoice.version == 2

    def test_submit_without_offer_refused(self, machine, actor):
        invoice = _invoice(InvoiceStatus.DRAFT)
        with pytest.raises(InvalidTransitionError) as exc_info:
            machine.transition(invoice, "submit", actor)
        assert "pending_offer_exists" in exc_info.value.reason
        assert invoice.status == InvoiceStatus.DRAFT.value
        assert invoice.version == 1

    def test_gst_backed_submit_opens_bidding(self, machine, actor, deterministic_clock):
        invoice = _invoice(InvoiceStatus.DRAFT, ProductType.GST_BACKED)
        machine.transition(invoice, "submit", actor)
        assert invoice.status == InvoiceStatus.OPEN_FOR_BIDDING.value
        assert invoice.bidding_opened_at == deterministic_clock.now()

    @pytest.mark.parametrize(
        "policy,expected",
        [("expire", InvoiceStatus.EXPIRED), ("revert_to_draft", InvoiceStatus.DRAFT)],
    )
    def test_offer_expiry_policy(self, machine, actor, policy, expected):
        invoice = _invoice(InvoiceStatus.PENDING_ACCEPTANCE)
        machine.transition(
            invoice, "expire_offer", actor, TransitionContext(expired_offer_policy=policy),
        )
        assert invoice.status == expected.value

    @pytest.mark.parametrize(
        "funding,expected",
        [("self_funded", InvoiceStatus.ACCEPTED), ("financier_funded", InvoiceStatus.BID_SELECTED)],
    )
    def test_failed_disbursement_rolls_back_by_funding(self, machine, actor, funding, expected):
        invoice = _invoice(InvoiceStatus.DISBURSED)
        machine.transition(
            invoice, "fail_disbursement", actor, TransitionContext(funding_type=funding),
        )
        assert invoice.status == expected.value

    def test_cancel_during_bidding_follows_policy(self, machine, actor):
        invoice = _invoice(InvoiceStatus.OPEN_FOR_BIDDING)
        assert not machine.can(
            invoice, "cancel", TransitionContext(allow_cancel_during_bidding=False),
        )
        assert machine.can(invoice, "cancel", TransitionContext(allow_cancel_during_bidding=True))

    def test_settle_requires_payment(self, machine, actor):
        invoice = _invoice(InvoiceStatus.DISBURSED)
        assert not machine.can(invoice, "settle")
        machine.transition(invoice, "settle", actor, TransitionContext(payment_settled=True))
        assert invoice.status == InvoiceStatus.SETTLED.value

    @pytest.mark.parametrize(
        "status",
        [InvoiceStatus.SETTLED, InvoiceStatus.REJECTED, InvoiceStatus.CANCELLED, InvoiceStatus.EXPIRED],
    )
    def test_terminal_invoice_refuses_everything(self, machine, status):
        invoice = _invoice(status)
        for action in ("submit", "cancel", "accept_offer", "disburse", "settle"):
            assert not machine.can(invoice, action)

    def test_refusal_is_logged(self, machine, actor, captured_logs):
        invoice = _invoice(InvoiceStatus.SETTLED)
        with pytest.raises(InvalidTransitionError):
            machine.transition(invoice, "cancel", actor)
        refused = [r for r in captured_logs() if r["message"] == "invoice_transition_refused"]
        assert refused and refused[0]["reason"] == "no_transition"

    def test_touch_bumps_version_and_activity(self, machine, actor, deterministic_clock):
        invoice = _invoice(InvoiceStatus.DRAFT)
        deterministic_clock.advance(60)
        machine.touch(invoice, actor)
        assert invoice.version == 2
        assert invoice.last_activity_at == deterministic_clock.now()
        assert invoice.updated_by_id == actor.actor_id


class TestChildTransitions:
    class _Row:
        def __init__(self, status):
            self.id = uuid4()
            self.status = status

    def test_advance_applies_target(self):
        row = self._Row("pending")
        assert _transitions.advance(OFFER_WORKFLOW, "DiscountOffer", row, "accept") == "accepted"

    def test_unknown_action_raises(self):
        row = self._Row("expired")
        with pytest.raises(InvalidTransitionError) as exc_info:
            _transitions.advance(OFFER_WORKFLOW, "DiscountOffer", row, "accept")
        assert exc_info.value.entity_type == "DiscountOffer"
        assert row.status == "expired"

    def test_overdue_repayment_can_still_be_paid(self):
        row = self._Row("overdue")
        assert _transitions.advance(REPAYMENT_WORKFLOW, "Repayment", row, "pay") == "paid"
