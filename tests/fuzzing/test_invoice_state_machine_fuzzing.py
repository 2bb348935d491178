"""
Hypothesis-driven action sequences against InvoiceStateMachine.

Random actions with random guard facts are fired at a transient invoice.
Whatever the sequence, the machine must only ever land in declared states,
never leave a terminal state, and bump the version exactly once per applied
transition.
"""

from uuid import uuid4

from hypothesis import given, settings
from hypothesis import strategies as st

from financing_kernel.domain.actor import Actor
from financing_kernel.domain.clock import DeterministicClock
from financing_kernel.exceptions import InvalidTransitionError
from financing_modules.invoices.models import InvoiceStatus, ProductType
from financing_modules.invoices.orm import InvoiceModel
from financing_modules.invoices.state_machine import InvoiceStateMachine, TransitionContext
from financing_modules.invoices.workflows import INVOICE_WORKFLOW

ACTIONS = sorted({t.action for t in INVOICE_WORKFLOW.transitions})

contexts = st.builds(
    TransitionContext,
    has_pending_offer=st.booleans(),
    funding_type=st.sampled_from([None, "self_funded", "financier_funded"]),
    expired_offer_policy=st.sampled_from(["expire", "revert_to_draft"]),
    bidding_window_elapsed=st.booleans(),
    payment_settled=st.booleans(),
    allow_cancel_during_bidding=st.booleans(),
)

steps = st.lists(st.tuples(st.sampled_from(ACTIONS), contexts), min_size=1, max_size=25)


@given(product_type=st.sampled_from(list(ProductType)), sequence=steps)
@settings(max_examples=200, deadline=None)
def test_random_sequences_respect_workflow(product_type, sequence):
    machine = InvoiceStateMachine(DeterministicClock())
    actor = Actor.admin(uuid4())
    invoice = InvoiceModel(
        id=uuid4(),
        status=InvoiceStatus.DRAFT.value,
        product_type=product_type.value,
        version=1,
    )

    for action, ctx in sequence:
        before_status, before_version = invoice.status, invoice.version
        try:
            chosen = machine.transition(invoice, action, actor, ctx)
        except InvalidTransitionError:
            assert invoice.status == before_status
            assert invoice.version == before_version
            continue

        assert not INVOICE_WORKFLOW.is_terminal(before_status)
        assert chosen.from_state == before_status
        assert invoice.status == chosen.to_state
        assert invoice.status in INVOICE_WORKFLOW.states
        assert invoice.version == before_version + 1


@given(sequence=steps)
@settings(max_examples=100, deadline=None)
def test_gst_backed_never_awaits_offer_acceptance(sequence):
    machine = InvoiceStateMachine(DeterministicClock())
    actor = Actor.admin(uuid4())
    invoice = InvoiceModel(
        id=uuid4(),
        status=InvoiceStatus.DRAFT.value,
        product_type=ProductType.GST_BACKED.value,
        version=1,
    )
    for action, ctx in sequence:
        if action == "submit":
            ctx = TransitionContext(has_pending_offer=False)
        try:
            machine.transition(invoice, action, actor, ctx)
        except InvalidTransitionError:
            continue
        assert invoice.status != InvoiceStatus.PENDING_ACCEPTANCE.value
