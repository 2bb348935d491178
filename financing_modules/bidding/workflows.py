"""
Bid Workflow.

A bid is ACTIVE until exactly one of: the invoice owner selects it, a
sibling is selected (or the invoice is cancelled), the financier withdraws
or resubmits, or its validity window closes.
"""

from financing_kernel.domain.workflow import Transition, Workflow

BID_WORKFLOW = Workflow(
    name="bid",
    description="Financier bid lifecycle",
    initial_state="active",
    states=("active", "accepted", "rejected", "withdrawn", "expired"),
    transitions=(
        Transition("active", "accepted", action="select"),
        Transition("active", "rejected", action="reject"),
        Transition("active", "withdrawn", action="withdraw"),
        Transition("active", "expired", action="expire"),
    ),
    terminal_states=("accepted", "rejected", "withdrawn", "expired"),
)
