"""
Disbursement and Repayment Workflows.

A disbursement may skip DISBURSED when the payment is confirmed in one
step.  FAILED is terminal for the row; the invoice rolls back so a fresh
disbursement can be recorded.  A repayment is CANCELLED only when its
disbursement failed.
"""

from financing_kernel.domain.workflow import Transition, Workflow

DISBURSEMENT_WORKFLOW = Workflow(
    name="disbursement",
    description="Early payment to the seller",
    initial_state="pending",
    states=("pending", "disbursed", "completed", "failed"),
    transitions=(
        Transition("pending", "disbursed", action="send", moves_money=True),
        Transition("pending", "completed", action="complete", moves_money=True),
        Transition("disbursed", "completed", action="complete"),
        Transition("pending", "failed", action="fail"),
        Transition("disbursed", "failed", action="fail"),
    ),
    terminal_states=("completed", "failed"),
)

REPAYMENT_WORKFLOW = Workflow(
    name="repayment",
    description="Face-value repayment to the financier",
    initial_state="pending",
    states=("pending", "paid", "overdue", "cancelled"),
    transitions=(
        Transition("pending", "paid", action="pay", moves_money=True),
        Transition("overdue", "paid", action="pay", moves_money=True),
        Transition("pending", "overdue", action="mark_overdue"),
        Transition("pending", "cancelled", action="cancel"),
        Transition("overdue", "cancelled", action="cancel"),
    ),
    terminal_states=("paid", "cancelled"),
)
