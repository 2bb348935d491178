"""
Invoice Workflow.

Transition table for the invoice aggregate root.  Every state change an
invoice can undergo is listed here; the state machine refuses anything else.
"""

from financing_kernel.domain.workflow import Guard, Transition, Workflow
from financing_kernel.logging_config import get_logger

logger = get_logger("modules.invoices.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

PENDING_OFFER_EXISTS = Guard(
    name="pending_offer_exists",
    description="A PENDING discount offer is attached to the invoice",
)

GST_BACKED_PRODUCT = Guard(
    name="gst_backed_product",
    description="Invoice product type goes straight to financier bidding",
)

EXPIRY_POLICY_EXPIRE = Guard(
    name="expiry_policy_expire",
    description="Configured to end the invoice when its offer lapses",
)

EXPIRY_POLICY_REVERT = Guard(
    name="expiry_policy_revert",
    description="Configured to return the invoice to draft when its offer lapses",
)

FINANCIER_FUNDED = Guard(
    name="financier_funded",
    description="Accepted offer selected FINANCIER_FUNDED",
)

SELF_FUNDED = Guard(
    name="self_funded",
    description="Accepted offer selected SELF_FUNDED",
)

BIDDING_WINDOW_ELAPSED = Guard(
    name="bidding_window_elapsed",
    description="Maximum bidding window elapsed with no ACTIVE bid left",
)

PAYMENT_SETTLED = Guard(
    name="payment_settled",
    description="Disbursement COMPLETED and any repayment PAID",
)

CANCEL_DURING_BIDDING_ALLOWED = Guard(
    name="cancel_during_bidding_allowed",
    description="Policy lets the buyer abandon an open marketplace",
)


# -----------------------------------------------------------------------------
# Invoice Workflow
# -----------------------------------------------------------------------------

INVOICE_WORKFLOW = Workflow(
    name="financing_invoice",
    description="Invoice financing lifecycle",
    initial_state="draft",
    states=(
        "draft",
        "pending_acceptance",
        "accepted",
        "rejected",
        "open_for_bidding",
        "bid_selected",
        "disbursed",
        "settled",
        "cancelled",
        "expired",
    ),
    transitions=(
        Transition("draft", "pending_acceptance", action="submit", guard=PENDING_OFFER_EXISTS),
        Transition("draft", "open_for_bidding", action="submit", guard=GST_BACKED_PRODUCT),
        Transition("pending_acceptance", "accepted", action="accept_offer"),
        Transition("pending_acceptance", "rejected", action="reject_offer"),
        Transition("pending_acceptance", "expired", action="expire_offer", guard=EXPIRY_POLICY_EXPIRE),
        Transition("pending_acceptance", "draft", action="expire_offer", guard=EXPIRY_POLICY_REVERT),
        Transition("pending_acceptance", "draft", action="withdraw_offer"),
        Transition("accepted", "open_for_bidding", action="open_for_bidding", guard=FINANCIER_FUNDED),
        Transition("accepted", "disbursed", action="disburse", guard=SELF_FUNDED, moves_money=True),
        Transition("open_for_bidding", "bid_selected", action="select_bid"),
        Transition("open_for_bidding", "expired", action="expire_bidding", guard=BIDDING_WINDOW_ELAPSED),
        Transition("bid_selected", "disbursed", action="disburse", moves_money=True),
        Transition("disbursed", "settled", action="settle", guard=PAYMENT_SETTLED),
        Transition("disbursed", "accepted", action="fail_disbursement", guard=SELF_FUNDED),
        Transition("disbursed", "bid_selected", action="fail_disbursement", guard=FINANCIER_FUNDED),
        Transition("draft", "cancelled", action="cancel"),
        Transition("pending_acceptance", "cancelled", action="cancel"),
        Transition("accepted", "cancelled", action="cancel"),
        Transition("open_for_bidding", "cancelled", action="cancel", guard=CANCEL_DURING_BIDDING_ALLOWED),
        Transition("bid_selected", "cancelled", action="cancel"),
    ),
    terminal_states=("settled", "rejected", "cancelled", "expired"),
)

logger.debug(
    "invoice_workflow_registered",
    extra={
        "workflow_name": INVOICE_WORKFLOW.name,
        "state_count": len(INVOICE_WORKFLOW.states),
        "transition_count": len(INVOICE_WORKFLOW.transitions),
        "initial_state": INVOICE_WORKFLOW.initial_state,
    },
)
