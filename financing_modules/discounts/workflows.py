"""
Discount Offer Workflow.

An offer starts PENDING and is closed exactly once: by the seller, by the
buyer withdrawing it, by expiry, or by the invoice being cancelled.
"""

from financing_kernel.domain.workflow import Transition, Workflow

OFFER_WORKFLOW = Workflow(
    name="discount_offer",
    description="Buyer discount offer lifecycle",
    initial_state="pending",
    states=("pending", "accepted", "rejected", "expired", "cancelled"),
    transitions=(
        Transition("pending", "accepted", action="accept"),
        Transition("pending", "rejected", action="reject"),
        Transition("pending", "expired", action="expire"),
        Transition("pending", "cancelled", action="withdraw"),
        Transition("pending", "cancelled", action="cancel"),
    ),
    terminal_states=("rejected", "expired", "cancelled"),
)
