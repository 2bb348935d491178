"""
Status transitions for the invoice's child entities.

Offers, bids, disbursements and repayments have unguarded lifecycles; this
helper checks an action against the entity's workflow table and applies it.
The invoice itself goes through ``InvoiceStateMachine`` instead.
"""

from typing import Any

from financing_kernel.domain.workflow import Transition, Workflow
from financing_kernel.exceptions import InvalidTransitionError


def check(workflow: Workflow, entity_type: str, entity: Any, action: str) -> Transition:
    """Return the transition for ``action`` or raise InvalidTransitionError."""
    candidates = workflow.candidates(entity.status, action)
    if not candidates:
        raise InvalidTransitionError(entity_type, entity.id, entity.status, action)
    return candidates[0]


def advance(workflow: Workflow, entity_type: str, entity: Any, action: str) -> str:
    """Apply ``action`` to the entity's status and return the new status."""
    entity.status = check(workflow, entity_type, entity, action).to_state
    return entity.status
