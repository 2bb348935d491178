"""
Party checks for invoice operations.

Each helper returns silently when the actor may perform ``action`` and raises
InvalidActorError otherwise.  ADMIN and SYSTEM actors pass every check.
"""

from uuid import UUID

from financing_kernel.domain.actor import Actor, ActorRole
from financing_kernel.exceptions import InvalidActorError
from financing_modules.invoices.models import ProductType
from financing_modules.invoices.orm import InvoiceModel


def require_buyer(invoice: InvoiceModel, actor: Actor, action: str) -> None:
    if actor.is_privileged:
        return
    if actor.role != ActorRole.BUYER or actor.actor_id != invoice.buyer_id:
        raise InvalidActorError(actor.actor_id, action, "caller is not the invoice's buyer")


def require_seller(invoice: InvoiceModel, actor: Actor, action: str) -> None:
    if actor.is_privileged:
        return
    if actor.role != ActorRole.SELLER or actor.actor_id != invoice.seller_id:
        raise InvalidActorError(actor.actor_id, action, "caller is not the invoice's seller")


def require_party(invoice: InvoiceModel, actor: Actor, action: str) -> None:
    """Buyer or seller of this invoice."""
    if actor.is_privileged:
        return
    if actor.role == ActorRole.BUYER and actor.actor_id == invoice.buyer_id:
        return
    if actor.role == ActorRole.SELLER and actor.actor_id == invoice.seller_id:
        return
    raise InvalidActorError(actor.actor_id, action, "caller is not a party to the invoice")


def require_financier(actor: Actor, action: str) -> None:
    if actor.is_privileged:
        return
    if actor.role != ActorRole.FINANCIER:
        raise InvalidActorError(actor.actor_id, action, "caller is not a financier")


def require_bid_selector(invoice: InvoiceModel, actor: Actor, action: str) -> None:
    """The seller picks bids on GST-backed invoices; the buyer everywhere else."""
    if invoice.product_type == ProductType.GST_BACKED.value:
        require_seller(invoice, actor, action)
    else:
        require_buyer(invoice, actor, action)


def require_one_of(actor: Actor, action: str, allowed_ids: tuple[UUID, ...]) -> None:
    """Caller must be one of the listed parties (e.g. payer of a disbursement)."""
    if actor.is_privileged:
        return
    if actor.actor_id not in allowed_ids:
        raise InvalidActorError(actor.actor_id, action, "caller is not a party to this payment")
