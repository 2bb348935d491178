"""
Typed Exception Hierarchy for the Financing Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every money-affecting operation in the financing workflow is invoked by an
independent actor (buyer, seller, financier).  Callers need to tell apart
"you are not allowed to do this", "this offer lapsed" and "somebody else got
there first" without parsing message strings.

Every class in this module therefore:
  1. Is caught by TYPE, never by message.
  2. Carries a ``code`` class attribute (machine-readable, API-safe).
  3. Stores the context that caused it as structured attributes.

Example:
    try:
        orchestrator.accept_offer(offer_id, seller)
    except OfferExpiredError as e:
        api_response(code=e.code, expires_at=e.expires_at)
    except ConcurrentModificationError:
        ...  # already retried once by the orchestrator

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    FinancingKernelError (base)
    |
    +-- InvalidTransitionError
    +-- InvalidActorError
    +-- ValidationError
    |
    +-- ExpiryError
    |   +-- OfferExpiredError
    |   +-- BidExpiredError
    |
    +-- DuplicateError
    |   +-- DuplicateDisbursementError
    |   +-- DuplicateInvoiceError
    |
    +-- NotFoundError
    |   +-- InvoiceNotFoundError
    |   +-- OfferNotFoundError
    |   +-- BidNotFoundError
    |   +-- DisbursementNotFoundError
    |   +-- RepaymentNotFoundError
    |
    +-- ConcurrencyError
        +-- ConcurrentModificationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                      | When Raised
--------------------------|---------------------------------------------------
INVALID_TRANSITION        | Action not legal from the entity's current state
INVALID_ACTOR             | Caller lacks permission for the action
VALIDATION_ERROR          | Parameter out of bounds (percent, dates, reason)
OFFER_EXPIRED             | Offer used after its expires_at
BID_EXPIRED               | Bid selected after its valid_until
DUPLICATE_DISBURSEMENT    | Invoice already has a live (non-FAILED) payout
DUPLICATE_INVOICE         | Same invoice number already registered by seller
<ENTITY>_NOT_FOUND        | Lookup by id failed
CONCURRENT_MODIFICATION   | Optimistic lock conflict on the invoice aggregate

===============================================================================
PROPAGATION
===============================================================================

Services raise; nothing inside the engine suppresses these.  The workflow
orchestrator retries ConcurrentModificationError once with fresh state and
lets every other error reach the caller unchanged.  Bulk operations and
sweeps report ``code`` and ``str(exc)`` per item instead of aborting.
"""

from datetime import datetime
from uuid import UUID


class FinancingKernelError(Exception):
    """
    Base exception for all financing kernel errors.

    All subclasses must have a `code` class attribute
    for machine-readable error identification.
    """

    code: str = "FINANCING_KERNEL_ERROR"


# State machine exceptions


class InvalidTransitionError(FinancingKernelError):
    """Attempted action is not legal from the entity's current state."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: UUID | str,
        current_state: str,
        action: str,
        reason: str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.current_state = current_state
        self.action = action
        self.reason = reason
        message = (
            f"Cannot {action} {entity_type} {entity_id} "
            f"in state {current_state}"
        )
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class InvalidActorError(FinancingKernelError):
    """Caller lacks permission for this action on this invoice."""

    code: str = "INVALID_ACTOR"

    def __init__(self, actor_id: UUID | str, action: str, reason: str):
        self.actor_id = str(actor_id)
        self.action = action
        self.reason = reason
        super().__init__(f"Actor {actor_id} may not {action}: {reason}")


class ValidationError(FinancingKernelError):
    """A parameter is out of bounds."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


# Temporal precondition exceptions


class ExpiryError(FinancingKernelError):
    """Base exception for time-bound entities used after their deadline."""

    code: str = "EXPIRY_ERROR"


class OfferExpiredError(ExpiryError):
    """Discount offer used after its expiry timestamp."""

    code: str = "OFFER_EXPIRED"

    def __init__(self, offer_id: UUID | str, expires_at: datetime):
        self.offer_id = str(offer_id)
        self.expires_at = expires_at
        super().__init__(
            f"Offer {offer_id} expired at {expires_at.isoformat()}"
        )


class BidExpiredError(ExpiryError):
    """Bid selected after its validity window closed."""

    code: str = "BID_EXPIRED"

    def __init__(self, bid_id: UUID | str, valid_until: datetime):
        self.bid_id = str(bid_id)
        self.valid_until = valid_until
        super().__init__(
            f"Bid {bid_id} was valid until {valid_until.isoformat()}"
        )


# Duplicate exceptions


class DuplicateError(FinancingKernelError):
    """Base exception for exactly-once violations."""

    code: str = "DUPLICATE_ERROR"


class DuplicateDisbursementError(DuplicateError):
    """Invoice already has a disbursement that has not failed."""

    code: str = "DUPLICATE_DISBURSEMENT"

    def __init__(self, invoice_id: UUID | str, disbursement_id: UUID | str):
        self.invoice_id = str(invoice_id)
        self.disbursement_id = str(disbursement_id)
        super().__init__(
            f"Invoice {invoice_id} already has disbursement {disbursement_id}"
        )


class DuplicateInvoiceError(DuplicateError):
    """Seller already registered an invoice with this number."""

    code: str = "DUPLICATE_INVOICE"

    def __init__(self, invoice_number: str, seller_id: UUID | str):
        self.invoice_number = invoice_number
        self.seller_id = str(seller_id)
        super().__init__(
            f"Invoice {invoice_number} already exists for seller {seller_id}"
        )


# Lookup exceptions


class NotFoundError(FinancingKernelError):
    """Base exception for failed lookups by id."""

    code: str = "NOT_FOUND"
    entity_type: str = "Entity"

    def __init__(self, entity_id: UUID | str):
        self.entity_id = str(entity_id)
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class InvoiceNotFoundError(NotFoundError):
    code: str = "INVOICE_NOT_FOUND"
    entity_type: str = "Invoice"


class OfferNotFoundError(NotFoundError):
    code: str = "OFFER_NOT_FOUND"
    entity_type: str = "DiscountOffer"


class BidNotFoundError(NotFoundError):
    code: str = "BID_NOT_FOUND"
    entity_type: str = "Bid"


class DisbursementNotFoundError(NotFoundError):
    code: str = "DISBURSEMENT_NOT_FOUND"
    entity_type: str = "Disbursement"


class RepaymentNotFoundError(NotFoundError):
    code: str = "REPAYMENT_NOT_FOUND"
    entity_type: str = "Repayment"


# Concurrency exceptions


class ConcurrencyError(FinancingKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationError(ConcurrencyError):
    """Another unit of work changed the invoice aggregate first."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, entity_type: str, entity_id: UUID | str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )
