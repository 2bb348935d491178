"""
Discounts Module.

Buyer-initiated early-payment discount offers: pricing, seller response,
expiry and the funding-type choice that follows acceptance.
"""

from financing_modules.discounts.models import DiscountOffer, FundingType, OfferStatus
from financing_modules.discounts.workflows import OFFER_WORKFLOW

__all__ = [
    "DiscountOffer",
    "FundingType",
    "OfferStatus",
    "OFFER_WORKFLOW",
]
