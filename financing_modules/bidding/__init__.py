"""
Bidding Module.

Competitive financier bids on invoices whose early payment is funded by a
third party: submission, ranking, selection and expiry.
"""

from financing_modules.bidding.models import Bid, BidStatus
from financing_modules.bidding.workflows import BID_WORKFLOW

__all__ = [
    "Bid",
    "BidStatus",
    "BID_WORKFLOW",
]
