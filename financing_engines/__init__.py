"""
Module: financing_engines
Responsibility:
    Pure calculation layer for the financing workflow.  Re-exports the money
    calculator so modules import from one place.

Invariants enforced:
    - Engines NEVER read the clock; dates are passed in by services.
    - Decimal-only arithmetic.
"""

from financing_engines.discounting import (
    BidQuote,
    OfferQuote,
    bid_net_amount,
    days_early,
    discount_amount,
    net_amount,
    quote_bid,
    quote_offer,
    validate_total,
)

__all__ = [
    "BidQuote",
    "OfferQuote",
    "bid_net_amount",
    "days_early",
    "discount_amount",
    "net_amount",
    "quote_bid",
    "quote_offer",
    "validate_total",
]
