"""
Module: financing_engines.discounting
Responsibility:
    Money calculator for early-payment financing.  Computes discount
    amounts, net payable amounts, processing fees and early-payment day
    counts from an invoice total, a percentage and dates.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import financing_kernel.db.types and financing_kernel.exceptions.

Invariants enforced:
    - Purity: no clock access.  "Today" is always passed in.
    - Decimal-only arithmetic; rounding goes through round_money()
      (ROUND_HALF_UP to currency minor units) for discount and fee alike.
    - discount_amount + net_amount == total exactly, because net is
      derived by subtraction from an already-rounded discount.

Failure modes:
    - ValidationError when the early-payment date is not strictly before
      the due date (days_early <= 0).
    - ValidationError when a total is not positive or has more precision
      than the currency allows.

Usage:
    from financing_engines.discounting import quote_offer
    quote = quote_offer(
        total=Decimal("289100.00"),
        percent=Decimal("2"),
        due_date=date(2024, 3, 31),
        early_payment_date=date(2024, 2, 1),
    )
    quote.discount_amount  # Decimal("5782.00")
    quote.net_amount       # Decimal("283318.00")
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from financing_engines.tracer import traced_engine
from financing_kernel.db.types import DEFAULT_CURRENCY_PLACES, round_money
from financing_kernel.exceptions import ValidationError

_HUNDRED = Decimal("100")
_SECONDS_PER_DAY = 86400


def discount_amount(
    total: Decimal,
    percent: Decimal,
    decimal_places: int = DEFAULT_CURRENCY_PLACES,
) -> Decimal:
    """round_half_up(total * percent / 100) to currency precision."""
    return round_money(total * percent / _HUNDRED, decimal_places)


def net_amount(
    total: Decimal,
    percent: Decimal,
    decimal_places: int = DEFAULT_CURRENCY_PLACES,
) -> Decimal:
    """Amount the seller receives after the discount."""
    return total - discount_amount(total, percent, decimal_places)


def days_early(due_date: date | datetime, early_date: date | datetime) -> int:
    """Whole days between the early payment and the due date, rounded up.

    Raises:
        ValidationError: if the early date is not strictly before the due date.
    """
    if isinstance(due_date, datetime) and isinstance(early_date, datetime):
        seconds = (due_date - early_date).total_seconds()
        days = math.ceil(seconds / _SECONDS_PER_DAY)
    else:
        due = due_date.date() if isinstance(due_date, datetime) else due_date
        early = early_date.date() if isinstance(early_date, datetime) else early_date
        days = (due - early).days
    if days <= 0:
        raise ValidationError(
            "early_payment_date",
            f"{early_date} must be before due date {due_date}",
        )
    return days


def bid_net_amount(
    total: Decimal,
    discount_rate: Decimal,
    processing_fee_rate: Decimal,
    decimal_places: int = DEFAULT_CURRENCY_PLACES,
) -> Decimal:
    """Total less the financier's discount and processing fee."""
    return (
        total
        - discount_amount(total, discount_rate, decimal_places)
        - discount_amount(total, processing_fee_rate, decimal_places)
    )


def validate_total(total: Decimal, decimal_places: int = DEFAULT_CURRENCY_PLACES) -> Decimal:
    """Reject non-positive totals and totals finer than the currency's minor unit."""
    if total <= 0:
        raise ValidationError("total_amount", f"must be positive, got {total}")
    if round_money(total, decimal_places) != total:
        raise ValidationError(
            "total_amount",
            f"{total} has more than {decimal_places} decimal places",
        )
    return total


@dataclass(frozen=True)
class OfferQuote:
    """Amounts for a buyer's discount offer."""

    total: Decimal
    discount_percentage: Decimal
    discount_amount: Decimal
    net_amount: Decimal
    days_early: int


@dataclass(frozen=True)
class BidQuote:
    """Amounts for a financier's bid."""

    total: Decimal
    discount_rate: Decimal
    processing_fee_rate: Decimal
    discount_amount: Decimal
    processing_fee_amount: Decimal
    net_amount: Decimal

    @property
    def financier_income(self) -> Decimal:
        return self.discount_amount + self.processing_fee_amount


@traced_engine(
    "discounting", "1.0",
    fingerprint_fields=("total", "percent", "due_date", "early_payment_date"),
)
def quote_offer(
    *,
    total: Decimal,
    percent: Decimal,
    due_date: date,
    early_payment_date: date,
    decimal_places: int = DEFAULT_CURRENCY_PLACES,
) -> OfferQuote:
    """Price a discount offer.  Percent bounds are the negotiator's concern."""
    validate_total(total, decimal_places)
    days = days_early(due_date, early_payment_date)
    discount = discount_amount(total, percent, decimal_places)
    return OfferQuote(
        total=total,
        discount_percentage=percent,
        discount_amount=discount,
        net_amount=total - discount,
        days_early=days,
    )


@traced_engine(
    "discounting", "1.0",
    fingerprint_fields=("total", "discount_rate", "processing_fee_rate"),
)
def quote_bid(
    *,
    total: Decimal,
    discount_rate: Decimal,
    processing_fee_rate: Decimal,
    decimal_places: int = DEFAULT_CURRENCY_PLACES,
) -> BidQuote:
    """Price a financier bid."""
    validate_total(total, decimal_places)
    discount = discount_amount(total, discount_rate, decimal_places)
    fee = discount_amount(total, processing_fee_rate, decimal_places)
    return BidQuote(
        total=total,
        discount_rate=discount_rate,
        processing_fee_rate=processing_fee_rate,
        discount_amount=discount,
        processing_fee_amount=fee,
        net_amount=total - discount - fee,
    )
