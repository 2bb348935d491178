"""
Hypothesis properties of the discounting engine.

Boundaries fuzzed here:
- Totals: 0.01 to 999M at two decimal places, whole units for JPY
- Percentages and rates: 0.0001 to 50 at four decimal places
- Early-payment dates: 1 to 365 days before the due date

The worked examples (289,100.00 at 2%, the three-bid ranking) live in
tests/unit/test_discounting.py.
"""

from datetime import date, timedelta
from decimal import Decimal

from hypothesis import given, settings
from hypothesis import strategies as st

from financing_engines.discounting import (
    bid_net_amount,
    days_early,
    discount_amount,
    net_amount,
    quote_bid,
    quote_offer,
)

DUE = date(2024, 3, 31)

totals = st.decimals(
    min_value=Decimal("0.01"),
    max_value=Decimal("999999999.99"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)

whole_totals = st.integers(min_value=1, max_value=10**12).map(Decimal)

percents = st.decimals(
    min_value=Decimal("0.0001"),
    max_value=Decimal("50"),
    places=4,
    allow_nan=False,
    allow_infinity=False,
)

days_before_due = st.integers(min_value=1, max_value=365)


class TestOfferAmounts:
    @given(total=totals, percent=percents)
    def test_discount_plus_net_is_total(self, total, percent):
        assert discount_amount(total, percent) + net_amount(total, percent) == total

    @given(total=totals, percent=percents)
    def test_discount_within_half_a_cent(self, total, percent):
        exact = total * percent / Decimal("100")
        assert abs(discount_amount(total, percent) - exact) <= Decimal("0.005")

    @given(total=totals, percent=percents)
    def test_amounts_have_two_places(self, total, percent):
        assert discount_amount(total, percent).as_tuple().exponent == -2

    @given(total=totals, low=percents, high=percents)
    def test_discount_monotonic_in_percent(self, total, low, high):
        if low > high:
            low, high = high, low
        assert discount_amount(total, low) <= discount_amount(total, high)

    @given(total=whole_totals, percent=percents)
    def test_zero_decimal_currency(self, total, percent):
        discount = discount_amount(total, percent, decimal_places=0)
        assert discount == discount.to_integral_value()
        assert discount + net_amount(total, percent, decimal_places=0) == total


class TestDaysEarly:
    @given(days=days_before_due)
    def test_counts_whole_days(self, days):
        assert days_early(DUE, DUE - timedelta(days=days)) == days

    @given(total=totals, percent=percents, days=days_before_due)
    @settings(max_examples=50, deadline=None)
    def test_quote_offer_consistent(self, total, percent, days):
        quote = quote_offer(
            total=total, percent=percent, due_date=DUE, early_payment_date=DUE - timedelta(days=days),
        )
        assert quote.days_early == days
        assert quote.discount_amount + quote.net_amount == total


class TestBidAmounts:
    @given(total=totals, rate=percents, fee=percents)
    @settings(max_examples=50, deadline=None)
    def test_net_plus_income_is_total(self, total, rate, fee):
        quote = quote_bid(total=total, discount_rate=rate, processing_fee_rate=fee)
        assert quote.net_amount + quote.financier_income == total
        assert quote.net_amount == bid_net_amount(total, rate, fee)

    @given(total=totals, rate=percents)
    def test_fee_never_helps_seller(self, total, rate):
        assert bid_net_amount(total, rate, Decimal("1")) <= bid_net_amount(total, rate, Decimal("0"))
