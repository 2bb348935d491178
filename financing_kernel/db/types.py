"""
Module: financing_kernel.db.types
Responsibility: The money helpers every module shares.  Centralizes precision, rounding and currency validation
    so that discount, net, fee and repayment amounts are all produced the
    same way.
Architecture position: Kernel > DB.  May be imported by domain/, engines and
    modules.  MUST NOT import from any of those layers.

Invariants enforced:
    - round_money() is the ONLY sanctioned rounding function for amounts:
      ROUND_HALF_UP to the currency's minor units.
    - validate_currency() accepts only ISO 4217 codes.
    - No floats.  All amounts and rates are Decimal.

Failure modes:
    - ValidationError on an invalid ISO 4217 code.
    - ValidationError from to_decimal() on floats or unparsable values.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from financing_kernel.exceptions import ValidationError

DEFAULT_ROUNDING = ROUND_HALF_UP
DEFAULT_CURRENCY_PLACES = 2

# Minor-unit exponents that differ from 2
_CURRENCY_DECIMAL_PLACES: dict[str, int] = {
    "JPY": 0, "KRW": 0, "VND": 0, "CLP": 0, "ISK": 0, "UGX": 0,
    "BHD": 3, "JOD": 3, "KWD": 3, "OMR": 3, "TND": 3,
}


def currency_decimal_places(currency: str) -> int:
    """Minor-unit precision for a currency (2 unless listed otherwise)."""
    return _CURRENCY_DECIMAL_PLACES.get(currency.upper(), DEFAULT_CURRENCY_PLACES)


def round_money(
    value: Decimal,
    decimal_places: int = DEFAULT_CURRENCY_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the given decimal places.

    This is the ONLY sanctioned rounding function for financial values in the
    engine.  All other code delegates rounding here.

    Args:
        value: The Decimal value to round.
        decimal_places: Number of decimal places to round to.
        rounding: Rounding mode (default: ROUND_HALF_UP).

    Returns:
        Rounded Decimal value.
    """
    exponent = Decimal(1).scaleb(-decimal_places)
    return value.quantize(exponent, rounding=rounding)


def to_decimal(value: Any, field: str) -> Decimal:
    """Coerce int/str/Decimal to Decimal, refusing floats."""
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(field, f"must be Decimal, int or str, got {type(value).__name__}")
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError) as exc:
            raise ValidationError(field, f"not a number: {value!r}") from exc
    if not result.is_finite():
        raise ValidationError(field, "must be finite")
    return result


# ISO 4217 Currency Codes
ISO_4217_CURRENCIES: set[str] = {
    "USD", "EUR", "GBP", "JPY", "CHF", "CAD", "AUD", "NZD",
    "AED", "AFN", "ALL", "AMD", "ANG", "AOA", "ARS", "AWG", "AZN",
    "BAM", "BBD", "BDT", "BGN", "BHD", "BIF", "BMD", "BND", "BOB", "BRL", "BSD", "BTN", "BWP", "BYN", "BZD",
    "CDF", "CLP", "CNY", "COP", "CRC", "CUP", "CVE", "CZK",
    "DJF", "DKK", "DOP", "DZD",
    "EGP", "ERN", "ETB",
    "FJD", "FKP",
    "GEL", "GHS", "GIP", "GMD", "GNF", "GTQ", "GYD",
    "HKD", "HNL", "HTG", "HUF",
    "IDR", "ILS", "INR", "IQD", "IRR", "ISK",
    "JMD", "JOD",
    "KES", "KGS", "KHR", "KMF", "KPW", "KRW", "KWD", "KYD", "KZT",
    "LAK", "LBP", "LKR", "LRD", "LSL", "LYD",
    "MAD", "MDL", "MGA", "MKD", "MMK", "MNT", "MOP", "MRU", "MUR", "MVR", "MWK", "MXN", "MYR", "MZN",
    "NAD", "NGN", "NIO", "NOK", "NPR",
    "OMR",
    "PAB", "PEN", "PGK", "PHP", "PKR", "PLN", "PYG",
    "QAR",
    "RON", "RSD", "RUB", "RWF",
    "SAR", "SBD", "SCR", "SDG", "SEK", "SGD", "SHP", "SLE", "SOS", "SRD", "SSP", "STN", "SYP", "SZL",
    "THB", "TJS", "TMT", "TND", "TOP", "TRY", "TTD", "TWD", "TZS",
    "UAH", "UGX", "UYU", "UZS",
    "VES", "VND", "VUV",
    "WST",
    "XAF", "XCD", "XOF", "XPF",
    "YER",
    "ZAR", "ZMW", "ZWL",
}


def validate_currency(currency: str) -> str:
    """
    Validate that a currency code is a valid ISO 4217 code.

    Returns:
        The validated currency code (uppercase).

    Raises:
        ValidationError: If the currency code is not valid.
    """
    if not currency or not isinstance(currency, str):
        raise ValidationError("currency", f"not a currency code: {currency!r}")

    normalized = currency.upper().strip()
    if normalized not in ISO_4217_CURRENCIES:
        raise ValidationError("currency", f"not an ISO 4217 code: {currency!r}")
    return normalized


RATE_DECIMAL_PLACES = 4


def round_rate(value: Decimal, decimal_places: int = RATE_DECIMAL_PLACES) -> Decimal:
    """Percentage rates are presented with a fixed four decimal places."""
    return round_money(value, decimal_places)
