"""Money helpers: decimal coercion, currency precision and minor-unit conversion.

Provider APIs disagree on how amounts travel over the wire. Stripe and
Razorpay expect integers in the currency's smallest unit (cents, paise),
except for zero-decimal currencies such as JPY where the major unit is
already the smallest one. PayPal expects a decimal string. Everything in
this package works with ``Decimal`` major units and converts only at the
adapter boundary through these helpers.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

__all__ = [
    "THREE_DECIMAL_CURRENCIES",
    "ZERO",
    "ZERO_DECIMAL_CURRENCIES",
    "currency_exponent",
    "format_amount",
    "format_decimal_string",
    "parse_amount",
    "quantize_money",
    "to_decimal",
]

ZERO = Decimal("0")

ZERO_DECIMAL_CURRENCIES: frozenset[str] = frozenset(
    {
        "BIF",
        "CLP",
        "DJF",
        "GNF",
        "JPY",
        "KMF",
        "KRW",
        "MGA",
        "PYG",
        "RWF",
        "UGX",
        "VND",
        "VUV",
        "XAF",
        "XOF",
        "XPF",
    }
)

THREE_DECIMAL_CURRENCIES: frozenset[str] = frozenset(
    {"BHD", "JOD", "KWD", "OMR", "TND"}
)


def to_decimal(value: Decimal | int | float | str) -> Decimal:
    """Coerce a numeric value to ``Decimal`` without binary float artefacts."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    try:
        return Decimal(value)
    except InvalidOperation as e:
        raise ValueError(f"Not a valid amount: {value!r}") from e


def currency_exponent(currency: str) -> int:
    """Number of decimal places in the currency's minor unit."""
    code = currency.upper()
    if code in ZERO_DECIMAL_CURRENCIES:
        return 0
    if code in THREE_DECIMAL_CURRENCIES:
        return 3
    return 2


def quantize_money(
    amount: Decimal | int | float | str, currency: str = "USD"
) -> Decimal:
    """Round half-up to the currency's minor unit."""
    exponent = currency_exponent(currency)
    return to_decimal(amount).quantize(Decimal(1).scaleb(-exponent), ROUND_HALF_UP)


def format_amount(amount: Decimal | int | float | str, currency: str) -> int:
    """Convert a major-unit amount to the provider's integer minor units."""
    exponent = currency_exponent(currency)
    return int(quantize_money(amount, currency).scaleb(exponent))


def parse_amount(minor_units: int, currency: str) -> Decimal:
    """Convert provider integer minor units back to a major-unit ``Decimal``."""
    exponent = currency_exponent(currency)
    return quantize_money(Decimal(int(minor_units)).scaleb(-exponent), currency)


def format_decimal_string(amount: Decimal | int | float | str, currency: str) -> str:
    """Render an amount the way decimal-string APIs (PayPal) expect it."""
    return format(quantize_money(amount, currency), "f")
