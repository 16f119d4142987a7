"""Cart snapshots, money helpers, tax and discounts.

``OrderCalculator`` lives in ``storefront.pricing.orders``; it depends on the
shipping package, which itself imports the models defined here.
"""

from storefront.pricing.currency import CurrencyConverter, Rounding
from storefront.pricing.discounts import BundleGrouping, DiscountEngine
from storefront.pricing.models import Address, AppliedCoupon, Cart, CartItem, Dimensions
from storefront.pricing.money import (
    format_amount,
    format_decimal_string,
    parse_amount,
    quantize_money,
)
from storefront.pricing.tax import TaxEngine
from storefront.pricing.validation import ValidationResult, validate_cart

__all__ = [
    "Address",
    "AppliedCoupon",
    "BundleGrouping",
    "Cart",
    "CartItem",
    "CurrencyConverter",
    "Dimensions",
    "DiscountEngine",
    "Rounding",
    "TaxEngine",
    "ValidationResult",
    "format_amount",
    "format_decimal_string",
    "parse_amount",
    "quantize_money",
    "validate_cart",
]
