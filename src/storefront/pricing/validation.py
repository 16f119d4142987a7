"""Structured validation of cart snapshots before pricing."""

from __future__ import annotations

from dataclasses import dataclass, field

from storefront.pricing.models import Cart
from storefront.pricing.money import quantize_money


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    field: str
    message: str


@dataclass(slots=True)
class ValidationResult:
    """Outcome of a validation pass; never raised, always returned."""

    issues: list[ValidationIssue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.issues

    def add(self, field_name: str, message: str) -> None:
        self.issues.append(ValidationIssue(field=field_name, message=message))


def validate_cart(cart: Cart) -> ValidationResult:
    """Check the cart for inconsistencies the calculators would silently absorb.

    Line totals that disagree with ``unit_price * quantity`` usually mean the
    snapshot was taken mid-update.
    """
    result = ValidationResult()
    if not cart.items:
        result.add("items", "cart has no items")

    for index, item in enumerate(cart.items):
        expected = quantize_money(item.unit_price * item.quantity, cart.currency)
        if quantize_money(item.total_price, cart.currency) != expected:
            result.add(
                f"items[{index}].total_price",
                f"expected {expected} for {item.quantity} x {item.unit_price}, "
                f"got {item.total_price}",
            )

    codes = [coupon.code for coupon in cart.applied_coupons]
    duplicates = sorted({code for code in codes if codes.count(code) > 1})
    for code in duplicates:
        result.add("applied_coupons", f"coupon {code} applied more than once")

    return result
