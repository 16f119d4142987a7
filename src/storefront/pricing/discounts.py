"""Discount contributions.

Each contribution is computed independently; none depends on another and
they are never compounded. Only the coupon contribution feeds an order's
discount amount; the rest are reported for display and promotions.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from storefront.pricing.models import Cart, CartItem
from storefront.pricing.money import ZERO, quantize_money, to_decimal

# (minimum quantity, rate), highest tier first
VOLUME_TIERS: tuple[tuple[int, Decimal], ...] = (
    (10, Decimal("0.15")),
    (5, Decimal("0.10")),
    (3, Decimal("0.05")),
)

# (minimum lifetime spend, rate), highest tier first
LOYALTY_TIERS: tuple[tuple[Decimal, Decimal], ...] = (
    (Decimal("5000"), Decimal("0.10")),
    (Decimal("1000"), Decimal("0.05")),
    (Decimal("500"), Decimal("0.02")),
)

SEASONAL_RATES: dict[str, Decimal] = {
    "HOLIDAY": Decimal("0.20"),
    "SUMMER": Decimal("0.15"),
    "SPRING": Decimal("0.10"),
    "WINTER": Decimal("0.05"),
}

# (minimum distinct groups, flat amount), highest tier first
BUNDLE_TIERS: tuple[tuple[int, Decimal], ...] = (
    (3, Decimal("50")),
    (2, Decimal("25")),
)


class BundleGrouping(Enum):
    """How cart items are grouped when counting bundle members.

    ``PRODUCT`` counts distinct products, which is what storefronts have
    shipped so far. ``CATEGORY`` counts distinct categories, matching the
    promotion's wording; items without a category count as their own group.
    """

    PRODUCT = "product"
    CATEGORY = "category"


@dataclass(frozen=True, slots=True)
class DiscountBreakdown:
    coupon: Decimal
    volume: Decimal
    loyalty: Decimal
    seasonal: Decimal
    bundle: Decimal

    @property
    def promotional_total(self) -> Decimal:
        return self.volume + self.loyalty + self.seasonal + self.bundle


def _tier_rate(
    value: Decimal | int, tiers: Sequence[tuple[Decimal | int, Decimal]]
) -> Decimal:
    for minimum, rate in tiers:
        if value >= minimum:
            return rate
    return ZERO


class DiscountEngine:
    def __init__(
        self,
        bundle_grouping: BundleGrouping = BundleGrouping.PRODUCT,
        currency: str = "USD",
    ) -> None:
        self._bundle_grouping = bundle_grouping
        self._currency = currency

    @property
    def bundle_grouping(self) -> BundleGrouping:
        return self._bundle_grouping

    def calculate_cart_discount(self, cart: Cart) -> Decimal:
        """Sum of the discount amounts of the coupons applied to the cart."""
        total = sum((coupon.discount_amount for coupon in cart.applied_coupons), ZERO)
        return quantize_money(total, cart.currency)

    def calculate_volume_discount(
        self, quantity: int, price: Decimal | float | str
    ) -> Decimal:
        rate = _tier_rate(quantity, VOLUME_TIERS)
        return quantize_money(to_decimal(price) * rate, self._currency)

    def calculate_loyalty_discount(
        self,
        lifetime_spend: Decimal | float | str,
        order_amount: Decimal | float | str,
    ) -> Decimal:
        rate = _tier_rate(to_decimal(lifetime_spend), LOYALTY_TIERS)
        return quantize_money(to_decimal(order_amount) * rate, self._currency)

    def calculate_seasonal_discount(
        self, order_amount: Decimal | float | str, season_code: str | None = None
    ) -> Decimal:
        rate = SEASONAL_RATES.get(season_code.upper(), ZERO) if season_code else ZERO
        return quantize_money(to_decimal(order_amount) * rate, self._currency)

    def calculate_bundle_discount(
        self,
        items: Sequence[CartItem],
        grouping: BundleGrouping | None = None,
    ) -> Decimal:
        grouping = grouping or self._bundle_grouping
        groups = {self._group_key(item, grouping) for item in items}
        return quantize_money(_tier_rate(len(groups), BUNDLE_TIERS), self._currency)

    def breakdown(
        self,
        cart: Cart,
        *,
        lifetime_spend: Decimal | float | str = ZERO,
        season_code: str | None = None,
    ) -> DiscountBreakdown:
        """Every contribution for ``cart``; volume is applied per line."""
        engine = self if cart.currency == self._currency else DiscountEngine(
            self._bundle_grouping, cart.currency
        )
        subtotal = cart.items_value
        volume = sum(
            (
                engine.calculate_volume_discount(item.quantity, item.total_price)
                for item in cart.items
            ),
            ZERO,
        )
        return DiscountBreakdown(
            coupon=engine.calculate_cart_discount(cart),
            volume=quantize_money(volume, cart.currency),
            loyalty=engine.calculate_loyalty_discount(lifetime_spend, subtotal),
            seasonal=engine.calculate_seasonal_discount(subtotal, season_code),
            bundle=engine.calculate_bundle_discount(cart.items),
        )

    @staticmethod
    def _group_key(item: CartItem, grouping: BundleGrouping) -> str:
        if grouping is BundleGrouping.CATEGORY and item.category_id:
            return f"category:{item.category_id}"
        return f"product:{item.product_id}"
