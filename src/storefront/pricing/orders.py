"""Order totals, vendor commission and platform fees."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from storefront.infra.clock import utcnow
from storefront.pricing.discounts import DiscountEngine
from storefront.pricing.models import Address, Cart, CartItem
from storefront.pricing.money import ZERO, quantize_money, to_decimal
from storefront.pricing.tax import TaxEngine
from storefront.shipping.calculator import ShippingCalculator
from storefront.shipping.logger import ShippingLogger
from storefront.shipping.models import DayRange, ProcessingTime

DEFAULT_PLATFORM_FEE_PERCENT = Decimal("2.9")
HUNDRED = Decimal(100)


@dataclass(frozen=True, slots=True)
class OrderTotals:
    subtotal: Decimal
    shipping_cost: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total: Decimal
    savings: Decimal
    currency: str = "USD"


def compare_price_savings(items: Sequence[CartItem]) -> Decimal:
    """Savings against compare-at prices, counting only lines sold below them."""
    return sum(
        (
            (item.compare_price - item.unit_price) * item.quantity
            for item in items
            if item.compare_price is not None and item.compare_price > item.unit_price
        ),
        ZERO,
    )


class OrderCalculator:
    """Compute the figures that go on an order.

    Every component is rounded to the currency's minor unit before the total
    is formed, so ``total == max(0, subtotal + shipping_cost + tax_amount -
    discount_amount)`` holds exactly on the returned values.
    """

    def __init__(
        self,
        shipping_calculator: ShippingCalculator | None = None,
        tax_engine: TaxEngine | None = None,
        discount_engine: DiscountEngine | None = None,
        *,
        platform_fee_percent: Decimal = DEFAULT_PLATFORM_FEE_PERCENT,
        clock: Callable[[], datetime] = utcnow,
        shipping_logger: ShippingLogger | None = None,
    ) -> None:
        self._shipping = shipping_calculator or ShippingCalculator()
        self._tax = tax_engine or TaxEngine()
        self._discounts = discount_engine or DiscountEngine()
        self._platform_fee_percent = to_decimal(platform_fee_percent)
        self._clock = clock
        self._logger = shipping_logger or ShippingLogger()

    def calculate_order_totals(
        self,
        cart: Cart,
        address: Address,
        selected_shipping_method_id: str | None = None,
    ) -> OrderTotals:
        currency = cart.currency
        subtotal = cart.items_value
        shipping_cost = quantize_money(
            self.selected_shipping_cost(cart, address, selected_shipping_method_id),
            currency,
        )
        tax_amount = self._tax.calculate_cart_tax(cart, address)
        discount_amount = self._discounts.calculate_cart_discount(cart)

        total = max(ZERO, subtotal + shipping_cost + tax_amount - discount_amount)
        savings = quantize_money(compare_price_savings(cart.items), currency)

        return OrderTotals(
            subtotal=subtotal,
            shipping_cost=shipping_cost,
            tax_amount=tax_amount,
            discount_amount=discount_amount,
            total=quantize_money(total, currency),
            savings=savings + discount_amount,
            currency=currency,
        )

    def selected_shipping_cost(
        self, cart: Cart, address: Address, method_id: str | None
    ) -> Decimal:
        """Cost of the chosen method, or zero when none is chosen or offered.

        The id is looked up among the cart-level options first (these carry
        combined multi-vendor ids), then among the item-level platform quotes.
        """
        if not method_id or not cart.items:
            return ZERO

        calculation = self._shipping.calculate_cart_shipping(cart, address)
        for option in calculation.options:
            if option.id == method_id:
                self._logger.selected_method_cost(method_id, option.cost)
                return option.cost

        for rate in self._shipping.calculate_item_shipping(cart.items, address):
            if rate.method_id == method_id:
                self._logger.selected_method_cost(method_id, rate.cost)
                return rate.cost

        self._logger.selected_method_missing(method_id)
        return ZERO

    def calculate_vendor_commission(
        self,
        order_items: Sequence[CartItem],
        vendor_commission_rate: Decimal | float | str,
        currency: str = "USD",
    ) -> Decimal:
        """Commission owed on a vendor's lines; the rate is a percentage."""
        vendor_total = sum((item.total_price for item in order_items), ZERO)
        rate = to_decimal(vendor_commission_rate)
        return quantize_money(vendor_total * rate / HUNDRED, currency)

    def calculate_platform_fees(
        self,
        order_total: Decimal | float | str,
        fee_percentage: Decimal | float | str | None = None,
        currency: str = "USD",
    ) -> Decimal:
        percent = (
            self._platform_fee_percent
            if fee_percentage is None
            else to_decimal(fee_percentage)
        )
        return quantize_money(to_decimal(order_total) * percent / HUNDRED, currency)

    def calculate_estimated_delivery(
        self, processing_time: ProcessingTime, shipping_time: DayRange
    ) -> datetime:
        """Latest expected arrival: max processing time plus max transit days."""
        days = processing_time.max_days + shipping_time.max
        return self._clock() + timedelta(days=days)
