from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from storefront.pricing.models import AppliedCoupon, Cart
from storefront.pricing.orders import (
    OrderCalculator,
    OrderTotals,
    compare_price_savings,
)
from storefront.pricing.tax import TaxEngine
from storefront.shipping.calculator import ShippingCalculator
from storefront.shipping.models import DayRange, ProcessingTime, VendorShippingInfo
from tests.fixtures.carts import (
    FIXED_NOW,
    fixed_clock,
    make_cart,
    make_item,
    make_method,
    make_rule,
    us_address,
)


def create_calculator(
    shipping: ShippingCalculator | None = None,
) -> OrderCalculator:
    return OrderCalculator(
        shipping or ShippingCalculator([make_method("ground")], clock=fixed_clock),
        TaxEngine(),
        clock=fixed_clock,
    )


def coupon(amount: str) -> AppliedCoupon:
    return AppliedCoupon(id="c1", code="SAVE", discount_amount=Decimal(amount))


def assert_total_identity(totals: OrderTotals) -> None:
    expected = max(
        Decimal("0"),
        totals.subtotal
        + totals.shipping_cost
        + totals.tax_amount
        - totals.discount_amount,
    )
    assert totals.total == expected


class TestOrderTotals:
    """Totals for a cart shipped to an address."""

    def test_all_components(self) -> None:
        # input
        cart = make_cart(
            make_item(unit_price="50.00", weight=1.0),
            applied_coupons=[coupon("10.00")],
        )

        # act
        totals = create_calculator().calculate_order_totals(
            cart, us_address("CA"), "ground"
        )

        # assert
        assert totals.subtotal == Decimal("50.00")
        assert totals.shipping_cost == Decimal("7.00")
        assert totals.tax_amount == Decimal("5.00")
        assert totals.discount_amount == Decimal("10.00")
        assert totals.total == Decimal("52.00")
        assert totals.currency == "USD"
        assert_total_identity(totals)

    def test_no_method_selected_means_no_shipping(self) -> None:
        cart = make_cart(make_item(unit_price="20.00"))

        totals = create_calculator().calculate_order_totals(cart, us_address("TX"))

        assert totals.shipping_cost == Decimal("0.00")
        assert totals.total == Decimal("21.25")

    def test_unknown_method_costs_nothing(self) -> None:
        cart = make_cart(make_item(unit_price="20.00"))

        totals = create_calculator().calculate_order_totals(
            cart, us_address("TX"), "teleport"
        )

        assert totals.shipping_cost == Decimal("0.00")

    def test_combined_option_can_be_selected(self) -> None:
        # input
        shipping = ShippingCalculator(
            vendor_shipping_info={
                "vendor-a": VendorShippingInfo(
                    shipping_rates=[make_rule("a-std", rate="4.00")]
                ),
                "vendor-b": VendorShippingInfo(
                    shipping_rates=[make_rule("b-std", rate="5.50")]
                ),
            },
            clock=fixed_clock,
        )
        cart = make_cart(
            make_item(product_id="p1", vendor_id="vendor-a"),
            make_item(product_id="p2", vendor_id="vendor-b"),
        )

        # act
        totals = create_calculator(shipping).calculate_order_totals(
            cart, us_address("FL"), "combined-standard"
        )

        # assert
        assert totals.shipping_cost == Decimal("9.50")

    def test_item_level_quote_can_be_selected(self) -> None:
        calculator = create_calculator(ShippingCalculator(clock=fixed_clock))
        cart = make_cart(make_item(unit_price="20.00"))

        totals = calculator.calculate_order_totals(cart, us_address("FL"), "express")

        assert totals.shipping_cost == Decimal("19.99")

    def test_empty_cart_totals_zero(self) -> None:
        totals = create_calculator().calculate_order_totals(
            Cart(), us_address(), "ground"
        )

        assert totals.total == Decimal("0.00")
        assert totals.shipping_cost == Decimal("0.00")

    def test_savings_include_compare_price_and_coupon(self) -> None:
        cart = make_cart(
            make_item(
                product_id="a",
                quantity=2,
                unit_price="8.00",
                compare_price=Decimal("10.00"),
            ),
            make_item(product_id="b", unit_price="5.00", compare_price=Decimal("4")),
            applied_coupons=[coupon("1.50")],
        )

        totals = create_calculator().calculate_order_totals(cart, us_address())

        assert compare_price_savings(cart.items) == Decimal("4.00")
        assert totals.savings == Decimal("5.50")

    def test_currency_follows_cart(self) -> None:
        cart = make_cart(make_item(unit_price="1000"), currency="JPY")

        totals = create_calculator().calculate_order_totals(cart, us_address("CA"))

        assert totals.currency == "JPY"
        assert totals.tax_amount == Decimal("100")


class TestFees:
    """Commission, platform fees and delivery estimates."""

    def test_vendor_commission_is_a_percentage(self) -> None:
        items = [make_item(unit_price="40.00"), make_item(unit_price="60.00")]

        commission = create_calculator().calculate_vendor_commission(items, "12.5")

        assert commission == Decimal("12.50")

    def test_platform_fee_default_and_override(self) -> None:
        calculator = create_calculator()

        assert calculator.calculate_platform_fees("100.00") == Decimal("2.90")
        assert calculator.calculate_platform_fees("100.00", "5") == Decimal("5.00")

    @pytest.mark.parametrize(
        ("processing", "expected_days"),
        [
            (ProcessingTime(min=1, max=2), 7),
            (ProcessingTime(min=12, max=48, unit="hours"), 7),
            (ProcessingTime(min=0, max=0), 5),
        ],
    )
    def test_estimated_delivery(
        self, processing: ProcessingTime, expected_days: int
    ) -> None:
        estimate = create_calculator().calculate_estimated_delivery(
            processing, DayRange(min=3, max=5)
        )

        assert estimate == FIXED_NOW + timedelta(days=expected_days)
