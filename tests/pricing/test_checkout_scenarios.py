"""End-to-end checkout examples exercising shipping, tax and discounts together."""

from __future__ import annotations

from decimal import Decimal

import pytest

from storefront.pricing.discounts import DiscountEngine
from storefront.pricing.models import Address, AppliedCoupon, Cart
from storefront.pricing.orders import OrderCalculator
from storefront.pricing.tax import TaxEngine
from storefront.shipping.calculator import ShippingCalculator
from storefront.shipping.models import VendorShippingInfo
from tests.fixtures.carts import (
    ca_address,
    fixed_clock,
    make_cart,
    make_item,
    make_method,
    make_rule,
    us_address,
)


def test_platform_method_priced_by_weight() -> None:
    # input
    shipping = ShippingCalculator(
        [make_method("ground", base_rate="5.00", per_kg_rate="2.00")],
        clock=fixed_clock,
    )
    cart = make_cart(make_item(weight=2.0))

    # act
    result = shipping.calculate_cart_shipping(cart, us_address())

    # assert
    assert [(option.id, option.cost) for option in result.options] == [
        ("ground", Decimal("9.00"))
    ]


def test_digital_goods_are_not_taxed() -> None:
    # input
    cart = make_cart(
        make_item(product_id="ebook", product_type="DIGITAL", unit_price="60.00"),
        make_item(product_id="lamp", unit_price="60.00"),
    )

    # act
    tax = TaxEngine().calculate_cart_tax(cart, us_address("CA"))

    # assert
    assert tax == Decimal("6.00")


def test_multi_vendor_cart_only_offers_shared_tier() -> None:
    # input
    shipping = ShippingCalculator(
        vendor_shipping_info={
            "vendor-a": VendorShippingInfo(
                shipping_rates=[make_rule("a-express", rate="15.00", days=(1, 2))]
            ),
            "vendor-b": VendorShippingInfo(
                shipping_rates=[
                    make_rule("b-express", rate="14.00", days=(1, 2)),
                    make_rule("b-standard", rate="5.00", days=(3, 5)),
                ]
            ),
        },
        clock=fixed_clock,
    )
    cart = make_cart(
        make_item(product_id="p1", vendor_id="vendor-a"),
        make_item(product_id="p2", vendor_id="vendor-b"),
    )

    # act
    result = shipping.calculate_cart_shipping(cart, us_address())

    # assert
    assert [option.id for option in result.options] == ["combined-express"]
    assert result.options[0].cost == Decimal("29.00")


def test_coupon_larger_than_order_clamps_total_to_zero() -> None:
    # input
    cart = make_cart(
        make_item(product_id="sticker", product_type="DIGITAL", unit_price="5.00"),
        applied_coupons=[
            AppliedCoupon(id="c1", code="TENOFF", discount_amount=Decimal("10.00"))
        ],
    )

    # act
    totals = OrderCalculator(clock=fixed_clock).calculate_order_totals(
        cart, us_address("CA")
    )

    # assert
    assert totals.discount_amount == Decimal("10.00")
    assert totals.total == Decimal("0.00")


def test_volume_discount_on_seven_units() -> None:
    assert DiscountEngine().calculate_volume_discount(7, Decimal("20.00")) == Decimal(
        "2.00"
    )


@pytest.mark.parametrize(
    "cart",
    [
        make_cart(make_item(unit_price="19.99", quantity=3, weight=0.7)),
        make_cart(
            make_item(product_id="a", unit_price="0.01"),
            make_item(product_id="b", unit_price="333.33", weight=12.0),
        ),
        make_cart(
            make_item(unit_price="12.34"),
            applied_coupons=[
                AppliedCoupon(id="c", code="X", discount_amount=Decimal("3.333"))
            ],
        ),
        make_cart(
            make_item(unit_price="5.00"),
            applied_coupons=[
                AppliedCoupon(id="c", code="X", discount_amount=Decimal("99"))
            ],
        ),
    ],
)
@pytest.mark.parametrize("address", [us_address("TX"), ca_address()])
def test_total_identity_holds_on_rounded_components(
    cart: Cart, address: Address
) -> None:
    # input
    calculator = OrderCalculator(
        ShippingCalculator(
            [make_method("ground", countries=("US", "CA"))], clock=fixed_clock
        ),
        clock=fixed_clock,
    )

    # act
    totals = calculator.calculate_order_totals(cart, address, "ground")

    # assert
    for component in (
        totals.subtotal,
        totals.shipping_cost,
        totals.tax_amount,
        totals.discount_amount,
        totals.total,
    ):
        assert component == component.quantize(Decimal("0.01"))
    expected = max(
        Decimal("0"),
        totals.subtotal
        + totals.shipping_cost
        + totals.tax_amount
        - totals.discount_amount,
    )
    assert totals.total == expected
    assert totals.total >= 0
