from __future__ import annotations

from decimal import Decimal

from pydantic import ValidationError
import pytest

from storefront.pricing.models import AppliedCoupon, Cart, CartItem
from storefront.pricing.validation import validate_cart
from tests.fixtures.carts import make_cart, make_item, us_address


def test_consistent_cart_is_ok() -> None:
    cart = make_cart(make_item(quantity=2, unit_price="4.50"))

    result = validate_cart(cart)

    assert result.ok is True
    assert result.issues == []


def test_empty_cart_is_reported() -> None:
    result = validate_cart(Cart())

    assert result.ok is False
    assert [issue.field for issue in result.issues] == ["items"]


def test_mismatched_line_total_is_reported() -> None:
    # input
    item = make_item(quantity=2, unit_price="4.50", total_price=Decimal("10.00"))

    # act
    result = validate_cart(make_cart(item))

    # assert
    assert len(result.issues) == 1
    assert result.issues[0].field == "items[0].total_price"
    assert "expected 9.00" in result.issues[0].message


def test_duplicate_coupon_is_reported() -> None:
    coupon = AppliedCoupon(id="c1", code="SAVE5", discount_amount=Decimal("5"))
    cart = make_cart(make_item(), applied_coupons=[coupon, coupon])

    result = validate_cart(cart)

    assert [issue.message for issue in result.issues] == [
        "coupon SAVE5 applied more than once"
    ]


class TestSnapshotModels:
    """Field constraints on the cart snapshot."""

    def test_total_price_defaults_to_unit_price_times_quantity(self) -> None:
        item = make_item(quantity=3, unit_price="2.50")

        assert item.total_price == Decimal("7.50")

    def test_quantity_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            make_item(quantity=0)

    def test_unit_price_must_not_be_negative(self) -> None:
        with pytest.raises(ValidationError):
            make_item(unit_price="-1.00")

    def test_country_and_state_are_normalized(self) -> None:
        address = us_address(" tx ", country=" us")

        assert address.country == "US"
        assert address.state == "TX"

    def test_items_value_and_vendor_ids(self) -> None:
        item = CartItem.parse(
            {
                "product_id": "p",
                "vendor_id": "v",
                "quantity": 1,
                "unit_price": "1",
            }
        )
        cart = Cart.parse({"items": [item]})

        assert cart.vendor_ids == ["v"]
        assert cart.items_value == Decimal("1.00")
