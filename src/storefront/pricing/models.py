"""Cart and address snapshots consumed by the pricing pipeline."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from storefront.pricing.money import quantize_money, to_decimal

ProductType = Literal["PHYSICAL", "DIGITAL", "SERVICE"]
DimensionUnit = Literal["CM", "IN"]
CouponType = Literal["PERCENTAGE", "FIXED_AMOUNT", "FREE_SHIPPING"]
CouponTarget = Literal["CART", "SHIPPING", "ITEM"]

CM_PER_INCH = 2.54


class SnapshotModel(BaseModel):
    """Shared base for immutable input snapshots with a short parse alias."""

    model_config = ConfigDict(frozen=True)

    @classmethod
    def parse(cls, data: Any) -> Self:
        return cls.model_validate(data)


class Dimensions(SnapshotModel):
    length: float = Field(gt=0)
    width: float = Field(gt=0)
    height: float = Field(gt=0)
    unit: DimensionUnit = "CM"

    def in_cm(self) -> tuple[float, float, float]:
        if self.unit == "IN":
            return (
                self.length * CM_PER_INCH,
                self.width * CM_PER_INCH,
                self.height * CM_PER_INCH,
            )
        return (self.length, self.width, self.height)

    @property
    def volume_cm3(self) -> float:
        length, width, height = self.in_cm()
        return length * width * height


class Address(SnapshotModel):
    """Destination or origin address.

    Coordinates are optional; they are only consulted by the local
    delivery radius check.
    """

    country: str = Field(min_length=2, max_length=2)
    state: str | None = None
    city: str | None = None
    postal_code: str | None = None
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)

    @model_validator(mode="before")
    @classmethod
    def _normalize_codes(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            if isinstance(data.get("country"), str):
                data["country"] = data["country"].strip().upper()
            if isinstance(data.get("state"), str):
                data["state"] = data["state"].strip().upper() or None
        return data

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class AppliedCoupon(SnapshotModel):
    """A coupon already validated upstream, carrying its computed discount."""

    id: str
    code: str
    type: CouponType = "FIXED_AMOUNT"
    value: Decimal = Decimal("0")
    discount_amount: Decimal = Field(ge=0)
    applied_to: CouponTarget = "CART"


class CartItem(SnapshotModel):
    """Line item snapshot taken when the cart was last mutated."""

    id: str | None = None
    product_id: str
    variant_id: str | None = None
    vendor_id: str
    category_id: str | None = None
    product_type: ProductType = "PHYSICAL"
    quantity: int = Field(ge=1)
    unit_price: Decimal = Field(ge=0)
    compare_price: Decimal | None = Field(default=None, ge=0)
    total_price: Decimal = Field(ge=0)
    weight: float | None = Field(default=None, ge=0)  # kg
    dimensions: Dimensions | None = None

    @model_validator(mode="before")
    @classmethod
    def _default_total_price(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("total_price") is None:
            data = dict(data)
            if data.get("unit_price") is not None and data.get("quantity") is not None:
                data["total_price"] = to_decimal(data["unit_price"]) * int(
                    data["quantity"]
                )
        return data

    @property
    def is_taxable(self) -> bool:
        return self.product_type == "PHYSICAL"


class Cart(BaseModel):
    """Ordered cart snapshot.

    The persisted figures (subtotal, shipping_cost, ...) mirror what the
    storefront last stored; the calculators never read them back and always
    recompute from ``items``.
    """

    id: str | None = None
    user_id: str | None = None
    items: list[CartItem] = Field(default_factory=list)
    currency: str = "USD"
    applied_coupons: list[AppliedCoupon] = Field(default_factory=list)
    selected_shipping_method_id: str | None = None
    subtotal: Decimal = Decimal("0")
    shipping_cost: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    discount_amount: Decimal = Decimal("0")
    total: Decimal = Decimal("0")

    @classmethod
    def parse(cls, data: Any) -> Self:
        return cls.model_validate(data)

    @property
    def items_value(self) -> Decimal:
        return quantize_money(
            sum((item.total_price for item in self.items), Decimal("0")),
            self.currency,
        )

    @property
    def vendor_ids(self) -> list[str]:
        seen: dict[str, None] = {}
        for item in self.items:
            seen.setdefault(item.vendor_id, None)
        return list(seen)
