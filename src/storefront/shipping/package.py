"""Estimate a shipping package from cart line items.

This is a volume heuristic, not bin packing: the total volume of all
items is turned into a slightly elongated box and each side is floored
at a small-parcel minimum.
"""

from __future__ import annotations

from collections.abc import Sequence
import math

from storefront.pricing.models import CartItem, Dimensions
from storefront.shipping.models import PackageInfo

DEFAULT_ITEM_WEIGHT_KG = 0.5
DEFAULT_ITEM_DIMENSIONS = Dimensions(length=20, width=15, height=10, unit="CM")

# (multiplier on the cube root, minimum side in cm)
_LENGTH = (1.3, 20.0)
_WIDTH = (1.1, 15.0)
_HEIGHT = (0.8, 10.0)

DIMENSIONAL_WEIGHT_DIVISOR = 5000.0


def item_weight(item: CartItem) -> float:
    weight = item.weight if item.weight is not None else DEFAULT_ITEM_WEIGHT_KG
    return weight * item.quantity


def item_volume(item: CartItem) -> float:
    dimensions = item.dimensions or DEFAULT_ITEM_DIMENSIONS
    return dimensions.volume_cm3 * item.quantity


def total_weight(items: Sequence[CartItem]) -> float:
    return sum((item_weight(item) for item in items), 0.0)


def calculate_package_info(items: Sequence[CartItem]) -> PackageInfo:
    """Return the estimated weight (kg) and box dimensions (cm) for ``items``."""
    volume = sum((item_volume(item) for item in items), 0.0)
    side = math.cbrt(volume)
    dimensions = Dimensions(
        length=max(side * _LENGTH[0], _LENGTH[1]),
        width=max(side * _WIDTH[0], _WIDTH[1]),
        height=max(side * _HEIGHT[0], _HEIGHT[1]),
        unit="CM",
    )
    return PackageInfo(weight=total_weight(items), dimensions=dimensions)


def dimensional_weight(dimensions: Dimensions) -> float:
    """Volumetric weight in kg: L x W x H (cm) / 5000."""
    return dimensions.volume_cm3 / DIMENSIONAL_WEIGHT_DIVISOR
