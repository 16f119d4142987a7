"""Shipping rate resolution, package estimation and multi-vendor options."""

from storefront.shipping.calculator import FLAT_RATE_QUOTES, ShippingCalculator
from storefront.shipping.combiner import combine_shipping_options, delivery_tier
from storefront.shipping.delivery import (
    DeliveryRadiusPredicate,
    is_within_delivery_radius,
    same_city,
)
from storefront.shipping.models import (
    CartShippingCalculation,
    DayRange,
    PackageInfo,
    ProcessingTime,
    ShippingMethod,
    ShippingOption,
    ShippingProvider,
    ShippingRate,
    VendorRates,
    VendorShippingInfo,
    VendorShippingRate,
    WeightLimits,
)
from storefront.shipping.package import calculate_package_info, dimensional_weight
from storefront.shipping.rates import RateEngine

__all__ = [
    "FLAT_RATE_QUOTES",
    "CartShippingCalculation",
    "DayRange",
    "DeliveryRadiusPredicate",
    "PackageInfo",
    "ProcessingTime",
    "RateEngine",
    "ShippingCalculator",
    "ShippingMethod",
    "ShippingOption",
    "ShippingProvider",
    "ShippingRate",
    "VendorRates",
    "VendorShippingInfo",
    "VendorShippingRate",
    "WeightLimits",
    "calculate_package_info",
    "combine_shipping_options",
    "delivery_tier",
    "dimensional_weight",
    "is_within_delivery_radius",
    "same_city",
]
