"""Cart-level shipping calculation.

Groups a cart by vendor, estimates each vendor's package, resolves the
vendor's candidate rates and combines them into the options shown at
checkout.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from datetime import datetime, timedelta
from decimal import Decimal

from storefront.infra.cache import TTLCache, stable_key
from storefront.infra.clock import utcnow
from storefront.pricing.models import Address, Cart, CartItem
from storefront.shipping.combiner import combine_shipping_options
from storefront.shipping.logger import ShippingLogger
from storefront.shipping.models import (
    CartShippingCalculation,
    DayRange,
    ProcessingTime,
    ShippingMethod,
    ShippingOption,
    ShippingProvider,
    ShippingRate,
    VendorRates,
    VendorShippingInfo,
)
from storefront.shipping.package import calculate_package_info
from storefront.shipping.rates import RateEngine, items_value

CACHE_NAMESPACE = "cart-shipping"

# (method id, name, cost, days, features) quoted when no platform methods exist
FLAT_RATE_QUOTES: tuple[tuple[str, str, Decimal, DayRange, tuple[str, ...]], ...] = (
    (
        "standard",
        "Standard Shipping",
        Decimal("9.99"),
        DayRange(min=3, max=5),
        ("tracking",),
    ),
    (
        "express",
        "Express Shipping",
        Decimal("19.99"),
        DayRange(min=1, max=2),
        ("tracking", "signature"),
    ),
)


class ShippingCalculator:
    """Entry point for shipping quotes on a cart or a list of items."""

    def __init__(
        self,
        shipping_methods: Sequence[ShippingMethod] = (),
        vendor_shipping_info: Mapping[str, VendorShippingInfo] | None = None,
        *,
        rate_engine: RateEngine | None = None,
        clock: Callable[[], datetime] = utcnow,
        cache: TTLCache | None = None,
        shipping_logger: ShippingLogger | None = None,
    ) -> None:
        self._logger = shipping_logger or ShippingLogger()
        self._clock = clock
        self._engine = rate_engine or RateEngine(
            shipping_methods, clock=clock, shipping_logger=self._logger
        )
        self._vendor_info: dict[str, VendorShippingInfo] = dict(
            vendor_shipping_info or {}
        )
        self._cache = cache

    @property
    def rate_engine(self) -> RateEngine:
        return self._engine

    def set_vendor_shipping_info(
        self, vendor_id: str, shipping_info: VendorShippingInfo
    ) -> None:
        self._vendor_info[vendor_id] = shipping_info
        if self._cache is not None:
            self._cache.clear_namespace(CACHE_NAMESPACE)

    def vendor_shipping_info(self, vendor_id: str) -> VendorShippingInfo | None:
        return self._vendor_info.get(vendor_id)

    @staticmethod
    def group_items_by_vendor(items: Sequence[CartItem]) -> dict[str, list[CartItem]]:
        """Group items by vendor id, preserving first-seen vendor order."""
        grouped: dict[str, list[CartItem]] = {}
        for item in items:
            grouped.setdefault(item.vendor_id, []).append(item)
        return grouped

    def calculate_cart_shipping(
        self, cart: Cart, address: Address
    ) -> CartShippingCalculation:
        cache_key = self._cache_key(cart, address)
        if self._cache is not None:
            cached = self._cache.get(CACHE_NAMESPACE, cache_key)
            if cached is not None:
                self._logger.cache_hit(cache_key)
                return cached

        vendor_rates: list[VendorRates] = []
        for vendor_id, items in self.group_items_by_vendor(cart.items).items():
            info = self._vendor_info.get(vendor_id)
            package = calculate_package_info(items)
            rates = self._engine.vendor_rates(vendor_id, items, address, package, info)
            vendor_rates.append(
                VendorRates(
                    vendor_id=vendor_id,
                    rates=rates,
                    package=package,
                    processing_time=(
                        info.processing_time if info is not None else ProcessingTime()
                    ),
                )
            )

        options = combine_shipping_options(vendor_rates, self._logger)
        self._logger.cart_options(len(vendor_rates), len(options))

        total_package = calculate_package_info(cart.items)
        result = CartShippingCalculation(
            shipping_address=address,
            options=options,
            total_weight=total_package.weight,
            total_dimensions=total_package.dimensions,
            estimated_delivery=self.estimated_delivery(options[0] if options else None),
        )
        if self._cache is not None:
            self._cache.set(CACHE_NAMESPACE, cache_key, result)
        return result

    def calculate_item_shipping(
        self, items: Sequence[CartItem], address: Address
    ) -> list[ShippingRate]:
        """Quote platform-level rates for ``items`` shipped as one package.

        Uses the configured platform methods; without any, returns the flat
        standard and express quotes.
        """
        package = calculate_package_info(items)
        if self._engine.shipping_methods:
            return self._engine.default_rates(package, items_value(items), address)

        currency = self._engine.currency
        return [
            ShippingRate(
                method_id=method_id,
                method_name=name,
                provider=ShippingProvider.CUSTOM,
                service_code=method_id.upper(),
                cost=cost,
                currency=currency,
                estimated_days=days,
                estimated_delivery=self._engine.delivery_date(days),
                base_rate=cost,
                features=features,
            )
            for method_id, name, cost, days, features in FLAT_RATE_QUOTES
        ]

    def estimated_delivery(self, option: ShippingOption | None) -> datetime | None:
        if option is None:
            return None
        return self._clock() + timedelta(days=option.estimated_days.max)

    def _cache_key(self, cart: Cart, address: Address) -> str:
        return stable_key(
            {
                "items": [item.model_dump(mode="json") for item in cart.items],
                "currency": cart.currency,
                "address": address.model_dump(mode="json"),
            }
        )
