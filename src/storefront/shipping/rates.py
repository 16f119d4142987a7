"""Per-vendor shipping rate resolution."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from decimal import Decimal

from storefront.infra.clock import utcnow
from storefront.pricing.models import Address, CartItem
from storefront.pricing.money import ZERO, quantize_money, to_decimal
from storefront.shipping.delivery import (
    DeliveryRadiusPredicate,
    is_within_delivery_radius,
)
from storefront.shipping.logger import ShippingLogger
from storefront.shipping.models import (
    DayRange,
    PackageInfo,
    ShippingMethod,
    ShippingProvider,
    ShippingRate,
    VendorShippingInfo,
    VendorShippingRate,
)
from storefront.shipping.package import dimensional_weight

FREE_SHIPPING_DAYS = DayRange(min=5, max=7)
LOCAL_DELIVERY_DAYS = DayRange(min=1, max=2)
FUEL_SURCHARGE_RATE = Decimal("0.05")
RESIDENTIAL_SURCHARGE = Decimal("2.50")


def items_value(items: Sequence[CartItem]) -> Decimal:
    return sum((item.total_price for item in items), ZERO)


def service_code_for(name: str) -> str:
    return "_".join(name.upper().split())


class RateEngine:
    """Resolve candidate shipping rates for one vendor's package.

    A vendor with shipping configuration gets free, local and custom-rule
    rates; a vendor without it falls back to the platform methods that
    ship to the destination country. An empty result means the vendor
    cannot ship there.
    """

    def __init__(
        self,
        shipping_methods: Sequence[ShippingMethod] = (),
        *,
        delivery_predicate: DeliveryRadiusPredicate = is_within_delivery_radius,
        currency: str = "USD",
        clock: Callable[[], datetime] = utcnow,
        shipping_logger: ShippingLogger | None = None,
    ) -> None:
        self._methods = list(shipping_methods)
        self._delivery_predicate = delivery_predicate
        self._currency = currency
        self._clock = clock
        self._logger = shipping_logger or ShippingLogger()

    @property
    def shipping_methods(self) -> list[ShippingMethod]:
        return list(self._methods)

    @property
    def currency(self) -> str:
        return self._currency

    def vendor_rates(
        self,
        vendor_id: str,
        items: Sequence[CartItem],
        destination: Address,
        package: PackageInfo,
        vendor_info: VendorShippingInfo | None,
    ) -> list[ShippingRate]:
        value = items_value(items)

        if vendor_info is None:
            rates = self.default_rates(package, value, destination, vendor_id=vendor_id)
            source = "platform methods"
        else:
            rates = self._configured_rates(
                vendor_id, vendor_info, destination, package, value
            )
            source = "vendor configuration"

        if rates:
            self._logger.vendor_rates_resolved(
                vendor_id, len(rates), package.weight, source
            )
        else:
            self._logger.no_rates(vendor_id, destination.country)
        return rates

    def default_rates(
        self,
        package: PackageInfo,
        value: Decimal,
        destination: Address,
        *,
        vendor_id: str | None = None,
    ) -> list[ShippingRate]:
        rates: list[ShippingRate] = []
        for method in self._methods:
            if not method.is_active:
                continue
            if not self.is_method_available(method, destination):
                continue
            cost = self.method_cost(method, package, value)
            rates.append(
                ShippingRate(
                    method_id=method.id,
                    method_name=method.name,
                    provider=method.provider,
                    service_code=method.service_code,
                    cost=cost,
                    currency=self._currency,
                    estimated_days=method.estimated_days,
                    estimated_delivery=self.delivery_date(method.estimated_days),
                    base_rate=quantize_money(method.base_rate, self._currency),
                    features=tuple(method.features),
                    vendor_id=vendor_id,
                    fuel_surcharge=self.fuel_surcharge(cost),
                    residential_surcharge=RESIDENTIAL_SURCHARGE,
                )
            )
        return rates

    def method_cost(
        self, method: ShippingMethod, package: PackageInfo, value: Decimal
    ) -> Decimal:
        """Price a platform method for a package.

        ``base + per_kg * weight``, waived entirely at the method's free
        threshold (0 means no threshold), with the per-kg rate also charged
        on any dimensional weight in excess of the actual weight.
        """
        threshold = method.free_shipping_threshold
        if threshold and value >= threshold:
            return quantize_money(ZERO, self._currency)

        cost = method.base_rate
        per_kg = method.per_kg_rate
        if per_kg and package.weight > 0:
            cost += per_kg * to_decimal(package.weight)

        volumetric = dimensional_weight(package.dimensions)
        if per_kg and volumetric > package.weight:
            cost += per_kg * to_decimal(volumetric - package.weight)

        return quantize_money(max(ZERO, cost), self._currency)

    @staticmethod
    def is_method_available(method: ShippingMethod, destination: Address) -> bool:
        return destination.country in method.available_countries

    @staticmethod
    def is_rule_applicable(
        rule: VendorShippingRate, destination: Address, weight_kg: float
    ) -> bool:
        if rule.regions and destination.country not in rule.regions:
            return False
        limits = rule.weight_limits
        return limits is None or limits.contains(weight_kg)

    def fuel_surcharge(self, amount: Decimal) -> Decimal:
        return quantize_money(amount * FUEL_SURCHARGE_RATE, self._currency)

    def delivery_date(self, days: DayRange) -> datetime:
        return self._clock() + timedelta(days=(days.min + days.max) / 2)

    def _configured_rates(
        self,
        vendor_id: str,
        info: VendorShippingInfo,
        destination: Address,
        package: PackageInfo,
        value: Decimal,
    ) -> list[ShippingRate]:
        rates: list[ShippingRate] = []
        zero = quantize_money(ZERO, self._currency)

        if (
            info.free_shipping_enabled
            and info.free_shipping_min_amount is not None
            and value >= info.free_shipping_min_amount
        ):
            rates.append(
                ShippingRate(
                    method_id=f"{vendor_id}-free",
                    method_name="Free Shipping",
                    provider=ShippingProvider.CUSTOM,
                    service_code="FREE",
                    cost=zero,
                    currency=self._currency,
                    estimated_days=FREE_SHIPPING_DAYS,
                    estimated_delivery=self.delivery_date(FREE_SHIPPING_DAYS),
                    base_rate=zero,
                    features=("free_shipping",),
                    vendor_id=vendor_id,
                )
            )

        if info.local_delivery_enabled and self._delivery_predicate(
            info.origin, destination, info.local_delivery_radius_km or 0.0
        ):
            fee = quantize_money(info.local_delivery_fee or ZERO, self._currency)
            rates.append(
                ShippingRate(
                    method_id=f"{vendor_id}-local",
                    method_name="Local Delivery",
                    provider=ShippingProvider.LOCAL_COURIER,
                    service_code="LOCAL",
                    cost=fee,
                    currency=self._currency,
                    estimated_days=LOCAL_DELIVERY_DAYS,
                    estimated_delivery=self._clock() + timedelta(days=1),
                    base_rate=fee,
                    features=("local_delivery",),
                    vendor_id=vendor_id,
                )
            )

        for rule in info.shipping_rates:
            if not self.is_rule_applicable(rule, destination, package.weight):
                continue
            waived = (
                rule.free_threshold is not None and 0 < rule.free_threshold <= value
            )
            rates.append(
                ShippingRate(
                    method_id=rule.id,
                    method_name=rule.name,
                    provider=ShippingProvider.CUSTOM,
                    service_code=service_code_for(rule.name),
                    cost=zero if waived else quantize_money(rule.rate, self._currency),
                    currency=self._currency,
                    estimated_days=rule.estimated_days,
                    estimated_delivery=self.delivery_date(rule.estimated_days),
                    base_rate=quantize_money(rule.rate, self._currency),
                    vendor_id=vendor_id,
                    fuel_surcharge=self.fuel_surcharge(rule.rate),
                )
            )

        return rates
