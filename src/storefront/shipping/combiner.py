"""Combine per-vendor rates into cart-level shipping options."""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal

from storefront.pricing.money import ZERO
from storefront.shipping.logger import ShippingLogger
from storefront.shipping.models import (
    DayRange,
    ShippingOption,
    ShippingRate,
    VendorRateBreakdown,
    VendorRates,
)

EXPRESS = "express"
STANDARD = "standard"
ECONOMY = "economy"
TIER_ORDER = (EXPRESS, STANDARD, ECONOMY)


def delivery_tier(rate: ShippingRate) -> str:
    """Bucket a rate by its slowest estimated delivery."""
    if rate.estimated_days.max <= 2:
        return EXPRESS
    if rate.estimated_days.max <= 5:
        return STANDARD
    return ECONOMY


def describe_days(days: DayRange) -> str:
    return f"Estimated delivery in {days.min}-{days.max} business days"


def rate_to_option(rate: ShippingRate) -> ShippingOption:
    return ShippingOption(
        id=rate.method_id,
        name=rate.method_name,
        description=describe_days(rate.estimated_days),
        cost=rate.cost,
        estimated_days=rate.estimated_days,
        tracking_enabled="tracking" in rate.features,
        tier=delivery_tier(rate),
    )


def _cheapest(rates: list[ShippingRate]) -> ShippingRate:
    return min(rates, key=lambda rate: rate.cost)


def combine_shipping_options(
    vendor_rates: Sequence[VendorRates],
    shipping_logger: ShippingLogger | None = None,
) -> list[ShippingOption]:
    """Return the shipping options offered for the whole cart.

    A single vendor's rates pass through one-to-one. With several vendors a
    tier is offered only when every vendor has at least one rate in it;
    each vendor contributes its cheapest rate in the tier, costs are summed
    and the day range spans all contributing rates.
    """
    if not vendor_rates:
        return []
    if len(vendor_rates) == 1:
        return [rate_to_option(rate) for rate in vendor_rates[0].rates]

    log = shipping_logger or ShippingLogger()
    by_tier: dict[str, dict[str, list[ShippingRate]]] = {
        tier: {} for tier in TIER_ORDER
    }
    for entry in vendor_rates:
        for rate in entry.rates:
            by_tier[delivery_tier(rate)].setdefault(entry.vendor_id, []).append(rate)

    options: list[ShippingOption] = []
    for tier in TIER_ORDER:
        contributions = by_tier[tier]
        missing = [
            entry.vendor_id
            for entry in vendor_rates
            if entry.vendor_id not in contributions
        ]
        if missing:
            if contributions:
                log.tier_dropped(tier, missing)
            continue

        chosen = [
            (entry, _cheapest(contributions[entry.vendor_id])) for entry in vendor_rates
        ]
        total: Decimal = sum((rate.cost for _, rate in chosen), ZERO)
        days = DayRange(
            min=min(rate.estimated_days.min for _, rate in chosen),
            max=max(rate.estimated_days.max for _, rate in chosen),
        )
        options.append(
            ShippingOption(
                id=f"combined-{tier}",
                name=f"Combined {tier.title()} Shipping",
                description=describe_days(days),
                cost=total,
                estimated_days=days,
                tracking_enabled=True,
                tier=tier,
                vendor_rates=tuple(
                    VendorRateBreakdown(
                        vendor_id=entry.vendor_id,
                        rate=rate.cost,
                        method_id=rate.method_id,
                        processing_time=entry.processing_time,
                    )
                    for entry, rate in chosen
                ),
            )
        )
    return options
