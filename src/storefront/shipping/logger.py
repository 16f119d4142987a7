"""Logging for shipping rate resolution.

Keeps log formatting out of the rate engine and calculator.
"""

from __future__ import annotations

from decimal import Decimal

import loguru
from loguru import logger


class ShippingLogger:
    """Handles all logging for shipping calculations."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def vendor_rates_resolved(
        self, vendor_id: str, rate_count: int, weight_kg: float, source: str
    ) -> None:
        self._logger.bind(
            vendor_id=vendor_id, rates=rate_count, weight_kg=weight_kg, source=source
        ).debug(
            "Vendor {} resolved {} rate(s) from {} ({:.2f} kg)",
            vendor_id,
            rate_count,
            source,
            weight_kg,
        )

    def no_rates(self, vendor_id: str, country: str) -> None:
        self._logger.bind(vendor_id=vendor_id, country=country).info(
            "No shipping rates available for vendor {} to {}", vendor_id, country
        )

    def tier_dropped(self, tier: str, missing_vendors: list[str]) -> None:
        self._logger.bind(tier=tier, missing_vendors=missing_vendors).debug(
            "Dropping {} tier: no rate from vendor(s) {}",
            tier,
            ", ".join(missing_vendors),
        )

    def cart_options(self, vendor_count: int, option_count: int) -> None:
        self._logger.bind(vendors=vendor_count, options=option_count).info(
            "Computed {} shipping option(s) across {} vendor(s)",
            option_count,
            vendor_count,
        )

    def cache_hit(self, key: str) -> None:
        self._logger.bind(cache_key=key[:12]).debug("Shipping cache hit {}", key[:12])

    def selected_method_missing(self, method_id: str) -> None:
        self._logger.bind(method_id=method_id).warning(
            "Selected shipping method {} is not offered for this cart; "
            "charging no shipping",
            method_id,
        )

    def selected_method_cost(self, method_id: str, cost: Decimal) -> None:
        self._logger.bind(method_id=method_id, cost=str(cost)).debug(
            "Selected shipping method {} costs {}", method_id, cost
        )
