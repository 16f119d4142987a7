"""Explicit wiring of the storefront's long-lived collaborators."""

from __future__ import annotations

from dataclasses import dataclass, field

from loguru import logger

from storefront.adapters.db.facade import DB
from storefront.core.config import StorefrontConfig
from storefront.core.tables import load_shipping_methods
from storefront.infra.cache import TTLCache
from storefront.payments.base import PaymentProviderAdapter
from storefront.payments.factory import create_adapters
from storefront.payments.logger import PaymentLogger
from storefront.payments.models import PaymentProvider
from storefront.pricing.discounts import DiscountEngine
from storefront.pricing.orders import OrderCalculator
from storefront.pricing.tax import TaxEngine
from storefront.services.idempotency import DatabaseEventStore
from storefront.services.payments import PaymentService
from storefront.shipping.calculator import ShippingCalculator
from storefront.shipping.logger import ShippingLogger

SHIPPING_CACHE_TTL_SECONDS = 300.0


@dataclass
class AppContext:
    """Everything a command or request handler needs, built once per process."""

    config: StorefrontConfig
    db: DB
    shipping: ShippingCalculator
    orders: OrderCalculator
    adapters: dict[PaymentProvider, PaymentProviderAdapter] = field(
        default_factory=dict
    )
    payments: PaymentService | None = None

    def payment_service(self) -> PaymentService:
        if self.payments is None:
            self.payments = PaymentService(
                self.db,
                self.adapters,
                event_store=DatabaseEventStore(
                    self.db, self.config.webhook_dedup_ttl_seconds
                ),
            )
        return self.payments


def build_app_context(config: StorefrontConfig) -> AppContext:
    """Build calculators, adapters and the database from ``config``."""
    shipping_logger = ShippingLogger()
    methods = (
        load_shipping_methods(config.shipping_methods_path)
        if config.shipping_methods_path
        else []
    )
    tax_engine = (
        TaxEngine.from_yaml(config.tax_table_path)
        if config.tax_table_path
        else TaxEngine()
    )
    shipping = ShippingCalculator(
        methods,
        cache=TTLCache(default_ttl_seconds=SHIPPING_CACHE_TTL_SECONDS),
        shipping_logger=shipping_logger,
    )
    orders = OrderCalculator(
        shipping,
        tax_engine,
        DiscountEngine(currency=config.currency),
        platform_fee_percent=config.platform_fee_percent,
        shipping_logger=shipping_logger,
    )
    adapters = create_adapters(config, payment_logger=PaymentLogger())
    logger.bind(providers=config.enabled_providers).debug(
        "Built app context with {} shipping methods and providers {}",
        len(methods),
        ", ".join(config.enabled_providers) or "none",
    )
    return AppContext(
        config=config,
        db=DB(config.database_url),
        shipping=shipping,
        orders=orders,
        adapters=adapters,
    )
