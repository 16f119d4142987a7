from __future__ import annotations

from storefront.core.config import StorefrontConfig
from storefront.payments.base import PaymentProviderAdapter
from storefront.payments.errors import PaymentConfigError
from storefront.payments.logger import PaymentLogger
from storefront.payments.models import PaymentProvider
from storefront.payments.paypal import PayPalAdapter
from storefront.payments.razorpay import RazorpayAdapter
from storefront.payments.stripe import StripeAdapter


def create_adapter(
    provider: PaymentProvider | str,
    config: StorefrontConfig,
    *,
    payment_logger: PaymentLogger | None = None,
) -> PaymentProviderAdapter:
    """Build the adapter for ``provider`` from loaded configuration.

    Raises ``PaymentConfigError`` when the provider has no credentials.
    """
    if isinstance(provider, str):
        try:
            provider = PaymentProvider(provider.upper())
        except ValueError as e:
            raise PaymentConfigError(
                f"Unknown payment provider: {provider}", code="UNKNOWN_PROVIDER"
            ) from e

    if provider is PaymentProvider.STRIPE and config.stripe is not None:
        return StripeAdapter(
            config.stripe,
            transport_config=config.transport,
            payment_logger=payment_logger,
        )
    if provider is PaymentProvider.PAYPAL and config.paypal is not None:
        return PayPalAdapter(
            config.paypal,
            transport_config=config.transport,
            payment_logger=payment_logger,
        )
    if provider is PaymentProvider.RAZORPAY and config.razorpay is not None:
        return RazorpayAdapter(
            config.razorpay,
            transport_config=config.transport,
            payment_logger=payment_logger,
        )
    raise PaymentConfigError(
        f"{provider.value} is not configured",
        provider=provider,
        code="PROVIDER_NOT_CONFIGURED",
    )


def create_adapters(
    config: StorefrontConfig, *, payment_logger: PaymentLogger | None = None
) -> dict[PaymentProvider, PaymentProviderAdapter]:
    """Adapters for every provider with credentials in ``config``."""
    return {
        PaymentProvider(name): create_adapter(
            name, config, payment_logger=payment_logger
        )
        for name in config.enabled_providers
    }
