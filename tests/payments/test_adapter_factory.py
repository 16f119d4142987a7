from __future__ import annotations

import pytest

from storefront.core.config import (
    PayPalConfig,
    RazorpayConfig,
    StorefrontConfig,
    StripeConfig,
)
from storefront.payments.base import PaymentProviderAdapter, idempotency_key
from storefront.payments.errors import PaymentConfigError
from storefront.payments.factory import create_adapter, create_adapters
from storefront.payments.models import PaymentProvider
from storefront.payments.paypal import PayPalAdapter
from storefront.payments.razorpay import RazorpayAdapter
from storefront.payments.stripe import StripeAdapter

FULL_CONFIG = StorefrontConfig(
    stripe=StripeConfig(secret_key="sk_test", webhook_secret="whsec"),
    paypal=PayPalConfig(client_id="id", client_secret="secret", webhook_id="WH"),
    razorpay=RazorpayConfig(key_id="rzp", key_secret="s", webhook_secret="w"),
)


@pytest.mark.parametrize(
    ("provider", "adapter_type"),
    [
        (PaymentProvider.STRIPE, StripeAdapter),
        ("paypal", PayPalAdapter),
        ("RAZORPAY", RazorpayAdapter),
    ],
)
def test_create_adapter(
    provider: PaymentProvider | str, adapter_type: type
) -> None:
    adapter = create_adapter(provider, FULL_CONFIG)

    assert isinstance(adapter, adapter_type)
    assert isinstance(adapter, PaymentProviderAdapter)


def test_unconfigured_provider_fails() -> None:
    with pytest.raises(PaymentConfigError) as exc_info:
        create_adapter(PaymentProvider.STRIPE, StorefrontConfig())

    assert exc_info.value.code == "PROVIDER_NOT_CONFIGURED"


def test_unknown_provider_fails() -> None:
    with pytest.raises(PaymentConfigError) as exc_info:
        create_adapter("square", FULL_CONFIG)

    assert exc_info.value.code == "UNKNOWN_PROVIDER"


def test_create_adapters_only_for_configured_providers() -> None:
    config = StorefrontConfig(
        razorpay=RazorpayConfig(key_id="rzp", key_secret="s", webhook_secret="w")
    )

    adapters = create_adapters(config)

    assert list(adapters) == [PaymentProvider.RAZORPAY]


def test_idempotency_key_is_deterministic() -> None:
    key = idempotency_key(PaymentProvider.STRIPE, "create", "order-1", "10.00")

    assert key == idempotency_key(PaymentProvider.STRIPE, "create", "order-1", "10.00")
    assert key.startswith("create-")
    assert key != idempotency_key(PaymentProvider.PAYPAL, "create", "order-1", "10.00")
    assert key != idempotency_key(PaymentProvider.STRIPE, "create", "order-2", "10.00")
