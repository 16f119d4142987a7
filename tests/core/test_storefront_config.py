from __future__ import annotations

from decimal import Decimal

import pytest

from storefront.core.config import (
    DEFAULT_DATABASE_URL,
    DEFAULT_PAYMENT_MAX_RETRIES,
    load_config_from_env,
)

ENV_VARS = (
    "STOREFRONT_DATABASE_URL",
    "STOREFRONT_CURRENCY",
    "STOREFRONT_PLATFORM_FEE_PERCENT",
    "STOREFRONT_TAX_TABLE",
    "STOREFRONT_SHIPPING_METHODS",
    "STOREFRONT_WEBHOOK_DEDUP_TTL_SECONDS",
    "STOREFRONT_PAYMENT_TIMEOUT_SECONDS",
    "STOREFRONT_PAYMENT_MAX_RETRIES",
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
    "PAYPAL_CLIENT_ID",
    "PAYPAL_CLIENT_SECRET",
    "PAYPAL_WEBHOOK_ID",
    "PAYPAL_ENV",
    "RAZORPAY_KEY_ID",
    "RAZORPAY_KEY_SECRET",
    "RAZORPAY_WEBHOOK_SECRET",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestLoadConfigFromEnv:
    """Environment parsing and validation."""

    def test_defaults(self) -> None:
        config = load_config_from_env()

        assert config.database_url == DEFAULT_DATABASE_URL
        assert config.currency == "USD"
        assert config.platform_fee_percent == Decimal("2.9")
        assert config.transport.max_retries == DEFAULT_PAYMENT_MAX_RETRIES
        assert config.enabled_providers == []

    def test_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        # input
        monkeypatch.setenv("STOREFRONT_DATABASE_URL", "sqlite:///other.db")
        monkeypatch.setenv("STOREFRONT_CURRENCY", "eur")
        monkeypatch.setenv("STOREFRONT_PLATFORM_FEE_PERCENT", "3.5")
        monkeypatch.setenv("STOREFRONT_PAYMENT_TIMEOUT_SECONDS", "5")
        monkeypatch.setenv("STOREFRONT_PAYMENT_MAX_RETRIES", "0")

        # act
        config = load_config_from_env()

        # assert
        assert config.database_url == "sqlite:///other.db"
        assert config.currency == "EUR"
        assert config.platform_fee_percent == Decimal("3.5")
        assert config.transport.timeout_seconds == 5.0
        assert config.transport.max_retries == 0

    def test_complete_provider_credentials_enable_provider(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_123")
        monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "whsec_123")
        monkeypatch.setenv("PAYPAL_CLIENT_ID", "client")
        monkeypatch.setenv("PAYPAL_CLIENT_SECRET", "secret")
        monkeypatch.setenv("PAYPAL_WEBHOOK_ID", "WH-1")
        monkeypatch.setenv("PAYPAL_ENV", "LIVE")

        config = load_config_from_env()

        assert config.enabled_providers == ["STRIPE", "PAYPAL"]
        assert config.stripe is not None
        assert config.stripe.secret_key == "sk_test_123"  # noqa: S105
        assert config.paypal is not None
        assert config.paypal.api_base == "https://api-m.paypal.com"

    def test_partial_provider_credentials_fail(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("RAZORPAY_KEY_ID", "rzp_test")

        with pytest.raises(ValueError) as exc_info:
            load_config_from_env()

        assert "RAZORPAY_KEY_SECRET" in str(exc_info.value)
        assert "RAZORPAY_WEBHOOK_SECRET" in str(exc_info.value)

    @pytest.mark.parametrize(
        ("name", "value", "message"),
        [
            ("STOREFRONT_CURRENCY", "DOLLARS", "ISO 4217"),
            ("STOREFRONT_PLATFORM_FEE_PERCENT", "150", "between 0 and 100"),
            ("STOREFRONT_PLATFORM_FEE_PERCENT", "lots", "decimal number"),
            ("STOREFRONT_PAYMENT_MAX_RETRIES", "-1", "must not be negative"),
            ("STOREFRONT_PAYMENT_TIMEOUT_SECONDS", "0", "must be positive"),
            ("STOREFRONT_WEBHOOK_DEDUP_TTL_SECONDS", "week", "must be an integer"),
            ("PAYPAL_ENV", "staging", None),
        ],
    )
    def test_invalid_values(
        self,
        monkeypatch: pytest.MonkeyPatch,
        name: str,
        value: str,
        message: str | None,
    ) -> None:
        monkeypatch.setenv(name, value)
        if name == "PAYPAL_ENV":
            monkeypatch.setenv("PAYPAL_CLIENT_ID", "client")
            monkeypatch.setenv("PAYPAL_CLIENT_SECRET", "secret")
            monkeypatch.setenv("PAYPAL_WEBHOOK_ID", "WH-1")
            message = "PAYPAL_ENV must be one of"

        with pytest.raises(ValueError, match=message):
            load_config_from_env()
