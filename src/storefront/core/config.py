from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
import os
from typing import Literal

PayPalEnv = Literal["sandbox", "live"]

DEFAULT_DATABASE_URL = "sqlite:///storefront.db"
DEFAULT_PLATFORM_FEE_PERCENT = Decimal("2.9")
DEFAULT_WEBHOOK_DEDUP_TTL_SECONDS = 7 * 24 * 60 * 60
DEFAULT_PAYMENT_TIMEOUT_SECONDS = 30.0
DEFAULT_PAYMENT_MAX_RETRIES = 3


@dataclass(frozen=True, slots=True)
class StripeConfig:
    secret_key: str
    webhook_secret: str
    api_base: str = "https://api.stripe.com"


@dataclass(frozen=True, slots=True)
class PayPalConfig:
    client_id: str
    client_secret: str
    webhook_id: str
    env: PayPalEnv = "sandbox"

    @property
    def api_base(self) -> str:
        if self.env == "live":
            return "https://api-m.paypal.com"
        return "https://api-m.sandbox.paypal.com"


@dataclass(frozen=True, slots=True)
class RazorpayConfig:
    key_id: str
    key_secret: str
    webhook_secret: str
    api_base: str = "https://api.razorpay.com"


@dataclass(frozen=True, slots=True)
class TransportConfig:
    """Network behaviour shared by all payment provider clients."""

    timeout_seconds: float = DEFAULT_PAYMENT_TIMEOUT_SECONDS
    max_retries: int = DEFAULT_PAYMENT_MAX_RETRIES


@dataclass(frozen=True, slots=True)
class StorefrontConfig:
    """Process configuration loaded at startup."""

    database_url: str = DEFAULT_DATABASE_URL
    currency: str = "USD"
    platform_fee_percent: Decimal = DEFAULT_PLATFORM_FEE_PERCENT
    tax_table_path: str | None = None
    shipping_methods_path: str | None = None
    webhook_dedup_ttl_seconds: int = DEFAULT_WEBHOOK_DEDUP_TTL_SECONDS
    transport: TransportConfig = TransportConfig()
    stripe: StripeConfig | None = None
    paypal: PayPalConfig | None = None
    razorpay: RazorpayConfig | None = None

    @property
    def enabled_providers(self) -> list[str]:
        enabled = []
        if self.stripe is not None:
            enabled.append("STRIPE")
        if self.paypal is not None:
            enabled.append("PAYPAL")
        if self.razorpay is not None:
            enabled.append("RAZORPAY")
        return enabled


def _env(name: str) -> str | None:
    value = os.environ.get(name, "").strip()
    return value or None


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e
    if value < 0:
        raise ValueError(f"{name} must not be negative")
    return value


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ValueError(f"{name} must be positive")
    return value


def _env_decimal(name: str, default: Decimal) -> Decimal:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return Decimal(raw)
    except InvalidOperation as e:
        raise ValueError(f"{name} must be a decimal number, got {raw!r}") from e


def _provider_values(names: tuple[str, ...]) -> list[str] | None:
    """Return all values, None when none are set, and fail on a partial set."""
    values = [_env(name) for name in names]
    if all(value is None for value in values):
        return None
    missing = [name for name, value in zip(names, values, strict=True) if not value]
    if missing:
        raise ValueError(
            "Missing required environment variable(s): " + ", ".join(missing)
        )
    return [value for value in values if value is not None]


def load_stripe_config_from_env() -> StripeConfig | None:
    values = _provider_values(("STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET"))
    if values is None:
        return None
    return StripeConfig(secret_key=values[0], webhook_secret=values[1])


def load_paypal_config_from_env() -> PayPalConfig | None:
    values = _provider_values(
        ("PAYPAL_CLIENT_ID", "PAYPAL_CLIENT_SECRET", "PAYPAL_WEBHOOK_ID")
    )
    if values is None:
        return None
    env = (_env("PAYPAL_ENV") or "sandbox").lower()
    if env not in {"sandbox", "live"}:
        raise ValueError("PAYPAL_ENV must be one of: sandbox, live")
    return PayPalConfig(
        client_id=values[0],
        client_secret=values[1],
        webhook_id=values[2],
        env=env,  # type: ignore[arg-type]
    )


def load_razorpay_config_from_env() -> RazorpayConfig | None:
    values = _provider_values(
        ("RAZORPAY_KEY_ID", "RAZORPAY_KEY_SECRET", "RAZORPAY_WEBHOOK_SECRET")
    )
    if values is None:
        return None
    return RazorpayConfig(
        key_id=values[0], key_secret=values[1], webhook_secret=values[2]
    )


def load_config_from_env() -> StorefrontConfig:
    """Load storefront config from env and validate startup requirements."""
    currency = (_env("STOREFRONT_CURRENCY") or "USD").upper()
    if len(currency) != 3 or not currency.isalpha():
        raise ValueError(
            f"STOREFRONT_CURRENCY must be an ISO 4217 code, got {currency!r}"
        )

    fee = _env_decimal("STOREFRONT_PLATFORM_FEE_PERCENT", DEFAULT_PLATFORM_FEE_PERCENT)
    if not Decimal(0) <= fee <= Decimal(100):
        raise ValueError("STOREFRONT_PLATFORM_FEE_PERCENT must be between 0 and 100")

    transport = TransportConfig(
        timeout_seconds=_env_float(
            "STOREFRONT_PAYMENT_TIMEOUT_SECONDS", DEFAULT_PAYMENT_TIMEOUT_SECONDS
        ),
        max_retries=_env_int(
            "STOREFRONT_PAYMENT_MAX_RETRIES", DEFAULT_PAYMENT_MAX_RETRIES
        ),
    )

    return StorefrontConfig(
        database_url=_env("STOREFRONT_DATABASE_URL") or DEFAULT_DATABASE_URL,
        currency=currency,
        platform_fee_percent=fee,
        tax_table_path=_env("STOREFRONT_TAX_TABLE"),
        shipping_methods_path=_env("STOREFRONT_SHIPPING_METHODS"),
        webhook_dedup_ttl_seconds=_env_int(
            "STOREFRONT_WEBHOOK_DEDUP_TTL_SECONDS", DEFAULT_WEBHOOK_DEDUP_TTL_SECONDS
        ),
        transport=transport,
        stripe=load_stripe_config_from_env(),
        paypal=load_paypal_config_from_env(),
        razorpay=load_razorpay_config_from_env(),
    )
