from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal
from typing import Protocol, runtime_checkable

from storefront.infra.cache import stable_key
from storefront.payments.models import (
    CreatePaymentRequest,
    Payment,
    PaymentIntent,
    PaymentProvider,
    PaymentRefund,
    ProcessPaymentRequest,
    RefundPaymentRequest,
    WebhookEvent,
)


def idempotency_key(provider: PaymentProvider, operation: str, *parts: object) -> str:
    """Deterministic key for a financial side effect.

    The same provider, operation and inputs always yield the same key, so a
    retried call is recognised by the provider instead of charging twice.
    """
    digest = stable_key([provider.value, operation, *[str(part) for part in parts]])
    return f"{operation}-{digest[:40]}"


@runtime_checkable
class PaymentProviderAdapter(Protocol):
    """Operations every payment provider integration exposes.

    Amounts cross this boundary as ``Decimal`` major units; conversion to
    provider minor units happens inside the implementation. Declines come
    back as a ``FAILED`` payment; transport and authentication problems
    raise ``PaymentProviderError``.
    """

    @property
    def provider(self) -> PaymentProvider: ...

    def create_payment_intent(self, request: CreatePaymentRequest) -> PaymentIntent: ...

    def process_payment(self, request: ProcessPaymentRequest) -> Payment: ...

    def capture_payment(
        self, payment_id: str, amount: Decimal | None = None
    ) -> Payment: ...

    def cancel_payment(self, payment_id: str) -> Payment: ...

    def refund_payment(self, request: RefundPaymentRequest) -> PaymentRefund: ...

    def get_payment_status(self, payment_id: str) -> Payment: ...

    def handle_webhook(
        self, payload: bytes, headers: Mapping[str, str]
    ) -> WebhookEvent: ...


def header(headers: Mapping[str, str], name: str) -> str | None:
    """Case-insensitive header lookup."""
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None
