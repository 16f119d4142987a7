from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from decimal import Decimal
import json
import time
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field

from storefront.core.config import StripeConfig, TransportConfig
from storefront.payments.base import header, idempotency_key
from storefront.payments.errors import PaymentProviderError, SignatureVerificationError
from storefront.payments.http import JsonTransport
from storefront.payments.logger import PaymentLogger
from storefront.payments.models import (
    CreatePaymentRequest,
    IntentStatus,
    Payment,
    PaymentIntent,
    PaymentMethodType,
    PaymentProvider,
    PaymentRefund,
    PaymentStatus,
    ProcessPaymentRequest,
    RefundPaymentRequest,
    RefundStatus,
    WebhookEvent,
)
from storefront.payments.signatures import (
    DEFAULT_TOLERANCE_SECONDS,
    verify_timestamped_signature,
)
from storefront.pricing.money import format_amount, parse_amount

SIGNATURE_HEADER = "Stripe-Signature"

INTENT_STATUS_MAP: dict[str, IntentStatus] = {
    "requires_payment_method": IntentStatus.REQUIRES_PAYMENT_METHOD,
    "requires_confirmation": IntentStatus.REQUIRES_CONFIRMATION,
    "requires_action": IntentStatus.REQUIRES_ACTION,
    "processing": IntentStatus.PROCESSING,
    "requires_capture": IntentStatus.REQUIRES_CAPTURE,
    "canceled": IntentStatus.CANCELLED,
    "succeeded": IntentStatus.SUCCEEDED,
}

PAYMENT_STATUS_MAP: dict[str, PaymentStatus] = {
    "requires_payment_method": PaymentStatus.PENDING,
    "requires_confirmation": PaymentStatus.PENDING,
    "requires_action": PaymentStatus.PENDING,
    "processing": PaymentStatus.PROCESSING,
    "requires_capture": PaymentStatus.AUTHORIZED,
    "canceled": PaymentStatus.CANCELLED,
    "succeeded": PaymentStatus.COMPLETED,
}

REFUND_STATUS_MAP: dict[str, RefundStatus] = {
    "pending": RefundStatus.PENDING,
    "requires_action": RefundStatus.PENDING,
    "succeeded": RefundStatus.SUCCEEDED,
    "failed": RefundStatus.FAILED,
    "canceled": RefundStatus.CANCELLED,
}

METHOD_TYPE_MAP: dict[str, PaymentMethodType] = {
    "card": PaymentMethodType.CREDIT_CARD,
    "us_bank_account": PaymentMethodType.BANK_ACCOUNT,
    "link": PaymentMethodType.DIGITAL_WALLET,
    "apple_pay": PaymentMethodType.DIGITAL_WALLET,
    "google_pay": PaymentMethodType.DIGITAL_WALLET,
}

# provider event type -> (normalized type, implied payment status)
WEBHOOK_EVENT_MAP: dict[str, tuple[str, PaymentStatus | None]] = {
    "payment_intent.succeeded": ("PAYMENT_SUCCEEDED", PaymentStatus.COMPLETED),
    "payment_intent.payment_failed": ("PAYMENT_FAILED", PaymentStatus.FAILED),
    "payment_intent.canceled": ("PAYMENT_CANCELLED", PaymentStatus.CANCELLED),
    "payment_intent.processing": ("PAYMENT_PROCESSING", PaymentStatus.PROCESSING),
    "payment_intent.requires_action": ("PAYMENT_REQUIRES_ACTION", None),
    "payment_intent.amount_capturable_updated": (
        "PAYMENT_AUTHORIZED",
        PaymentStatus.AUTHORIZED,
    ),
    "charge.refunded": ("PAYMENT_REFUNDED", PaymentStatus.REFUNDED),
    "charge.dispute.created": ("DISPUTE_CREATED", PaymentStatus.DISPUTED),
}


class StripeObject(BaseModel):
    """Shared base for Stripe response models with a short parse alias."""

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def parse(cls, data: Any) -> Self:
        return cls.model_validate(data)


class StripeCharge(StripeObject):
    id: str
    amount: int = 0
    amount_refunded: int = 0
    payment_intent: str | None = None
    balance_transaction: dict[str, Any] | str | None = None


class StripePaymentIntent(StripeObject):
    id: str
    amount: int
    currency: str
    status: str
    client_secret: str | None = None
    amount_received: int = 0
    created: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    payment_method_types: list[str] = Field(default_factory=list)
    latest_charge: StripeCharge | str | None = None
    last_payment_error: dict[str, Any] | None = None


class StripeRefund(StripeObject):
    id: str
    amount: int
    currency: str
    status: str
    created: int | None = None
    failure_reason: str | None = None


class StripeEvent(StripeObject):
    id: str
    type: str
    created: int | None = None
    data: dict[str, Any] = Field(default_factory=dict)


def _timestamp(value: int | None) -> datetime | None:
    return datetime.fromtimestamp(value, UTC) if value is not None else None


def parse_stripe_error(status_code: int, body: dict[str, Any]) -> PaymentProviderError:
    error = body.get("error") if isinstance(body.get("error"), dict) else body
    return PaymentProviderError(
        error.get("message") or "Unknown Stripe error",
        provider=PaymentProvider.STRIPE,
        code=error.get("decline_code") or error.get("code") or error.get("type"),
        field=error.get("param"),
        status_code=status_code,
        details=error,
    )


class StripeAdapter:
    """Payment intents, refunds and webhooks over the Stripe REST API."""

    def __init__(
        self,
        config: StripeConfig,
        *,
        transport: JsonTransport | None = None,
        transport_config: TransportConfig | None = None,
        webhook_tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
        clock: Callable[[], float] = time.time,
        payment_logger: PaymentLogger | None = None,
    ) -> None:
        self._config = config
        self._logger = payment_logger or PaymentLogger()
        settings = transport_config or TransportConfig()
        self._transport = transport or JsonTransport(
            provider=PaymentProvider.STRIPE,
            base_url=config.api_base,
            error_parser=parse_stripe_error,
            timeout_seconds=settings.timeout_seconds,
            max_retries=settings.max_retries,
            payment_logger=self._logger,
        )
        self._webhook_tolerance = webhook_tolerance_seconds
        self._clock = clock

    @property
    def provider(self) -> PaymentProvider:
        return PaymentProvider.STRIPE

    # High-level APIs -----------------------------------------------------

    def create_payment_intent(self, request: CreatePaymentRequest) -> PaymentIntent:
        currency = request.currency.upper()
        payload = {
            "amount": format_amount(request.amount, currency),
            "currency": currency.lower(),
            "payment_method_types": ["card"],
            "capture_method": "automatic",
            "metadata": {"order_id": request.order_id, **request.metadata},
        }
        key = idempotency_key(
            self.provider, "create", request.order_id, request.amount, currency
        )
        intent = StripePaymentIntent.parse(
            self._request("POST", "/v1/payment_intents", payload, idempotency_key=key)
        )
        self._logger.intent_created(self.provider, intent.id, request.order_id)
        return self._to_intent(intent)

    def process_payment(self, request: ProcessPaymentRequest) -> Payment:
        """Confirm the intent with a payment method, or re-read it.

        A card decline is answered by Stripe with HTTP 402 and the updated
        intent; it is returned as a ``FAILED`` payment rather than raised.
        """
        if request.payment_method_id is None and not request.confirmation_data:
            return self.get_payment_status(request.payment_id)

        payload: dict[str, Any] = dict(request.confirmation_data)
        if request.payment_method_id is not None:
            payload["payment_method"] = request.payment_method_id
        key = idempotency_key(
            self.provider, "confirm", request.payment_id, request.payment_method_id
        )
        try:
            data = self._request(
                "POST",
                f"/v1/payment_intents/{request.payment_id}/confirm",
                payload,
                idempotency_key=key,
            )
        except PaymentProviderError as e:
            declined = e.details.get("payment_intent")
            if e.status_code != 402 or not isinstance(declined, dict):
                raise
            self._logger.payment_declined(self.provider, request.payment_id, e.code)
            payment = self._to_payment(StripePaymentIntent.parse(declined))
            return payment.model_copy(
                update={
                    "status": PaymentStatus.FAILED,
                    "order_id": request.order_id or payment.order_id,
                    "failure_code": e.code,
                    "failure_reason": e.message,
                }
            )

        payment = self._to_payment(StripePaymentIntent.parse(data))
        self._logger.payment_status(self.provider, payment.id, payment.status)
        return payment

    def capture_payment(
        self, payment_id: str, amount: Decimal | None = None
    ) -> Payment:
        payload: dict[str, Any] = {}
        if amount is not None:
            current = self.get_payment_status(payment_id)
            payload["amount_to_capture"] = format_amount(amount, current.currency)
        data = self._request(
            "POST",
            f"/v1/payment_intents/{payment_id}/capture",
            payload,
            idempotency_key=idempotency_key(
                self.provider, "capture", payment_id, amount
            ),
        )
        return self._to_payment(StripePaymentIntent.parse(data))

    def cancel_payment(self, payment_id: str) -> Payment:
        data = self._request(
            "POST",
            f"/v1/payment_intents/{payment_id}/cancel",
            {},
            idempotency_key=idempotency_key(self.provider, "cancel", payment_id),
        )
        return self._to_payment(StripePaymentIntent.parse(data))

    def refund_payment(self, request: RefundPaymentRequest) -> PaymentRefund:
        currency = request.currency.upper()
        payload: dict[str, Any] = {
            "payment_intent": request.payment_id,
            "reason": request.reason.value,
            "metadata": request.metadata,
        }
        if request.amount is not None:
            payload["amount"] = format_amount(request.amount, currency)
        key = request.idempotency_key or idempotency_key(
            self.provider, "refund", request.payment_id, request.amount, currency
        )
        refund = StripeRefund.parse(
            self._request("POST", "/v1/refunds", payload, idempotency_key=key)
        )
        self._logger.refund_created(self.provider, refund.id, request.payment_id)
        refund_currency = refund.currency.upper()
        return PaymentRefund(
            id=refund.id,
            payment_id=request.payment_id,
            amount=parse_amount(refund.amount, refund_currency),
            currency=refund_currency,
            status=REFUND_STATUS_MAP.get(refund.status, RefundStatus.PENDING),
            reason=request.reason,
            failure_reason=refund.failure_reason,
            created_at=_timestamp(refund.created),
        )

    def get_payment_status(self, payment_id: str) -> Payment:
        data = self._request(
            "GET", f"/v1/payment_intents/{payment_id}?expand[]=latest_charge"
        )
        return self._to_payment(StripePaymentIntent.parse(data))

    def handle_webhook(
        self, payload: bytes, headers: Mapping[str, str]
    ) -> WebhookEvent:
        try:
            verify_timestamped_signature(
                payload,
                header(headers, SIGNATURE_HEADER),
                self._config.webhook_secret,
                tolerance_seconds=self._webhook_tolerance,
                now=self._clock(),
                provider=self.provider,
            )
        except SignatureVerificationError as e:
            self._logger.webhook_rejected(self.provider, e.message)
            raise

        try:
            event = StripeEvent.parse(json.loads(payload))
        except ValueError as e:
            raise PaymentProviderError(
                "Malformed Stripe webhook body",
                provider=self.provider,
                code="INVALID_WEBHOOK",
            ) from e

        obj = event.data.get("object") or {}
        normalized, status = WEBHOOK_EVENT_MAP.get(
            event.type, (event.type.upper().replace(".", "_"), None)
        )
        payment_id = obj.get("id") if event.type.startswith("payment_intent.") else None
        amount_refunded = None
        if event.type.startswith("charge."):
            payment_id = obj.get("payment_intent")
            amount_refunded = parse_amount(
                obj.get("amount_refunded", 0), str(obj.get("currency", "usd")).upper()
            )
            partial = obj.get("amount_refunded", 0) < obj.get("amount", 0)
            if status is PaymentStatus.REFUNDED and partial:
                status = PaymentStatus.PARTIALLY_REFUNDED

        self._logger.webhook_verified(self.provider, event.id, event.type)
        return WebhookEvent(
            event_id=event.id,
            provider=self.provider,
            type=normalized,
            raw_type=event.type,
            data=obj,
            payment_id=payment_id,
            payment_status=status,
            amount_refunded=amount_refunded,
            created_at=_timestamp(event.created),
        )

    # Internal helpers ----------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
        *,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        return self._transport.request(
            method,
            path,
            form_body=payload if method != "GET" else None,
            headers={"Authorization": f"Bearer {self._config.secret_key}"},
            idempotency_key=idempotency_key,
        )

    def _to_intent(self, intent: StripePaymentIntent) -> PaymentIntent:
        currency = intent.currency.upper()
        return PaymentIntent(
            id=intent.id,
            provider=self.provider,
            amount=parse_amount(intent.amount, currency),
            currency=currency,
            status=INTENT_STATUS_MAP.get(intent.status, IntentStatus.PROCESSING),
            client_secret=intent.client_secret,
            payment_methods=intent.payment_method_types or ["card"],
            metadata=intent.metadata,
            created_at=_timestamp(intent.created),
        )

    def _to_payment(self, intent: StripePaymentIntent) -> Payment:
        currency = intent.currency.upper()
        charge = intent.latest_charge
        if not isinstance(charge, StripeCharge):
            charge = None
        status = PAYMENT_STATUS_MAP.get(intent.status, PaymentStatus.PENDING)
        error = intent.last_payment_error or {}
        if status is PaymentStatus.PENDING and error:
            status = PaymentStatus.FAILED

        refunded = charge.amount_refunded if charge else 0
        if status is PaymentStatus.COMPLETED and refunded:
            status = (
                PaymentStatus.REFUNDED
                if refunded >= intent.amount
                else PaymentStatus.PARTIALLY_REFUNDED
            )

        fee = 0
        if charge and isinstance(charge.balance_transaction, dict):
            fee = int(charge.balance_transaction.get("fee", 0))

        methods = intent.payment_method_types or ["card"]
        method = methods[0]
        created = _timestamp(intent.created)
        return Payment(
            id=intent.id,
            order_id=str(intent.metadata.get("order_id", "")),
            provider=self.provider,
            status=status,
            amount=parse_amount(intent.amount, currency),
            currency=currency,
            method_type=METHOD_TYPE_MAP.get(method, PaymentMethodType.OTHER),
            amount_received=parse_amount(intent.amount_received, currency),
            amount_refunded=parse_amount(refunded, currency),
            provider_transaction_id=charge.id if charge else None,
            processing_fee=parse_amount(fee, currency),
            failure_code=error.get("decline_code") or error.get("code"),
            failure_reason=error.get("message"),
            metadata=intent.metadata,
            created_at=created,
            authorized_at=created if status is PaymentStatus.AUTHORIZED else None,
            captured_at=created if intent.status == "succeeded" else None,
        )
