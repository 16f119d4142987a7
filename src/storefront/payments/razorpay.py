from __future__ import annotations

import base64
from collections.abc import Mapping
from datetime import UTC, datetime
from decimal import Decimal
import hashlib
import json
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field

from storefront.core.config import RazorpayConfig, TransportConfig
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
    verify_hmac_sha256,
    verify_payment_confirmation,
)
from storefront.pricing.money import format_amount, parse_amount

SIGNATURE_HEADER = "X-Razorpay-Signature"
EVENT_ID_HEADER = "X-Razorpay-Event-Id"
CHECKOUT_TIMEOUT_SECONDS = 300
DEFAULT_THEME_COLOR = "#3399cc"

ORDER_INTENT_STATUS_MAP: dict[str, IntentStatus] = {
    "created": IntentStatus.REQUIRES_PAYMENT_METHOD,
    "attempted": IntentStatus.PROCESSING,
    "paid": IntentStatus.SUCCEEDED,
}

ORDER_STATUS_MAP: dict[str, PaymentStatus] = {
    "created": PaymentStatus.PENDING,
    "attempted": PaymentStatus.PROCESSING,
    "paid": PaymentStatus.COMPLETED,
}

PAYMENT_STATUS_MAP: dict[str, PaymentStatus] = {
    "created": PaymentStatus.PENDING,
    "authorized": PaymentStatus.AUTHORIZED,
    "captured": PaymentStatus.COMPLETED,
    "refunded": PaymentStatus.REFUNDED,
    "failed": PaymentStatus.FAILED,
}

REFUND_STATUS_MAP: dict[str, RefundStatus] = {
    "pending": RefundStatus.PENDING,
    "processed": RefundStatus.SUCCEEDED,
    "failed": RefundStatus.FAILED,
}

METHOD_TYPE_MAP: dict[str, PaymentMethodType] = {
    "card": PaymentMethodType.CREDIT_CARD,
    "netbanking": PaymentMethodType.NET_BANKING,
    "wallet": PaymentMethodType.DIGITAL_WALLET,
    "upi": PaymentMethodType.UPI,
}

# provider event type -> (normalized type, implied payment status)
WEBHOOK_EVENT_MAP: dict[str, tuple[str, PaymentStatus | None]] = {
    "payment.authorized": ("PAYMENT_AUTHORIZED", PaymentStatus.AUTHORIZED),
    "payment.captured": ("PAYMENT_CAPTURED", PaymentStatus.COMPLETED),
    "payment.failed": ("PAYMENT_FAILED", PaymentStatus.FAILED),
    "order.paid": ("ORDER_PAID", PaymentStatus.COMPLETED),
    "refund.created": ("REFUND_CREATED", None),
    "refund.processed": ("REFUND_PROCESSED", None),
    "refund.failed": ("REFUND_FAILED", None),
}


class RazorpayObject(BaseModel):
    """Shared base for Razorpay response models with a short parse alias."""

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def parse(cls, data: Any) -> Self:
        return cls.model_validate(data)


class RazorpayOrder(RazorpayObject):
    id: str
    amount: int
    currency: str
    status: str
    receipt: str | None = None
    amount_paid: int = 0
    notes: dict[str, Any] | list[Any] = Field(default_factory=dict)
    created_at: int | None = None


class RazorpayPayment(RazorpayObject):
    id: str
    amount: int
    currency: str
    status: str
    order_id: str | None = None
    method: str | None = None
    amount_refunded: int = 0
    captured: bool = False
    fee: int | None = None
    error_code: str | None = None
    error_description: str | None = None
    notes: dict[str, Any] | list[Any] = Field(default_factory=dict)
    created_at: int | None = None


class RazorpayRefund(RazorpayObject):
    id: str
    payment_id: str
    amount: int
    currency: str
    status: str
    created_at: int | None = None


class RazorpayWebhook(RazorpayObject):
    event: str
    account_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: int | None = None


def _timestamp(value: int | None) -> datetime | None:
    return datetime.fromtimestamp(value, UTC) if value is not None else None


def _notes(value: dict[str, Any] | list[Any]) -> dict[str, Any]:
    # Razorpay serializes empty notes as []
    return value if isinstance(value, dict) else {}


def parse_razorpay_error(
    status_code: int, body: dict[str, Any]
) -> PaymentProviderError:
    error = body.get("error") if isinstance(body.get("error"), dict) else body
    return PaymentProviderError(
        error.get("description") or error.get("message") or "Unknown Razorpay error",
        provider=PaymentProvider.RAZORPAY,
        code=error.get("code"),
        field=error.get("field"),
        status_code=status_code,
        details=error,
    )


class RazorpayAdapter:
    """Orders, payments, refunds and webhooks over the Razorpay REST API.

    Payments are completed by Razorpay Checkout in the browser; the server
    side creates the order, verifies the signature the checkout hands back
    and reads the payment.
    """

    def __init__(
        self,
        config: RazorpayConfig,
        *,
        transport: JsonTransport | None = None,
        transport_config: TransportConfig | None = None,
        payment_logger: PaymentLogger | None = None,
    ) -> None:
        self._config = config
        self._logger = payment_logger or PaymentLogger()
        settings = transport_config or TransportConfig()
        self._transport = transport or JsonTransport(
            provider=PaymentProvider.RAZORPAY,
            base_url=config.api_base,
            error_parser=parse_razorpay_error,
            timeout_seconds=settings.timeout_seconds,
            max_retries=settings.max_retries,
            idempotency_header="X-Idempotency-Key",
            payment_logger=self._logger,
        )

    @property
    def provider(self) -> PaymentProvider:
        return PaymentProvider.RAZORPAY

    # High-level APIs -----------------------------------------------------

    def create_payment_intent(self, request: CreatePaymentRequest) -> PaymentIntent:
        currency = request.currency.upper()
        payload = {
            "amount": format_amount(request.amount, currency),
            "currency": currency,
            "receipt": f"receipt_{request.order_id}",
            "notes": {"order_id": request.order_id, **request.metadata},
            "payment_capture": 1,
        }
        key = idempotency_key(
            self.provider, "create", request.order_id, request.amount, currency
        )
        order = RazorpayOrder.parse(
            self._request("POST", "/v1/orders", payload, idempotency_key=key)
        )
        self._logger.intent_created(self.provider, order.id, request.order_id)
        return self._to_intent(order)

    def process_payment(self, request: ProcessPaymentRequest) -> Payment:
        """Verify the checkout's signature and read the resulting payment.

        Without confirmation data the order itself is read back.
        """
        data = request.confirmation_data
        if not data:
            order = RazorpayOrder.parse(
                self._request("GET", f"/v1/orders/{request.payment_id}")
            )
            return self._order_to_payment(order, request.order_id)

        razorpay_payment_id = data.get("razorpay_payment_id") or ""
        try:
            verify_payment_confirmation(
                self._config.key_secret,
                request.payment_id,
                razorpay_payment_id,
                data.get("razorpay_signature"),
                provider=self.provider,
            )
        except SignatureVerificationError as e:
            self._logger.webhook_rejected(self.provider, e.message)
            raise

        payment = self.get_payment_status(razorpay_payment_id)
        if request.order_id and payment.order_id != request.order_id:
            payment = payment.model_copy(update={"order_id": request.order_id})
        if payment.status is PaymentStatus.FAILED:
            self._logger.payment_declined(
                self.provider, payment.id, payment.failure_code
            )
        else:
            self._logger.payment_status(self.provider, payment.id, payment.status)
        return payment

    def capture_payment(
        self, payment_id: str, amount: Decimal | None = None
    ) -> Payment:
        current = self.get_payment_status(payment_id)
        to_capture = amount if amount is not None else current.amount
        data = self._request(
            "POST",
            f"/v1/payments/{payment_id}/capture",
            {
                "amount": format_amount(to_capture, current.currency),
                "currency": current.currency,
            },
            idempotency_key=idempotency_key(
                self.provider, "capture", payment_id, to_capture
            ),
        )
        return self._to_payment(RazorpayPayment.parse(data))

    def cancel_payment(self, payment_id: str) -> Payment:
        raise PaymentProviderError(
            "Razorpay payments cannot be cancelled; refund them instead",
            provider=self.provider,
            code="UNSUPPORTED_OPERATION",
            field="payment_id",
        )

    def refund_payment(self, request: RefundPaymentRequest) -> PaymentRefund:
        """Refund a payment, or the captured payment of an ``order_...`` id."""
        payment_id = request.payment_id
        if payment_id.startswith("order_"):
            payment_id = self._captured_payment_id(payment_id)
        currency = request.currency.upper()
        payload: dict[str, Any] = {
            "speed": "normal",
            "notes": {"reason": request.reason.value, **request.metadata},
        }
        if request.amount is not None:
            payload["amount"] = format_amount(request.amount, currency)
        key = request.idempotency_key or idempotency_key(
            self.provider, "refund", payment_id, request.amount, currency
        )
        refund = RazorpayRefund.parse(
            self._request(
                "POST",
                f"/v1/payments/{payment_id}/refund",
                payload,
                idempotency_key=key,
            )
        )
        self._logger.refund_created(self.provider, refund.id, payment_id)
        refund_currency = refund.currency.upper()
        return PaymentRefund(
            id=refund.id,
            payment_id=refund.payment_id,
            amount=parse_amount(refund.amount, refund_currency),
            currency=refund_currency,
            status=REFUND_STATUS_MAP.get(refund.status, RefundStatus.PENDING),
            reason=request.reason,
            created_at=_timestamp(refund.created_at),
        )

    def get_payment_status(self, payment_id: str) -> Payment:
        """Read a payment (``pay_...``) or, for an ``order_...`` id, the order."""
        if payment_id.startswith("order_"):
            order = RazorpayOrder.parse(
                self._request("GET", f"/v1/orders/{payment_id}")
            )
            return self._order_to_payment(order, "")
        data = self._request("GET", f"/v1/payments/{payment_id}")
        return self._to_payment(RazorpayPayment.parse(data))

    def handle_webhook(
        self, payload: bytes, headers: Mapping[str, str]
    ) -> WebhookEvent:
        signature = header(headers, SIGNATURE_HEADER)
        if not verify_hmac_sha256(self._config.webhook_secret, payload, signature):
            self._logger.webhook_rejected(self.provider, "invalid signature")
            raise SignatureVerificationError(
                "Invalid webhook signature",
                provider=self.provider,
                code="WEBHOOK_VERIFICATION_FAILED",
            )

        try:
            event = RazorpayWebhook.parse(json.loads(payload))
        except ValueError as e:
            raise PaymentProviderError(
                "Malformed Razorpay webhook body",
                provider=self.provider,
                code="INVALID_WEBHOOK",
            ) from e

        # Razorpay retries deliveries with the same event id header
        event_id = header(headers, EVENT_ID_HEADER)
        if not event_id:
            event_id = "evt_" + hashlib.sha256(payload).hexdigest()[:32]

        normalized, status = WEBHOOK_EVENT_MAP.get(
            event.event, (event.event.upper().replace(".", "_"), None)
        )
        payment_entity = (event.payload.get("payment") or {}).get("entity") or {}
        order_entity = (event.payload.get("order") or {}).get("entity") or {}
        payment_id = payment_entity.get("id") or order_entity.get("id")
        provider_order_id = payment_entity.get("order_id") or order_entity.get("id")
        amount_refunded = None
        if "amount_refunded" in payment_entity:
            amount_refunded = parse_amount(
                payment_entity["amount_refunded"],
                str(payment_entity.get("currency", "INR")).upper(),
            )
        if event.event.startswith("refund."):
            refund_entity = (event.payload.get("refund") or {}).get("entity") or {}
            payment_id = refund_entity.get("payment_id") or payment_id

        self._logger.webhook_verified(self.provider, event_id, event.event)
        return WebhookEvent(
            event_id=event_id,
            provider=self.provider,
            type=normalized,
            raw_type=event.event,
            data=event.payload,
            payment_id=payment_id,
            payment_status=status,
            provider_order_id=provider_order_id,
            amount_refunded=amount_refunded,
            created_at=_timestamp(event.created_at),
        )

    def checkout_options(
        self,
        intent: PaymentIntent,
        *,
        prefill: Mapping[str, str] | None = None,
        callback_url: str | None = None,
        business_name: str = "Payment",
        description: str = "Order Payment",
        image: str | None = None,
        theme_color: str = DEFAULT_THEME_COLOR,
        remember_customer: bool = False,
    ) -> dict[str, Any]:
        """Options object for Razorpay Checkout in the browser.

        Only the public key id is included; the key secret never leaves the
        server.
        """
        options: dict[str, Any] = {
            "key": self._config.key_id,
            "amount": format_amount(intent.amount, intent.currency),
            "currency": intent.currency,
            "name": business_name,
            "description": description,
            "order_id": intent.id,
            "notes": dict(intent.metadata),
            "theme": {"color": theme_color},
            "retry": {"enabled": True},
            "timeout": CHECKOUT_TIMEOUT_SECONDS,
            "remember_customer": remember_customer,
            "redirect": callback_url is not None,
        }
        if image:
            options["image"] = image
        if prefill:
            options["prefill"] = {
                key: prefill[key]
                for key in ("name", "email", "contact")
                if prefill.get(key)
            }
        if callback_url:
            options["callback_url"] = callback_url
        return options

    # Internal helpers ----------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
        *,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        credentials = f"{self._config.key_id}:{self._config.key_secret}"
        basic = base64.b64encode(credentials.encode("utf-8")).decode("ascii")
        return self._transport.request(
            method,
            path,
            json_body=payload if method != "GET" else None,
            headers={"Authorization": f"Basic {basic}"},
            idempotency_key=idempotency_key,
        )

    def _captured_payment_id(self, order_id: str) -> str:
        data = self._request("GET", f"/v1/orders/{order_id}/payments")
        for item in data.get("items") or []:
            payment = RazorpayPayment.parse(item)
            if payment.captured or payment.status in ("captured", "refunded"):
                return payment.id
        raise PaymentProviderError(
            "Order has no captured payment to refund",
            provider=self.provider,
            code="NO_CAPTURE",
            field="payment_id",
        )

    def _to_intent(self, order: RazorpayOrder) -> PaymentIntent:
        currency = order.currency.upper()
        return PaymentIntent(
            id=order.id,
            provider=self.provider,
            amount=parse_amount(order.amount, currency),
            currency=currency,
            status=ORDER_INTENT_STATUS_MAP.get(order.status, IntentStatus.PROCESSING),
            payment_methods=["card", "netbanking", "wallet", "upi"],
            metadata=_notes(order.notes),
            created_at=_timestamp(order.created_at),
        )

    def _order_to_payment(self, order: RazorpayOrder, order_id: str) -> Payment:
        currency = order.currency.upper()
        notes = _notes(order.notes)
        return Payment(
            id=order.id,
            order_id=order_id or str(notes.get("order_id", "")),
            provider=self.provider,
            status=ORDER_STATUS_MAP.get(order.status, PaymentStatus.PENDING),
            amount=parse_amount(order.amount, currency),
            currency=currency,
            amount_received=parse_amount(order.amount_paid, currency),
            metadata={**notes, "receipt": order.receipt},
            created_at=_timestamp(order.created_at),
        )

    def _to_payment(self, payment: RazorpayPayment) -> Payment:
        currency = payment.currency.upper()
        notes = _notes(payment.notes)
        status = PAYMENT_STATUS_MAP.get(payment.status, PaymentStatus.PENDING)
        partial = 0 < payment.amount_refunded < payment.amount
        if status in (PaymentStatus.REFUNDED, PaymentStatus.COMPLETED) and partial:
            status = PaymentStatus.PARTIALLY_REFUNDED

        created = _timestamp(payment.created_at)
        return Payment(
            id=payment.id,
            order_id=str(notes.get("order_id") or payment.order_id or ""),
            provider=self.provider,
            status=status,
            amount=parse_amount(payment.amount, currency),
            currency=currency,
            method_type=METHOD_TYPE_MAP.get(
                payment.method or "", PaymentMethodType.OTHER
            ),
            amount_received=(
                parse_amount(payment.amount, currency) if payment.captured else None
            ),
            amount_refunded=parse_amount(payment.amount_refunded, currency),
            provider_transaction_id=payment.order_id,
            processing_fee=parse_amount(payment.fee or 0, currency),
            failure_code=payment.error_code,
            failure_reason=payment.error_description,
            metadata=notes,
            created_at=created,
            authorized_at=created if status is PaymentStatus.AUTHORIZED else None,
            captured_at=created if payment.captured else None,
        )
