from __future__ import annotations

import base64
from collections.abc import Callable, Mapping
from datetime import datetime
from decimal import Decimal
import json
import threading
import time
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field

from storefront.core.config import PayPalConfig, TransportConfig
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
from storefront.pricing.money import ZERO, format_decimal_string, to_decimal

TOKEN_EXPIRY_BUFFER_SECONDS = 60

# Transmission headers PayPal signs each webhook delivery with
WEBHOOK_HEADERS = {
    "auth_algo": "PAYPAL-AUTH-ALGO",
    "cert_url": "PAYPAL-CERT-URL",
    "transmission_id": "PAYPAL-TRANSMISSION-ID",
    "transmission_sig": "PAYPAL-TRANSMISSION-SIG",
    "transmission_time": "PAYPAL-TRANSMISSION-TIME",
}

ORDER_INTENT_STATUS_MAP: dict[str, IntentStatus] = {
    "CREATED": IntentStatus.REQUIRES_PAYMENT_METHOD,
    "SAVED": IntentStatus.REQUIRES_CONFIRMATION,
    "APPROVED": IntentStatus.REQUIRES_CAPTURE,
    "VOIDED": IntentStatus.CANCELLED,
    "COMPLETED": IntentStatus.SUCCEEDED,
    "PAYER_ACTION_REQUIRED": IntentStatus.REQUIRES_ACTION,
}

ORDER_STATUS_MAP: dict[str, PaymentStatus] = {
    "CREATED": PaymentStatus.PENDING,
    "SAVED": PaymentStatus.PENDING,
    "APPROVED": PaymentStatus.AUTHORIZED,
    "VOIDED": PaymentStatus.CANCELLED,
    "COMPLETED": PaymentStatus.COMPLETED,
    "PAYER_ACTION_REQUIRED": PaymentStatus.PENDING,
}

CAPTURE_STATUS_MAP: dict[str, PaymentStatus] = {
    "COMPLETED": PaymentStatus.COMPLETED,
    "DECLINED": PaymentStatus.FAILED,
    "FAILED": PaymentStatus.FAILED,
    "PARTIALLY_REFUNDED": PaymentStatus.PARTIALLY_REFUNDED,
    "REFUNDED": PaymentStatus.REFUNDED,
    "PENDING": PaymentStatus.PROCESSING,
}

REFUND_STATUS_MAP: dict[str, RefundStatus] = {
    "CANCELLED": RefundStatus.CANCELLED,
    "FAILED": RefundStatus.FAILED,
    "PENDING": RefundStatus.PENDING,
    "COMPLETED": RefundStatus.SUCCEEDED,
}

# provider event type -> (normalized type, implied payment status)
WEBHOOK_EVENT_MAP: dict[str, tuple[str, PaymentStatus | None]] = {
    "PAYMENT.CAPTURE.COMPLETED": ("PAYMENT_COMPLETED", PaymentStatus.COMPLETED),
    "PAYMENT.CAPTURE.DENIED": ("PAYMENT_FAILED", PaymentStatus.FAILED),
    "PAYMENT.CAPTURE.PENDING": ("PAYMENT_PENDING", PaymentStatus.PROCESSING),
    "PAYMENT.CAPTURE.REFUNDED": ("PAYMENT_REFUNDED", PaymentStatus.REFUNDED),
    "CHECKOUT.ORDER.APPROVED": ("ORDER_APPROVED", PaymentStatus.AUTHORIZED),
    "CHECKOUT.ORDER.COMPLETED": ("ORDER_COMPLETED", PaymentStatus.COMPLETED),
    "CUSTOMER.DISPUTE.CREATED": ("DISPUTE_CREATED", PaymentStatus.DISPUTED),
}

# Capture issues that mean the payer's instrument was refused
DECLINE_ISSUES = frozenset(
    {"INSTRUMENT_DECLINED", "TRANSACTION_REFUSED", "PAYER_CANNOT_PAY"}
)


class PayPalObject(BaseModel):
    """Shared base for PayPal response models with a short parse alias."""

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def parse(cls, data: Any) -> Self:
        return cls.model_validate(data)


class PayPalMoney(PayPalObject):
    currency_code: str
    value: str


class PayPalTransaction(PayPalObject):
    id: str
    status: str
    amount: PayPalMoney | None = None
    create_time: datetime | None = None


class PayPalPayments(PayPalObject):
    authorizations: list[PayPalTransaction] = Field(default_factory=list)
    captures: list[PayPalTransaction] = Field(default_factory=list)
    refunds: list[PayPalTransaction] = Field(default_factory=list)


class PayPalPurchaseUnit(PayPalObject):
    reference_id: str | None = None
    custom_id: str | None = None
    amount: PayPalMoney | None = None
    payments: PayPalPayments | None = None


class PayPalLink(PayPalObject):
    href: str
    rel: str


class PayPalOrder(PayPalObject):
    id: str
    status: str
    create_time: datetime | None = None
    purchase_units: list[PayPalPurchaseUnit] = Field(default_factory=list)
    links: list[PayPalLink] = Field(default_factory=list)


class PayPalRefund(PayPalObject):
    id: str
    status: str
    amount: PayPalMoney | None = None
    create_time: datetime | None = None
    status_details: dict[str, Any] | None = None


class PayPalWebhook(PayPalObject):
    id: str
    event_type: str
    create_time: datetime | None = None
    resource: dict[str, Any] = Field(default_factory=dict)


def parse_paypal_error(status_code: int, body: dict[str, Any]) -> PaymentProviderError:
    details = body.get("details") or []
    first = details[0] if details and isinstance(details[0], dict) else {}
    message = (
        body.get("message")
        or body.get("error_description")
        or first.get("description")
        or "Unknown PayPal error"
    )
    return PaymentProviderError(
        message,
        provider=PaymentProvider.PAYPAL,
        code=first.get("issue") or body.get("name") or body.get("error"),
        field=first.get("field"),
        status_code=status_code,
        details=body,
    )


def _money(value: PayPalMoney | None) -> Decimal:
    return to_decimal(value.value) if value is not None else ZERO


class PayPalAdapter:
    """Checkout orders, captures, refunds and webhooks over the PayPal REST API.

    Access tokens are cached and refreshed a minute before PayPal expires
    them.
    """

    def __init__(
        self,
        config: PayPalConfig,
        *,
        transport: JsonTransport | None = None,
        transport_config: TransportConfig | None = None,
        clock: Callable[[], float] = time.time,
        payment_logger: PaymentLogger | None = None,
    ) -> None:
        self._config = config
        self._logger = payment_logger or PaymentLogger()
        settings = transport_config or TransportConfig()
        self._transport = transport or JsonTransport(
            provider=PaymentProvider.PAYPAL,
            base_url=config.api_base,
            error_parser=parse_paypal_error,
            timeout_seconds=settings.timeout_seconds,
            max_retries=settings.max_retries,
            idempotency_header="PayPal-Request-Id",
            payment_logger=self._logger,
        )
        self._clock = clock
        self._token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()

    @property
    def provider(self) -> PaymentProvider:
        return PaymentProvider.PAYPAL

    # High-level APIs -----------------------------------------------------

    def create_payment_intent(self, request: CreatePaymentRequest) -> PaymentIntent:
        currency = request.currency.upper()
        payload: dict[str, Any] = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": request.order_id,
                    "custom_id": request.order_id,
                    "amount": {
                        "currency_code": currency,
                        "value": format_decimal_string(request.amount, currency),
                    },
                }
            ],
            "application_context": {
                "landing_page": "NO_PREFERENCE",
                "shipping_preference": "NO_SHIPPING",
                "user_action": "PAY_NOW",
            },
        }
        if request.return_url:
            payload["application_context"]["return_url"] = request.return_url
        key = idempotency_key(
            self.provider, "create", request.order_id, request.amount, currency
        )
        order = PayPalOrder.parse(
            self._request("POST", "/v2/checkout/orders", payload, idempotency_key=key)
        )
        self._logger.intent_created(self.provider, order.id, request.order_id)
        approve = next(
            (link.href for link in order.links if link.rel == "approve"), None
        )
        return PaymentIntent(
            id=order.id,
            provider=self.provider,
            amount=request.amount,
            currency=currency,
            status=ORDER_INTENT_STATUS_MAP.get(order.status, IntentStatus.PROCESSING),
            client_secret=approve,
            payment_methods=["paypal"],
            metadata=dict(request.metadata),
            created_at=order.create_time,
        )

    def process_payment(self, request: ProcessPaymentRequest) -> Payment:
        """Capture an approved order.

        A refused instrument is answered with HTTP 422; the order is then
        re-read and returned as a ``FAILED`` payment.
        """
        try:
            data = self._request(
                "POST",
                f"/v2/checkout/orders/{request.payment_id}/capture",
                {},
                idempotency_key=idempotency_key(
                    self.provider, "capture", request.payment_id
                ),
            )
        except PaymentProviderError as e:
            if e.status_code != 422 or e.code not in DECLINE_ISSUES:
                raise
            self._logger.payment_declined(self.provider, request.payment_id, e.code)
            current = self.get_payment_status(request.payment_id)
            return current.model_copy(
                update={
                    "status": PaymentStatus.FAILED,
                    "order_id": request.order_id or current.order_id,
                    "failure_code": e.code,
                    "failure_reason": e.message,
                }
            )

        payment = self._to_payment(PayPalOrder.parse(data), request.order_id)
        self._logger.payment_status(self.provider, payment.id, payment.status)
        return payment

    def capture_payment(
        self, payment_id: str, amount: Decimal | None = None
    ) -> Payment:
        """Capture an order in full, or part of its authorization."""
        if amount is None:
            return self.process_payment(
                ProcessPaymentRequest(payment_id=payment_id, order_id="")
            )

        order = self._get_order(payment_id)
        authorization = self._first(order, "authorizations")
        if authorization is None or authorization.amount is None:
            raise PaymentProviderError(
                "Order has no authorization to capture",
                provider=self.provider,
                code="NO_AUTHORIZATION",
                field="payment_id",
            )
        currency = authorization.amount.currency_code
        self._request(
            "POST",
            f"/v2/payments/authorizations/{authorization.id}/capture",
            {
                "amount": {
                    "currency_code": currency,
                    "value": format_decimal_string(amount, currency),
                },
                "final_capture": True,
            },
            idempotency_key=idempotency_key(
                self.provider, "capture", payment_id, amount
            ),
        )
        return self.get_payment_status(payment_id)

    def cancel_payment(self, payment_id: str) -> Payment:
        """Void the order's authorization."""
        order = self._get_order(payment_id)
        authorization = self._first(order, "authorizations")
        if authorization is None:
            raise PaymentProviderError(
                "Only authorized orders can be cancelled",
                provider=self.provider,
                code="NOT_CANCELLABLE",
                field="payment_id",
            )
        self._request(
            "POST",
            f"/v2/payments/authorizations/{authorization.id}/void",
            {},
            idempotency_key=idempotency_key(self.provider, "void", authorization.id),
        )
        return self.get_payment_status(payment_id)

    def refund_payment(self, request: RefundPaymentRequest) -> PaymentRefund:
        """Refund the order's capture, fully or for ``request.amount``."""
        order = self._get_order(request.payment_id)
        capture = self._first(order, "captures")
        if capture is None:
            raise PaymentProviderError(
                "Order has no capture to refund",
                provider=self.provider,
                code="NO_CAPTURE",
                field="payment_id",
            )
        currency = (
            capture.amount.currency_code if capture.amount else request.currency.upper()
        )
        payload: dict[str, Any] = {"note_to_payer": request.reason.value}
        if request.amount is not None:
            payload["amount"] = {
                "currency_code": currency,
                "value": format_decimal_string(request.amount, currency),
            }
        key = request.idempotency_key or idempotency_key(
            self.provider, "refund", request.payment_id, request.amount, currency
        )
        refund = PayPalRefund.parse(
            self._request(
                "POST",
                f"/v2/payments/captures/{capture.id}/refund",
                payload,
                idempotency_key=key,
            )
        )
        self._logger.refund_created(self.provider, refund.id, request.payment_id)
        status_details = refund.status_details or {}
        return PaymentRefund(
            id=refund.id,
            payment_id=request.payment_id,
            amount=_money(refund.amount) if refund.amount else request.amount or ZERO,
            currency=refund.amount.currency_code if refund.amount else currency,
            status=REFUND_STATUS_MAP.get(refund.status, RefundStatus.PENDING),
            reason=request.reason,
            failure_reason=status_details.get("reason"),
            created_at=refund.create_time,
        )

    def get_payment_status(self, payment_id: str) -> Payment:
        order = self._get_order(payment_id)
        unit = order.purchase_units[0] if order.purchase_units else None
        return self._to_payment(order, (unit.reference_id if unit else None) or "")

    def handle_webhook(
        self, payload: bytes, headers: Mapping[str, str]
    ) -> WebhookEvent:
        """Verify a delivery through PayPal's verification API, then parse it."""
        transmission = {
            field: header(headers, name) for field, name in WEBHOOK_HEADERS.items()
        }
        missing = [
            WEBHOOK_HEADERS[field] for field, value in transmission.items() if not value
        ]
        if missing:
            self._logger.webhook_rejected(self.provider, "missing transmission headers")
            raise SignatureVerificationError(
                "Missing webhook headers: " + ", ".join(missing),
                provider=self.provider,
                code="WEBHOOK_VERIFICATION_FAILED",
            )

        try:
            body = json.loads(payload)
        except ValueError as e:
            raise SignatureVerificationError(
                "Webhook body is not JSON",
                provider=self.provider,
                code="WEBHOOK_VERIFICATION_FAILED",
            ) from e

        result = self._request(
            "POST",
            "/v1/notifications/verify-webhook-signature",
            {
                **transmission,
                "webhook_id": self._config.webhook_id,
                "webhook_event": body,
            },
        )
        if result.get("verification_status") != "SUCCESS":
            self._logger.webhook_rejected(self.provider, "verification failed")
            raise SignatureVerificationError(
                "Invalid webhook signature",
                provider=self.provider,
                code="WEBHOOK_VERIFICATION_FAILED",
            )

        event = PayPalWebhook.parse(body)
        normalized, status = WEBHOOK_EVENT_MAP.get(
            event.event_type, (event.event_type.replace(".", "_"), None)
        )
        resource = event.resource
        if event.event_type.startswith("CHECKOUT.ORDER."):
            payment_id = resource.get("id")
        else:
            supplementary = resource.get("supplementary_data") or {}
            related = supplementary.get("related_ids") or {}
            payment_id = related.get("order_id")

        self._logger.webhook_verified(self.provider, event.id, event.event_type)
        return WebhookEvent(
            event_id=event.id,
            provider=self.provider,
            type=normalized,
            raw_type=event.event_type,
            data=resource,
            payment_id=payment_id,
            payment_status=status,
            created_at=event.create_time,
        )

    # Internal helpers ----------------------------------------------------

    def _access_token(self) -> str:
        with self._token_lock:
            now = self._clock()
            if self._token is None or now >= self._token_expires_at:
                token, expires_in = self._fetch_token()
                self._token = token
                self._token_expires_at = now + expires_in - TOKEN_EXPIRY_BUFFER_SECONDS
                self._logger.token_refreshed(self.provider, expires_in)
            return self._token

    def _fetch_token(self) -> tuple[str, int]:
        credentials = f"{self._config.client_id}:{self._config.client_secret}"
        basic = base64.b64encode(credentials.encode("utf-8")).decode("ascii")
        try:
            data = self._transport.request(
                "POST",
                "/v1/oauth2/token",
                form_body={"grant_type": "client_credentials"},
                headers={"Authorization": f"Basic {basic}"},
            )
        except PaymentProviderError as e:
            raise PaymentProviderError(
                "Failed to obtain PayPal access token",
                provider=self.provider,
                code="AUTHENTICATION_FAILURE",
                status_code=e.status_code,
                details=e.details,
            ) from e
        return str(data["access_token"]), int(data.get("expires_in", 0))

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
            json_body=payload if method != "GET" else None,
            headers={"Authorization": f"Bearer {self._access_token()}"},
            idempotency_key=idempotency_key,
        )

    def _get_order(self, order_id: str) -> PayPalOrder:
        data = self._request("GET", f"/v2/checkout/orders/{order_id}")
        return PayPalOrder.parse(data)

    @staticmethod
    def _first(order: PayPalOrder, kind: str) -> PayPalTransaction | None:
        for unit in order.purchase_units:
            if unit.payments is not None:
                entries: list[PayPalTransaction] = getattr(unit.payments, kind)
                if entries:
                    return entries[0]
        return None

    def _to_payment(self, order: PayPalOrder, order_id: str) -> Payment:
        unit = order.purchase_units[0] if order.purchase_units else PayPalPurchaseUnit()
        capture = self._first(order, "captures")
        authorization = self._first(order, "authorizations")
        refunds = unit.payments.refunds if unit.payments else []
        refunded = sum((_money(refund.amount) for refund in refunds), ZERO)

        if capture is not None:
            status = CAPTURE_STATUS_MAP.get(capture.status, PaymentStatus.PROCESSING)
        else:
            status = ORDER_STATUS_MAP.get(order.status, PaymentStatus.PENDING)

        amount_source = unit.amount or (capture.amount if capture else None)
        return Payment(
            id=order.id,
            order_id=order_id or unit.reference_id or unit.custom_id or "",
            provider=self.provider,
            status=status,
            amount=_money(amount_source),
            currency=amount_source.currency_code if amount_source else "USD",
            method_type=PaymentMethodType.DIGITAL_WALLET,
            amount_received=_money(capture.amount) if capture else None,
            amount_refunded=refunded,
            provider_transaction_id=capture.id if capture else None,
            created_at=order.create_time,
            authorized_at=authorization.create_time if authorization else None,
            captured_at=capture.create_time if capture else None,
        )
