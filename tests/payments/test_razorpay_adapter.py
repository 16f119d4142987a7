from __future__ import annotations

from decimal import Decimal
import hashlib
import json
from typing import Any
from unittest.mock import patch

import pytest

from storefront.core.config import RazorpayConfig
from storefront.payments.errors import PaymentProviderError, SignatureVerificationError
from storefront.payments.models import (
    CreatePaymentRequest,
    IntentStatus,
    PaymentMethodType,
    PaymentStatus,
    ProcessPaymentRequest,
    RefundPaymentRequest,
    RefundStatus,
)
from storefront.payments.razorpay import RazorpayAdapter
from storefront.payments.signatures import hmac_sha256_hex, sign_payment_confirmation

KEY_SECRET = "rzp_secret"  # noqa: S105
WEBHOOK_SECRET = "rzp_webhook_secret"  # noqa: S105


def create_adapter() -> RazorpayAdapter:
    return RazorpayAdapter(
        RazorpayConfig(
            key_id="rzp_test_key",
            key_secret=KEY_SECRET,
            webhook_secret=WEBHOOK_SECRET,
        )
    )


def order_payload(status: str = "created", **overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": "order_ABC",
        "amount": 50000,
        "currency": "INR",
        "status": status,
        "receipt": "receipt_order-1",
        "amount_paid": 50000 if status == "paid" else 0,
        "notes": {"order_id": "order-1"},
        "created_at": 1_700_000_000,
    }
    payload.update(overrides)
    return payload


def payment_payload(status: str = "captured", **overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": "pay_XYZ",
        "amount": 50000,
        "currency": "INR",
        "status": status,
        "order_id": "order_ABC",
        "method": "upi",
        "captured": status == "captured",
        "fee": 1180,
        "notes": [],
        "created_at": 1_700_000_000,
    }
    payload.update(overrides)
    return payload


def confirmation(signature: str | None = None) -> ProcessPaymentRequest:
    return ProcessPaymentRequest(
        payment_id="order_ABC",
        order_id="order-1",
        confirmation_data={
            "razorpay_payment_id": "pay_XYZ",
            "razorpay_signature": signature
            or sign_payment_confirmation(KEY_SECRET, "order_ABC", "pay_XYZ"),
        },
    )


class TestRazorpayPayments:
    """Orders and checkout confirmations against mocked Razorpay responses."""

    def test_create_payment_intent(self) -> None:
        # input
        adapter = create_adapter()
        request = CreatePaymentRequest(
            order_id="order-1", amount=Decimal("500.00"), currency="INR"
        )

        # act
        with patch.object(
            adapter, "_request", return_value=order_payload()
        ) as mock_request:
            intent = adapter.create_payment_intent(request)

        # assert
        method, path, payload = mock_request.call_args.args
        assert (method, path) == ("POST", "/v1/orders")
        assert payload["amount"] == 50000
        assert payload["receipt"] == "receipt_order-1"
        assert payload["notes"] == {"order_id": "order-1"}
        assert intent.id == "order_ABC"
        assert intent.status is IntentStatus.REQUIRES_PAYMENT_METHOD
        assert intent.amount == Decimal("500.00")

    def test_process_payment_verifies_signature(self) -> None:
        adapter = create_adapter()

        with patch.object(
            adapter, "_request", return_value=payment_payload()
        ) as mock_request:
            payment = adapter.process_payment(confirmation())

        assert mock_request.call_args.args[:2] == ("GET", "/v1/payments/pay_XYZ")
        assert payment.status is PaymentStatus.COMPLETED
        assert payment.order_id == "order-1"
        assert payment.method_type is PaymentMethodType.UPI
        assert payment.processing_fee == Decimal("11.80")
        assert payment.amount_received == Decimal("500.00")

    def test_forged_signature_is_rejected(self) -> None:
        adapter = create_adapter()

        with patch.object(adapter, "_request") as mock_request:
            with pytest.raises(SignatureVerificationError):
                adapter.process_payment(confirmation(signature="0" * 64))

        mock_request.assert_not_called()

    def test_failed_payment_is_returned(self) -> None:
        adapter = create_adapter()
        failed = payment_payload(
            "failed",
            error_code="BAD_REQUEST_ERROR",
            error_description="Payment was declined by the bank",
        )

        with patch.object(adapter, "_request", return_value=failed):
            payment = adapter.process_payment(confirmation())

        assert payment.status is PaymentStatus.FAILED
        assert payment.failure_code == "BAD_REQUEST_ERROR"
        assert payment.amount_received is None

    def test_process_without_confirmation_reads_order(self) -> None:
        adapter = create_adapter()

        with patch.object(
            adapter, "_request", return_value=order_payload("paid")
        ) as mock_request:
            payment = adapter.process_payment(
                ProcessPaymentRequest(payment_id="order_ABC", order_id="order-1")
            )

        assert mock_request.call_args.args[1] == "/v1/orders/order_ABC"
        assert payment.status is PaymentStatus.COMPLETED
        assert payment.amount_received == Decimal("500.00")

    def test_get_status_by_order_id(self) -> None:
        adapter = create_adapter()

        with patch.object(adapter, "_request", return_value=order_payload()):
            payment = adapter.get_payment_status("order_ABC")

        assert payment.status is PaymentStatus.PENDING
        assert payment.order_id == "order-1"

    def test_partially_refunded_payment(self) -> None:
        adapter = create_adapter()

        with patch.object(
            adapter,
            "_request",
            return_value=payment_payload("refunded", amount_refunded=10000),
        ):
            payment = adapter.get_payment_status("pay_XYZ")

        assert payment.status is PaymentStatus.PARTIALLY_REFUNDED
        assert payment.amount_refunded == Decimal("100.00")

    def test_capture_defaults_to_full_amount(self) -> None:
        adapter = create_adapter()

        with patch.object(
            adapter,
            "_request",
            side_effect=[payment_payload("authorized"), payment_payload()],
        ) as mock_request:
            payment = adapter.capture_payment("pay_XYZ")

        capture_call = mock_request.call_args_list[1]
        assert capture_call.args[1] == "/v1/payments/pay_XYZ/capture"
        assert capture_call.args[2] == {"amount": 50000, "currency": "INR"}
        assert payment.status is PaymentStatus.COMPLETED

    def test_cancel_is_unsupported(self) -> None:
        with pytest.raises(PaymentProviderError) as exc_info:
            create_adapter().cancel_payment("pay_XYZ")

        assert exc_info.value.code == "UNSUPPORTED_OPERATION"

    def test_refund_payment(self) -> None:
        adapter = create_adapter()
        refund = {
            "id": "rfnd_1",
            "payment_id": "pay_XYZ",
            "amount": 20000,
            "currency": "INR",
            "status": "processed",
        }

        with patch.object(adapter, "_request", return_value=refund) as mock_request:
            result = adapter.refund_payment(
                RefundPaymentRequest(
                    payment_id="pay_XYZ", amount=Decimal("200"), currency="INR"
                )
            )

        payload = mock_request.call_args.args[2]
        assert payload["amount"] == 20000
        assert payload["notes"]["reason"] == "requested_by_customer"
        assert result.status is RefundStatus.SUCCEEDED
        assert result.amount == Decimal("200.00")

    def test_refund_by_order_id_uses_captured_payment(self) -> None:
        # input
        adapter = create_adapter()
        order_payments = {
            "items": [
                payment_payload("failed", id="pay_FAILED"),
                payment_payload(),
            ]
        }
        refund = {
            "id": "rfnd_2",
            "payment_id": "pay_XYZ",
            "amount": 50000,
            "currency": "INR",
            "status": "pending",
        }

        # act
        with patch.object(
            adapter, "_request", side_effect=[order_payments, refund]
        ) as mock_request:
            result = adapter.refund_payment(
                RefundPaymentRequest(payment_id="order_ABC", currency="INR")
            )

        # assert
        lookup, refund_call = mock_request.call_args_list
        assert lookup.args[:2] == ("GET", "/v1/orders/order_ABC/payments")
        assert refund_call.args[1] == "/v1/payments/pay_XYZ/refund"
        assert result.payment_id == "pay_XYZ"

    def test_refund_by_order_id_without_capture(self) -> None:
        adapter = create_adapter()
        order_payments = {"items": [payment_payload("failed")]}

        with patch.object(adapter, "_request", return_value=order_payments):
            with pytest.raises(PaymentProviderError) as exc_info:
                adapter.refund_payment(
                    RefundPaymentRequest(payment_id="order_ABC", currency="INR")
                )

        assert exc_info.value.code == "NO_CAPTURE"

    def test_checkout_options_never_include_secret(self) -> None:
        # input
        adapter = create_adapter()
        with patch.object(adapter, "_request", return_value=order_payload()):
            intent = adapter.create_payment_intent(
                CreatePaymentRequest(
                    order_id="order-1", amount=Decimal("500"), currency="INR"
                )
            )

        # act
        options = adapter.checkout_options(
            intent,
            prefill={"email": "buyer@example.com", "contact": ""},
            callback_url="https://shop.example/razorpay/callback",
        )

        # assert
        assert options["key"] == "rzp_test_key"
        assert options["amount"] == 50000
        assert options["order_id"] == "order_ABC"
        assert options["prefill"] == {"email": "buyer@example.com"}
        assert options["redirect"] is True
        assert KEY_SECRET not in json.dumps(options)


class TestRazorpayWebhooks:
    """HMAC-verified webhook deliveries."""

    def signed(self, event: dict[str, Any], **headers: str) -> tuple[bytes, dict]:
        body = json.dumps(event).encode("utf-8")
        return body, {
            "X-Razorpay-Signature": hmac_sha256_hex(WEBHOOK_SECRET, body),
            **headers,
        }

    def test_payment_captured_event(self) -> None:
        body, headers = self.signed(
            {
                "event": "payment.captured",
                "payload": {"payment": {"entity": payment_payload()}},
                "created_at": 1_700_000_000,
            },
            **{"X-Razorpay-Event-Id": "evt_header_1"},
        )

        event = create_adapter().handle_webhook(body, headers)

        assert event.event_id == "evt_header_1"
        assert event.type == "PAYMENT_CAPTURED"
        assert event.payment_id == "pay_XYZ"
        assert event.payment_status is PaymentStatus.COMPLETED
        assert event.provider_order_id == "order_ABC"
        assert event.amount_refunded is None

    def test_event_id_falls_back_to_payload_digest(self) -> None:
        body, headers = self.signed(
            {
                "event": "order.paid",
                "payload": {"order": {"entity": order_payload("paid")}},
            }
        )

        event = create_adapter().handle_webhook(body, headers)

        assert event.event_id == "evt_" + hashlib.sha256(body).hexdigest()[:32]
        assert event.payment_id == "order_ABC"

    def test_refund_event_points_at_payment(self) -> None:
        body, headers = self.signed(
            {
                "event": "refund.processed",
                "payload": {
                    "refund": {"entity": {"id": "rfnd_1", "payment_id": "pay_XYZ"}}
                },
            }
        )

        event = create_adapter().handle_webhook(body, headers)

        assert event.payment_id == "pay_XYZ"
        assert event.payment_status is None

    def test_invalid_signature(self) -> None:
        body = b'{"event": "payment.captured", "payload": {}}'

        with pytest.raises(SignatureVerificationError):
            create_adapter().handle_webhook(
                body, {"X-Razorpay-Signature": hmac_sha256_hex("wrong", body)}
            )
