"""Payment provider adapters behind one interface."""

from storefront.payments.base import PaymentProviderAdapter, idempotency_key
from storefront.payments.errors import (
    PaymentConfigError,
    PaymentProviderError,
    PaymentTimeoutError,
    SignatureVerificationError,
)
from storefront.payments.factory import create_adapter, create_adapters
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
    RefundReason,
    RefundStatus,
    WebhookEvent,
)
from storefront.payments.paypal import PayPalAdapter
from storefront.payments.razorpay import RazorpayAdapter
from storefront.payments.stripe import StripeAdapter

__all__ = [
    "CreatePaymentRequest",
    "IntentStatus",
    "Payment",
    "PaymentConfigError",
    "PaymentIntent",
    "PaymentMethodType",
    "PaymentProvider",
    "PaymentProviderAdapter",
    "PaymentProviderError",
    "PaymentRefund",
    "PaymentStatus",
    "PaymentTimeoutError",
    "PayPalAdapter",
    "ProcessPaymentRequest",
    "RazorpayAdapter",
    "RefundPaymentRequest",
    "RefundReason",
    "RefundStatus",
    "SignatureVerificationError",
    "StripeAdapter",
    "WebhookEvent",
    "create_adapter",
    "create_adapters",
]
