"""Provider-independent payment shapes.

Every adapter maps its provider's objects onto these models, so callers only
ever see one status vocabulary and ``Decimal`` major-unit amounts.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import Field

from storefront.pricing.models import SnapshotModel


class PaymentProvider(Enum):
    STRIPE = "STRIPE"
    PAYPAL = "PAYPAL"
    RAZORPAY = "RAZORPAY"


class PaymentStatus(Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    AUTHORIZED = "AUTHORIZED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"
    DISPUTED = "DISPUTED"

    @property
    def is_open(self) -> bool:
        """True while the payment has not reached an outcome."""
        return self in OPEN_PAYMENT_STATUSES


OPEN_PAYMENT_STATUSES = frozenset(
    {PaymentStatus.PENDING, PaymentStatus.PROCESSING, PaymentStatus.AUTHORIZED}
)


class IntentStatus(Enum):
    REQUIRES_PAYMENT_METHOD = "REQUIRES_PAYMENT_METHOD"
    REQUIRES_CONFIRMATION = "REQUIRES_CONFIRMATION"
    REQUIRES_ACTION = "REQUIRES_ACTION"
    PROCESSING = "PROCESSING"
    REQUIRES_CAPTURE = "REQUIRES_CAPTURE"
    CANCELLED = "CANCELLED"
    SUCCEEDED = "SUCCEEDED"


class RefundStatus(Enum):
    PENDING = "PENDING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class PaymentMethodType(Enum):
    CREDIT_CARD = "CREDIT_CARD"
    DEBIT_CARD = "DEBIT_CARD"
    BANK_ACCOUNT = "BANK_ACCOUNT"
    DIGITAL_WALLET = "DIGITAL_WALLET"
    UPI = "UPI"
    NET_BANKING = "NET_BANKING"
    OTHER = "OTHER"


class RefundReason(Enum):
    DUPLICATE = "duplicate"
    FRAUDULENT = "fraudulent"
    REQUESTED_BY_CUSTOMER = "requested_by_customer"


class CreatePaymentRequest(SnapshotModel):
    order_id: str
    amount: Decimal = Field(gt=0)
    currency: str = Field(min_length=3, max_length=3)
    return_url: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)


class ProcessPaymentRequest(SnapshotModel):
    """Confirm or collect a payment created by ``create_payment_intent``.

    ``payment_id`` is the provider id returned on the intent (Stripe payment
    intent, PayPal order, Razorpay order). ``confirmation_data`` carries what
    the client-side checkout handed back, e.g. Razorpay's payment id and
    signature.
    """

    payment_id: str
    order_id: str
    payment_method_id: str | None = None
    confirmation_data: dict[str, str] = Field(default_factory=dict)


class RefundPaymentRequest(SnapshotModel):
    """Refund all of a payment, or ``amount`` of it.

    ``idempotency_key`` identifies this particular refund; when omitted the
    adapter derives one from the payment, amount and currency.
    """

    payment_id: str
    amount: Decimal | None = Field(default=None, gt=0)
    currency: str = "USD"
    reason: RefundReason = RefundReason.REQUESTED_BY_CUSTOMER
    metadata: dict[str, str] = Field(default_factory=dict)
    idempotency_key: str | None = None


class PaymentIntent(SnapshotModel):
    id: str
    provider: PaymentProvider
    amount: Decimal
    currency: str
    status: IntentStatus
    client_secret: str | None = None
    payment_methods: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None


class Payment(SnapshotModel):
    id: str
    order_id: str
    provider: PaymentProvider
    status: PaymentStatus
    amount: Decimal
    currency: str
    method_type: PaymentMethodType = PaymentMethodType.OTHER
    amount_received: Decimal | None = None
    amount_refunded: Decimal = Decimal("0")
    provider_transaction_id: str | None = None
    processing_fee: Decimal = Decimal("0")
    failure_code: str | None = None
    failure_reason: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    authorized_at: datetime | None = None
    captured_at: datetime | None = None


class PaymentRefund(SnapshotModel):
    id: str
    payment_id: str
    amount: Decimal
    currency: str
    status: RefundStatus
    reason: RefundReason = RefundReason.REQUESTED_BY_CUSTOMER
    failure_reason: str | None = None
    created_at: datetime | None = None


class WebhookEvent(SnapshotModel):
    """A verified provider notification.

    ``type`` is the normalized event name (``PAYMENT_SUCCEEDED``...);
    ``raw_type`` keeps the provider's own name. ``payment_status`` is set
    when the event implies a status for ``payment_id``. ``provider_order_id`` is
    the provider order the payment belongs to, where the provider has one
    apart from the payment. ``amount_refunded`` is the cumulative refunded
    amount when the event reports it.
    """

    event_id: str
    provider: PaymentProvider
    type: str
    raw_type: str
    data: dict[str, Any] = Field(default_factory=dict)
    payment_id: str | None = None
    payment_status: PaymentStatus | None = None
    provider_order_id: str | None = None
    amount_refunded: Decimal | None = None
    created_at: datetime | None = None
