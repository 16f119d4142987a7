"""Payment ledger: provider calls recorded against local payment records."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from storefront.adapters.db.facade import DB
from storefront.adapters.db.models import LedgerStatus, PaymentRecord
from storefront.infra.clock import utcnow
from storefront.payments.base import PaymentProviderAdapter, idempotency_key
from storefront.payments.errors import (
    PaymentConfigError,
    PaymentProviderError,
    PaymentTimeoutError,
)
from storefront.payments.logger import PaymentLogger
from storefront.payments.models import (
    CreatePaymentRequest,
    IntentStatus,
    Payment,
    PaymentIntent,
    PaymentProvider,
    PaymentRefund,
    PaymentStatus,
    ProcessPaymentRequest,
    RefundPaymentRequest,
    RefundReason,
    RefundStatus,
    WebhookEvent,
)
from storefront.pricing.money import format_amount, parse_amount
from storefront.services.idempotency import InMemoryEventStore, ProcessedEventStore

REFUNDABLE_STATUSES = frozenset(
    {LedgerStatus.COMPLETED.value, LedgerStatus.PARTIALLY_REFUNDED.value}
)

# Settled statuses only move forward along this order.
SETTLED_RANK: dict[PaymentStatus, int] = {
    PaymentStatus.COMPLETED: 1,
    PaymentStatus.PARTIALLY_REFUNDED: 2,
    PaymentStatus.REFUNDED: 3,
    PaymentStatus.DISPUTED: 3,
}


@dataclass(frozen=True, slots=True)
class PaymentAttempt:
    record: PaymentRecord
    intent: PaymentIntent | None


@dataclass(frozen=True, slots=True)
class WebhookOutcome:
    event: WebhookEvent
    duplicate: bool = False
    applied: bool = False
    record: PaymentRecord | None = None


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    payment_record_id: int
    status: str
    resolved: bool
    error: str | None = None


class PaymentService:
    """Drive provider adapters and keep the payment ledger consistent.

    - A provider call that times out leaves its record ``UNCERTAIN`` until
      ``reconcile`` learns the real outcome.
    - Each webhook delivery is applied at most once. A late event never
      moves a settled payment back to an open status or down
      ``SETTLED_RANK``.
    """

    def __init__(
        self,
        db: DB,
        adapters: Mapping[PaymentProvider, PaymentProviderAdapter],
        *,
        event_store: ProcessedEventStore | None = None,
        clock: Callable[[], datetime] = utcnow,
        payment_logger: PaymentLogger | None = None,
    ) -> None:
        self._db = db
        self._adapters = dict(adapters)
        self._events = event_store or InMemoryEventStore()
        self._clock = clock
        self._logger = payment_logger or PaymentLogger()

    def adapter(self, provider: PaymentProvider) -> PaymentProviderAdapter:
        try:
            return self._adapters[provider]
        except KeyError:
            raise PaymentConfigError(
                f"{provider.value} is not configured",
                provider=provider,
                code="PROVIDER_NOT_CONFIGURED",
            ) from None

    # Provider operations -------------------------------------------------

    def create_payment(
        self, provider: PaymentProvider, request: CreatePaymentRequest
    ) -> PaymentAttempt:
        """Create (or resume) the payment for an order.

        Repeating the call for the same order, amount and currency reuses
        the record and the provider-side idempotency key.
        """
        adapter = self.adapter(provider)
        currency = request.currency.upper()
        key = idempotency_key(
            provider, "create", request.order_id, request.amount, currency
        )
        record = self._db.find_payment_by_idempotency_key(key)
        if record is None:
            record = self._db.insert_payment(
                order_id=request.order_id,
                provider=provider.value,
                status=LedgerStatus.PENDING.value,
                amount_minor=format_amount(request.amount, currency),
                currency=currency,
                idempotency_key=key,
                now=self._clock(),
            )
        elif (
            record.provider_payment_id
            and record.status != LedgerStatus.UNCERTAIN.value
        ):
            return PaymentAttempt(record=record, intent=None)

        try:
            intent = adapter.create_payment_intent(request)
        except PaymentTimeoutError:
            self._mark_uncertain(record, "create")
            raise
        except PaymentProviderError as e:
            self._update(
                record,
                status=LedgerStatus.FAILED.value,
                failure_code=e.code,
                failure_reason=e.message,
            )
            raise

        status = (
            LedgerStatus.COMPLETED
            if intent.status is IntentStatus.SUCCEEDED
            else LedgerStatus.PENDING
        )
        record = self._update(
            record, provider_payment_id=intent.id, status=status.value
        )
        return PaymentAttempt(record=record, intent=intent)

    def process_payment(
        self,
        payment_record_id: int,
        *,
        payment_method_id: str | None = None,
        confirmation_data: Mapping[str, str] | None = None,
    ) -> PaymentRecord:
        record = self._require(payment_record_id)
        adapter = self.adapter(PaymentProvider(record.provider))
        request = ProcessPaymentRequest(
            payment_id=self._provider_id(record),
            order_id=record.order_id,
            payment_method_id=payment_method_id,
            confirmation_data=dict(confirmation_data or {}),
        )
        try:
            payment = adapter.process_payment(request)
        except PaymentTimeoutError:
            self._mark_uncertain(record, "process")
            raise
        return self._apply_payment(record, payment)

    def refund_payment(
        self,
        payment_record_id: int,
        amount: Decimal | None = None,
        *,
        reason: RefundReason = RefundReason.REQUESTED_BY_CUSTOMER,
    ) -> PaymentRefund:
        """Refund all of the remaining balance, or ``amount`` of it.

        Raises:
            ValueError: If the payment is not settled or the amount exceeds
                what is left to refund
        """
        record = self._require(payment_record_id)
        if record.status not in REFUNDABLE_STATUSES:
            raise ValueError(
                f"Payment {payment_record_id} is {record.status}; cannot refund"
            )
        remaining_minor = record.amount_minor - record.amount_refunded_minor
        refund_minor = (
            remaining_minor
            if amount is None
            else format_amount(amount, record.currency)
        )
        if refund_minor <= 0 or refund_minor > remaining_minor:
            raise ValueError(
                f"Refund amount must be between 0 and "
                f"{parse_amount(remaining_minor, record.currency)}"
            )

        provider = PaymentProvider(record.provider)
        adapter = self.adapter(provider)
        payment_id = self._provider_id(record)
        # The balance already refunded tells two equal partial refunds apart.
        key = idempotency_key(
            provider,
            "refund",
            payment_id,
            record.amount_refunded_minor,
            refund_minor,
            record.currency,
        )
        request = RefundPaymentRequest(
            payment_id=payment_id,
            amount=amount,
            currency=record.currency,
            reason=reason,
            metadata={"order_id": record.order_id},
            idempotency_key=key,
        )
        try:
            refund = adapter.refund_payment(request)
        except PaymentTimeoutError:
            self._mark_uncertain(record, "refund")
            raise

        if refund.status in (RefundStatus.FAILED, RefundStatus.CANCELLED):
            return refund

        refunded_minor = record.amount_refunded_minor + refund_minor
        status = (
            LedgerStatus.REFUNDED
            if refunded_minor >= record.amount_minor
            else LedgerStatus.PARTIALLY_REFUNDED
        )
        self._update(
            record, status=status.value, amount_refunded_minor=refunded_minor
        )
        return refund

    # Reconciliation ------------------------------------------------------

    def reconcile(self) -> list[ReconcileResult]:
        """Resolve every ``UNCERTAIN`` record by asking its provider."""
        results: list[ReconcileResult] = []
        for record in self._db.list_payments(status=LedgerStatus.UNCERTAIN.value):
            try:
                if record.provider_payment_id is None:
                    resolved = self._resume_create(record)
                else:
                    adapter = self.adapter(PaymentProvider(record.provider))
                    payment = adapter.get_payment_status(record.provider_payment_id)
                    resolved = self._apply_payment(record, payment)
            except PaymentProviderError as e:
                self._logger.reconcile_failed(str(record.payment_record_id), str(e))
                results.append(
                    ReconcileResult(
                        payment_record_id=record.payment_record_id,
                        status=record.status,
                        resolved=False,
                        error=str(e),
                    )
                )
                continue

            self._logger.reconcile_resolved(
                str(record.payment_record_id), resolved.status
            )
            results.append(
                ReconcileResult(
                    payment_record_id=record.payment_record_id,
                    status=resolved.status,
                    resolved=True,
                )
            )
        return results

    def _resume_create(self, record: PaymentRecord) -> PaymentRecord:
        # Same inputs, same idempotency key: the provider returns the intent it
        # created before the timeout, or creates it now.
        request = CreatePaymentRequest(
            order_id=record.order_id,
            amount=parse_amount(record.amount_minor, record.currency),
            currency=record.currency,
        )
        intent = self.adapter(PaymentProvider(record.provider)).create_payment_intent(
            request
        )
        status = (
            LedgerStatus.COMPLETED
            if intent.status is IntentStatus.SUCCEEDED
            else LedgerStatus.PENDING
        )
        return self._update(
            record, provider_payment_id=intent.id, status=status.value
        )

    # Webhooks ------------------------------------------------------------

    def apply_webhook(
        self,
        provider: PaymentProvider,
        payload: bytes,
        headers: Mapping[str, str],
    ) -> WebhookOutcome:
        """Verify a delivery and apply it to the ledger exactly once.

        Signature failures propagate. A delivery that fails while being
        applied is released so the provider's retry can apply it.
        """
        event = self.adapter(provider).handle_webhook(payload, headers)
        if not self._events.claim(provider.value, event.event_id, event.raw_type):
            self._logger.webhook_duplicate(provider, event.event_id)
            return WebhookOutcome(event=event, duplicate=True)

        try:
            return self._apply_event(provider, event)
        except Exception:
            self._events.release(provider.value, event.event_id)
            raise

    def _apply_event(
        self, provider: PaymentProvider, event: WebhookEvent
    ) -> WebhookOutcome:
        if event.payment_id is None or event.payment_status is None:
            return WebhookOutcome(event=event)
        record = self._db.find_payment_by_provider_id(provider.value, event.payment_id)
        if record is None and event.provider_order_id:
            # payment events can arrive before the payment id is recorded
            record = self._db.find_payment_by_provider_id(
                provider.value, event.provider_order_id
            )
        if record is None:
            return WebhookOutcome(event=event)

        incoming = event.payment_status
        if self._is_regression(record, incoming):
            self._logger.status_regression_ignored(
                str(record.payment_record_id), record.status, incoming.value
            )
            return WebhookOutcome(event=event, record=record)

        fields: dict[str, object] = {"status": incoming.value}
        if event.amount_refunded is not None:
            fields["amount_refunded_minor"] = max(
                record.amount_refunded_minor,
                format_amount(event.amount_refunded, record.currency),
            )
        elif incoming is PaymentStatus.REFUNDED:
            fields["amount_refunded_minor"] = record.amount_minor
        record = self._update(record, **fields)
        self._logger.webhook_applied(event.event_id, event.payment_id, record.status)
        return WebhookOutcome(event=event, applied=True, record=record)

    # Internal helpers ----------------------------------------------------

    @staticmethod
    def _is_regression(record: PaymentRecord, incoming: PaymentStatus) -> bool:
        if record.status == LedgerStatus.UNCERTAIN.value:
            return False
        current = PaymentStatus(record.status)
        if current.is_open:
            return False
        if incoming.is_open:
            return True
        current_rank = SETTLED_RANK.get(current)
        if current_rank is None:
            return False
        return SETTLED_RANK.get(incoming, 0) < current_rank

    def _apply_payment(self, record: PaymentRecord, payment: Payment) -> PaymentRecord:
        return self._update(
            record,
            provider_payment_id=payment.id,
            status=payment.status.value,
            amount_refunded_minor=format_amount(
                payment.amount_refunded, record.currency
            ),
            failure_code=payment.failure_code,
            failure_reason=payment.failure_reason,
        )

    def _mark_uncertain(self, record: PaymentRecord, operation: str) -> None:
        self._update(record, status=LedgerStatus.UNCERTAIN.value)
        self._logger.payment_uncertain(str(record.payment_record_id), operation)

    def _update(self, record: PaymentRecord, **fields: object) -> PaymentRecord:
        return self._db.update_payment(
            record.payment_record_id, now=self._clock(), **fields
        )

    def _require(self, payment_record_id: int) -> PaymentRecord:
        record = self._db.get_payment(payment_record_id)
        if record is None:
            raise LookupError(f"Payment record {payment_record_id} not found")
        return record

    @staticmethod
    def _provider_id(record: PaymentRecord) -> str:
        if record.provider_payment_id is None:
            raise ValueError(
                f"Payment {record.payment_record_id} has no provider payment id yet"
            )
        return record.provider_payment_id
