"""Logging for payment provider calls and the payment ledger.

Keeps log formatting out of adapters and services. Credentials and
signatures are never passed in here.
"""

from __future__ import annotations

import loguru
from loguru import logger

from storefront.payments.models import PaymentProvider, PaymentStatus


class PaymentLogger:
    """Handles all logging for payment operations."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def request_retry(
        self,
        provider: PaymentProvider,
        method: str,
        path: str,
        attempt: int,
        delay: float,
        reason: str,
    ) -> None:
        self._logger.bind(
            provider=provider.value, method=method, path=path, attempt=attempt
        ).warning(
            "{} {} {} failed ({}); retry {} in {:.1f}s",
            provider.value,
            method,
            path,
            reason,
            attempt,
            delay,
        )

    def request_failed(
        self,
        provider: PaymentProvider,
        method: str,
        path: str,
        status_code: int | None,
        code: str | None,
    ) -> None:
        self._logger.bind(
            provider=provider.value, status_code=status_code, code=code
        ).error(
            "{} {} {} failed: status={} code={}",
            provider.value,
            method,
            path,
            status_code,
            code,
        )

    def request_timeout(
        self, provider: PaymentProvider, method: str, path: str
    ) -> None:
        self._logger.bind(provider=provider.value, method=method, path=path).error(
            "{} {} {} timed out; outcome unknown", provider.value, method, path
        )

    def token_refreshed(self, provider: PaymentProvider, expires_in: int) -> None:
        self._logger.bind(provider=provider.value, expires_in=expires_in).debug(
            "Refreshed {} access token (expires in {}s)", provider.value, expires_in
        )

    def intent_created(
        self, provider: PaymentProvider, intent_id: str, order_id: str
    ) -> None:
        self._logger.bind(
            provider=provider.value, intent_id=intent_id, order_id=order_id
        ).info(
            "Created {} payment intent {} for order {}",
            provider.value,
            intent_id,
            order_id,
        )

    def payment_status(
        self, provider: PaymentProvider, payment_id: str, status: PaymentStatus
    ) -> None:
        self._logger.bind(
            provider=provider.value, payment_id=payment_id, status=status.value
        ).info("{} payment {} is {}", provider.value, payment_id, status.value)

    def payment_declined(
        self, provider: PaymentProvider, payment_id: str, code: str | None
    ) -> None:
        self._logger.bind(
            provider=provider.value, payment_id=payment_id, code=code
        ).warning("{} declined payment {} ({})", provider.value, payment_id, code)

    def refund_created(
        self, provider: PaymentProvider, refund_id: str, payment_id: str
    ) -> None:
        self._logger.bind(
            provider=provider.value, refund_id=refund_id, payment_id=payment_id
        ).info("Created {} refund {} for {}", provider.value, refund_id, payment_id)

    def webhook_verified(
        self, provider: PaymentProvider, event_id: str, event_type: str
    ) -> None:
        self._logger.bind(
            provider=provider.value, event_id=event_id, event_type=event_type
        ).debug("Verified {} webhook {} ({})", provider.value, event_id, event_type)

    def webhook_rejected(self, provider: PaymentProvider, reason: str) -> None:
        self._logger.bind(provider=provider.value, reason=reason).warning(
            "Rejected {} webhook: {}", provider.value, reason
        )

    def webhook_duplicate(self, provider: PaymentProvider, event_id: str) -> None:
        self._logger.bind(provider=provider.value, event_id=event_id).info(
            "Skipping already processed {} webhook {}", provider.value, event_id
        )

    def webhook_applied(
        self, event_id: str, payment_id: str | None, status: str | None
    ) -> None:
        self._logger.bind(
            event_id=event_id, payment_id=payment_id, status=status
        ).info("Applied webhook {} to payment {} -> {}", event_id, payment_id, status)

    def status_regression_ignored(
        self, payment_id: str, current: str, incoming: str
    ) -> None:
        self._logger.bind(
            payment_id=payment_id, current=current, incoming=incoming
        ).debug(
            "Ignoring {} for payment {} already at {}", incoming, payment_id, current
        )

    def payment_uncertain(self, payment_id: str, operation: str) -> None:
        self._logger.bind(payment_id=payment_id, operation=operation).warning(
            "Payment {} uncertain after {} timed out; reconcile required",
            payment_id,
            operation,
        )

    def reconcile_resolved(self, payment_id: str, status: str) -> None:
        self._logger.bind(payment_id=payment_id, status=status).info(
            "Reconciled payment {} -> {}", payment_id, status
        )

    def reconcile_failed(self, payment_id: str, error: str) -> None:
        self._logger.bind(payment_id=payment_id).warning(
            "Could not reconcile payment {}: {}", payment_id, error
        )
