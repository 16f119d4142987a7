from __future__ import annotations

from typing import Any

from storefront.payments.models import PaymentProvider

RETRYABLE_STATUS_CODES = frozenset({408, 409, 425, 429, 500, 502, 503, 504})


class PaymentProviderError(Exception):
    """Transport, authentication or request failure reported by a provider.

    Business outcomes such as a declined card are not errors; they come back
    as a ``Payment`` with status ``FAILED``.
    """

    def __init__(
        self,
        message: str,
        *,
        provider: PaymentProvider | None = None,
        code: str | None = None,
        field: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.code = code
        self.field = field
        self.status_code = status_code
        self.details = details or {}

    @property
    def retryable(self) -> bool:
        return self.status_code in RETRYABLE_STATUS_CODES

    def __str__(self) -> str:
        parts = [self.message]
        if self.provider is not None:
            parts.append(f"provider={self.provider.value}")
        if self.code:
            parts.append(f"code={self.code}")
        if self.field:
            parts.append(f"field={self.field}")
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        return " ".join(parts)


class PaymentTimeoutError(PaymentProviderError):
    """The provider did not answer in time; the outcome is unknown."""


class SignatureVerificationError(PaymentProviderError):
    """A webhook or client confirmation signature did not verify."""


class PaymentConfigError(PaymentProviderError):
    """A provider is used without the credentials it needs."""
