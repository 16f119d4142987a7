from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import (
    TIMESTAMP,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
)


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    pass


class LedgerStatus(Enum):
    """Statuses a payment record can hold.

    Mirrors ``PaymentStatus`` plus ``UNCERTAIN``: the provider was called but
    never answered, so the outcome must be reconciled before anything else
    happens to the record.
    """

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    AUTHORIZED = "AUTHORIZED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"
    DISPUTED = "DISPUTED"
    UNCERTAIN = "UNCERTAIN"


def utc_naive(value: datetime) -> datetime:
    """Normalize to naive UTC, which is how TIMESTAMP columns round-trip."""
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


class PaymentRecord(Base):
    """One payment attempt for an order, as the storefront knows it."""

    __tablename__ = "payments"
    __table_args__ = (
        UniqueConstraint(
            "provider",
            "provider_payment_id",
            name="uq_payments_provider_payment_id",
        ),
    )

    payment_record_id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )
    order_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String, nullable=False)
    # Unknown until the provider answers the create call
    provider_payment_id: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False)
    amount_minor: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_refunded_minor: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    failure_code: Mapped[str | None] = mapped_column(String, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
    deleted_at: Mapped[datetime | None] = mapped_column(TIMESTAMP, nullable=True)

    @property
    def ledger_status(self) -> LedgerStatus:
        return LedgerStatus(self.status)


class ProcessedWebhookEvent(Base):
    """A webhook delivery that has already been applied."""

    __tablename__ = "processed_webhook_events"
    __table_args__ = (
        UniqueConstraint(
            "provider", "event_id", name="uq_processed_webhook_events_event"
        ),
    )

    processed_webhook_event_id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )
    provider: Mapped[str] = mapped_column(String, nullable=False)
    event_id: Mapped[str] = mapped_column(String, nullable=False)
    event_type: Mapped[str | None] = mapped_column(String, nullable=True)
    processed_at: Mapped[datetime] = mapped_column(TIMESTAMP, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(TIMESTAMP, nullable=False)
