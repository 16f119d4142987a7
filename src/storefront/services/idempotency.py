"""Stores that remember which webhook deliveries were already applied."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Protocol

from storefront.adapters.db.facade import DB
from storefront.core.config import DEFAULT_WEBHOOK_DEDUP_TTL_SECONDS
from storefront.infra.cache import TTLCache
from storefront.infra.clock import utcnow

NAMESPACE = "webhook-events"


class ProcessedEventStore(Protocol):
    def claim(self, provider: str, event_id: str, event_type: str | None) -> bool:
        """Mark the event as processed; False if it already was."""
        ...

    def release(self, provider: str, event_id: str) -> None:
        """Forget a claim so a failed delivery can be retried."""
        ...


class InMemoryEventStore:
    """Process-local store backed by ``TTLCache``."""

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_WEBHOOK_DEDUP_TTL_SECONDS,
        *,
        cache: TTLCache | None = None,
    ) -> None:
        self._ttl = ttl_seconds
        self._cache = cache or TTLCache(default_ttl_seconds=ttl_seconds)

    def claim(self, provider: str, event_id: str, event_type: str | None) -> bool:
        return self._cache.add(
            NAMESPACE, f"{provider}:{event_id}", event_type or "", self._ttl
        )

    def release(self, provider: str, event_id: str) -> None:
        self._cache.delete(NAMESPACE, f"{provider}:{event_id}")


class DatabaseEventStore:
    """Store shared by every worker using the same database."""

    def __init__(
        self,
        db: DB,
        ttl_seconds: int = DEFAULT_WEBHOOK_DEDUP_TTL_SECONDS,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = db
        self._ttl = ttl_seconds
        self._clock = clock

    def claim(self, provider: str, event_id: str, event_type: str | None) -> bool:
        return self._db.record_webhook_event(
            provider=provider,
            event_id=event_id,
            event_type=event_type,
            now=self._clock(),
            ttl_seconds=self._ttl,
        )

    def release(self, provider: str, event_id: str) -> None:
        self._db.forget_webhook_event(provider=provider, event_id=event_id)

    def purge_expired(self) -> int:
        return self._db.purge_expired_webhook_events(now=self._clock())
