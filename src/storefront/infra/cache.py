from __future__ import annotations

from collections.abc import Callable
import hashlib
import json
import threading
import time
from typing import Any

from loguru import logger

__all__ = ["TTLCache", "stable_key"]


class TTLCache:
    """
    Namespaced in-process cache with per-entry expiry.

    - Each (namespace, key) pair maps to a single value and its deadline.
    - Expired entries are dropped lazily on read.
    - All operations take one lock, so instances can be shared across threads.
    """

    def __init__(
        self,
        default_ttl_seconds: float = 300.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if default_ttl_seconds <= 0:
            raise ValueError("default_ttl_seconds must be positive")
        self._default_ttl = default_ttl_seconds
        self._clock = clock
        self._entries: dict[tuple[str, str], tuple[float, Any]] = {}
        self._lock = threading.Lock()

    # -------- Public API --------

    def get(self, namespace: str, key: str) -> Any | None:
        entry_key = self._entry_key(namespace, key)
        with self._lock:
            entry = self._entries.get(entry_key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[entry_key]
                logger.bind(namespace=namespace).debug(
                    "TTLCache entry expired in {}", namespace
                )
                return None
            return value

    def set(
        self, namespace: str, key: str, value: Any, ttl_seconds: float | None = None
    ) -> None:
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise ValueError("ttl_seconds must be positive")
        entry_key = self._entry_key(namespace, key)
        with self._lock:
            self._entries[entry_key] = (self._clock() + ttl, value)

    def add(
        self, namespace: str, key: str, value: Any, ttl_seconds: float | None = None
    ) -> bool:
        """Store only if no live entry exists; True when stored."""
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise ValueError("ttl_seconds must be positive")
        entry_key = self._entry_key(namespace, key)
        with self._lock:
            now = self._clock()
            entry = self._entries.get(entry_key)
            if entry is not None and entry[0] > now:
                return False
            self._entries[entry_key] = (now + ttl, value)
            return True

    def exists(self, namespace: str, key: str) -> bool:
        return self.get(namespace, key) is not None

    def delete(self, namespace: str, key: str) -> bool:
        entry_key = self._entry_key(namespace, key)
        with self._lock:
            return self._entries.pop(entry_key, None) is not None

    def clear_namespace(self, namespace: str) -> int:
        self._validate(namespace, "namespace")
        with self._lock:
            doomed = [k for k in self._entries if k[0] == namespace]
            for entry_key in doomed:
                del self._entries[entry_key]
        return len(doomed)

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            doomed = [k for k, (exp, _) in self._entries.items() if exp <= now]
            for entry_key in doomed:
                del self._entries[entry_key]
        return len(doomed)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # -------- Internal helpers --------

    def _entry_key(self, namespace: str, key: str) -> tuple[str, str]:
        self._validate(namespace, "namespace")
        self._validate(key, "key")
        return (namespace, key)

    @staticmethod
    def _validate(value: str, name: str) -> None:
        if not isinstance(value, str) or value.strip() == "":
            raise ValueError(f"{name} must be a non-empty string")


def stable_key(payload: Any) -> str:
    """
    Deterministic SHA256 hex digest over a canonical JSON serialization.

    Values JSON cannot encode natively (``Decimal``, ``datetime``) are
    serialized through ``str``.
    """
    data = json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=True,
        default=str,
    )
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
