"""Blocking JSON-over-HTTPS transport shared by the provider adapters."""

from __future__ import annotations

from collections.abc import Callable, Mapping
import json
import socket
import time
from typing import Any, cast
import urllib.error
import urllib.parse
import urllib.request

from storefront.payments.errors import PaymentProviderError, PaymentTimeoutError
from storefront.payments.logger import PaymentLogger
from storefront.payments.models import PaymentProvider

ErrorParser = Callable[[int, dict[str, Any]], PaymentProviderError]


def encode_form(payload: Mapping[str, Any], prefix: str = "") -> list[tuple[str, str]]:
    """Flatten nested mappings/lists into bracketed form fields.

    ``{"metadata": {"order": "1"}}`` becomes ``metadata[order]=1``.
    """
    fields: list[tuple[str, str]] = []
    for key, value in payload.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, Mapping):
            fields.extend(encode_form(value, name))
        elif isinstance(value, list | tuple):
            for index, entry in enumerate(value):
                if isinstance(entry, Mapping):
                    fields.extend(encode_form(entry, f"{name}[{index}]"))
                else:
                    fields.append((f"{name}[{index}]", str(entry)))
        elif isinstance(value, bool):
            fields.append((name, "true" if value else "false"))
        else:
            fields.append((name, str(value)))
    return fields


def _is_timeout(error: BaseException) -> bool:
    if isinstance(error, TimeoutError | socket.timeout):
        return True
    reason = getattr(error, "reason", None)
    return isinstance(reason, TimeoutError | socket.timeout)


class JsonTransport:
    """Send one request, retrying transient failures with exponential backoff.

    Retryable HTTP statuses are always retried. Connection errors and
    timeouts are retried only when the request is safe to repeat (GET, or
    carrying an idempotency key). A timeout that is not retried surfaces as
    ``PaymentTimeoutError`` because the provider may have acted on it.
    """

    def __init__(
        self,
        *,
        provider: PaymentProvider,
        base_url: str,
        error_parser: ErrorParser,
        timeout_seconds: float = 30.0,
        max_retries: int = 3,
        idempotency_header: str = "Idempotency-Key",
        backoff_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
        payment_logger: PaymentLogger | None = None,
    ) -> None:
        self._provider = provider
        self._base_url = base_url.rstrip("/")
        self._error_parser = error_parser
        self._timeout = timeout_seconds
        self._max_retries = max_retries
        self._idempotency_header = idempotency_header
        self._backoff = backoff_seconds
        self._sleep = sleep
        self._logger = payment_logger or PaymentLogger()

    @property
    def base_url(self) -> str:
        return self._base_url

    def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Mapping[str, Any] | None = None,
        form_body: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        url = self._base_url + path
        all_headers = {"Accept": "application/json", **(headers or {})}
        data: bytes | None = None
        if json_body is not None:
            data = json.dumps(json_body, default=str).encode("utf-8")
            all_headers["Content-Type"] = "application/json"
        elif form_body is not None:
            data = urllib.parse.urlencode(encode_form(form_body)).encode("utf-8")
            all_headers["Content-Type"] = "application/x-www-form-urlencoded"
        if idempotency_key:
            all_headers[self._idempotency_header] = idempotency_key

        repeatable = method == "GET" or idempotency_key is not None
        attempts = max(1, self._max_retries + 1)
        for attempt in range(attempts):
            last_attempt = attempt == attempts - 1
            try:
                return self._send(method, url, data, all_headers)
            except PaymentTimeoutError:
                if last_attempt or not repeatable:
                    self._logger.request_timeout(self._provider, method, path)
                    raise
                reason = "timeout"
            except PaymentProviderError as e:
                transient = e.retryable or (e.status_code is None and repeatable)
                if last_attempt or not transient:
                    self._logger.request_failed(
                        self._provider, method, path, e.status_code, e.code
                    )
                    raise
                reason = f"status={e.status_code}" if e.status_code else "network"

            delay = self._backoff * (2**attempt)
            self._logger.request_retry(
                self._provider, method, path, attempt + 1, delay, reason
            )
            self._sleep(delay)

        raise PaymentProviderError(  # pragma: no cover - loop always returns or raises
            "Retry loop exhausted", provider=self._provider
        )

    def _send(
        self, method: str, url: str, data: bytes | None, headers: dict[str, str]
    ) -> dict[str, Any]:
        req = urllib.request.Request(  # noqa: S310
            url, data=data, headers=headers, method=method
        )
        try:
            with urllib.request.urlopen(  # noqa: S310 - external HTTPS
                req, timeout=self._timeout
            ) as resp:
                body = resp.read().decode("utf-8")
        except urllib.error.HTTPError as e:
            err_body = e.read().decode("utf-8", "ignore")
            raise self._error_parser(e.code, self._parse_error_body(err_body)) from e
        except urllib.error.URLError as e:
            if _is_timeout(e):
                raise PaymentTimeoutError(
                    f"Timed out calling {self._provider.value}",
                    provider=self._provider,
                    code="TIMEOUT",
                ) from e
            raise PaymentProviderError(
                f"Network error calling {self._provider.value}: {e.reason}",
                provider=self._provider,
                code="NETWORK_ERROR",
            ) from e
        except (TimeoutError, socket.timeout) as e:
            raise PaymentTimeoutError(
                f"Timed out calling {self._provider.value}",
                provider=self._provider,
                code="TIMEOUT",
            ) from e

        return self._parse_json_response(body)

    def _parse_json_response(self, body: str) -> dict[str, Any]:
        if not body.strip():
            return {}
        try:
            return cast(dict[str, Any], json.loads(body))
        except json.JSONDecodeError as e:
            raise PaymentProviderError(
                f"Failed to parse {self._provider.value} response as JSON: {e}",
                provider=self._provider,
                code="INVALID_RESPONSE",
            ) from e

    @staticmethod
    def _parse_error_body(body: str) -> dict[str, Any]:
        try:
            parsed = json.loads(body)
        except json.JSONDecodeError:
            return {"message": body[:500]}
        return parsed if isinstance(parsed, dict) else {"message": str(parsed)}
