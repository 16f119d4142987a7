"""HMAC signature checks for webhooks and client-side confirmations.

All comparisons go through ``hmac.compare_digest``. Signatures are computed
over the raw request bytes, so the body must be verified before it is
parsed or re-serialized.
"""

from __future__ import annotations

import hashlib
import hmac
import time

from storefront.payments.errors import SignatureVerificationError
from storefront.payments.models import PaymentProvider

DEFAULT_TOLERANCE_SECONDS = 300


def _as_bytes(value: str | bytes) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def hmac_sha256_hex(secret: str | bytes, message: str | bytes) -> str:
    return hmac.new(_as_bytes(secret), _as_bytes(message), hashlib.sha256).hexdigest()


def verify_hmac_sha256(
    secret: str | bytes, message: str | bytes, signature: str | None
) -> bool:
    if not signature:
        return False
    expected = hmac_sha256_hex(secret, message)
    return hmac.compare_digest(expected, signature.strip().lower())


def payment_confirmation_message(order_id: str, payment_id: str) -> str:
    return f"{order_id}|{payment_id}"


def sign_payment_confirmation(secret: str, order_id: str, payment_id: str) -> str:
    """Signature a checkout returns for ``order_id|payment_id``."""
    return hmac_sha256_hex(secret, payment_confirmation_message(order_id, payment_id))


def verify_payment_confirmation(
    secret: str,
    order_id: str,
    payment_id: str,
    signature: str | None,
    *,
    provider: PaymentProvider = PaymentProvider.RAZORPAY,
) -> None:
    """Raise unless ``signature`` is the HMAC-SHA256 of ``order_id|payment_id``."""
    message = payment_confirmation_message(order_id, payment_id)
    if not verify_hmac_sha256(secret, message, signature):
        raise SignatureVerificationError(
            "Invalid payment signature",
            provider=provider,
            code="SIGNATURE_VERIFICATION_FAILED",
            field="signature",
        )


def parse_timestamped_header(header: str) -> tuple[int, list[str]]:
    """Split a ``t=<unix>,v1=<hex>[,v1=<hex>...]`` header.

    Unknown schemes are ignored; several ``v1`` entries appear while a
    signing secret is being rolled.
    """
    timestamp: int | None = None
    signatures: list[str] = []
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                timestamp = None
        elif key == "v1":
            signatures.append(value)
    if timestamp is None or not signatures:
        raise ValueError("Signature header has no timestamp or v1 signature")
    return timestamp, signatures


def sign_timestamped_payload(secret: str, payload: bytes, timestamp: int) -> str:
    """Build the header value a sender would attach to ``payload``."""
    signed = f"{timestamp}.".encode() + payload
    return f"t={timestamp},v1={hmac_sha256_hex(secret, signed)}"


def verify_timestamped_signature(
    payload: bytes,
    header: str | None,
    secret: str,
    *,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    now: float | None = None,
    provider: PaymentProvider = PaymentProvider.STRIPE,
) -> int:
    """Verify a timestamped webhook signature and return its timestamp.

    The HMAC covers ``"<t>." + payload``; a signature older or newer than
    ``tolerance_seconds`` is rejected to stop replays.
    """
    if not header:
        raise SignatureVerificationError(
            "Missing webhook signature header",
            provider=provider,
            code="WEBHOOK_VERIFICATION_FAILED",
        )
    try:
        timestamp, signatures = parse_timestamped_header(header)
    except ValueError as e:
        raise SignatureVerificationError(
            "Malformed webhook signature header",
            provider=provider,
            code="WEBHOOK_VERIFICATION_FAILED",
        ) from e

    signed = f"{timestamp}.".encode() + payload
    if not any(verify_hmac_sha256(secret, signed, sig) for sig in signatures):
        raise SignatureVerificationError(
            "Invalid webhook signature",
            provider=provider,
            code="WEBHOOK_VERIFICATION_FAILED",
        )

    current = time.time() if now is None else now
    if tolerance_seconds > 0 and abs(current - timestamp) > tolerance_seconds:
        raise SignatureVerificationError(
            "Webhook timestamp outside the tolerance window",
            provider=provider,
            code="WEBHOOK_TIMESTAMP_EXPIRED",
        )
    return timestamp
