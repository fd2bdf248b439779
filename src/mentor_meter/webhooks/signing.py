"""HMAC-SHA256 signing for provider webhooks.

Header format::

    X-Mentor-Signature: t=<unix seconds>,n=<nonce>,v1=<hex digest>

The digest covers ``"{t}.{n}.".encode() + raw_body``. A delivery is accepted
only inside the timestamp tolerance window, and each nonce only once (the
replay check itself lives in the ingestion service, which owns the store).
"""

import hashlib
import hmac
import secrets
import time
from datetime import datetime, timezone
from typing import NamedTuple, Optional

from mentor_meter.common.exceptions import WebhookAuthError

SIGNATURE_HEADER = "X-Mentor-Signature"


class VerifiedSignature(NamedTuple):
    signed_at: datetime
    nonce: str


def compute_signature(body: bytes, secret: str, timestamp: int, nonce: str) -> str:
    signed_payload = f"{timestamp}.{nonce}.".encode() + body
    return hmac.new(secret.encode(), signed_payload, hashlib.sha256).hexdigest()


def build_signature_header(
    body: bytes,
    secret: str,
    timestamp: Optional[int] = None,
    nonce: Optional[str] = None,
) -> str:
    """Produce a header value for ``body`` (used by the CLI and tests)."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    nonce = nonce or secrets.token_hex(16)
    digest = compute_signature(body, secret, timestamp, nonce)
    return f"t={timestamp},n={nonce},v1={digest}"


def parse_signature_header(header: str) -> dict[str, str]:
    parts = {}
    for item in (header or "").split(","):
        key, _, value = item.partition("=")
        if key.strip():
            parts[key.strip()] = value.strip()
    return parts


def verify_signature(
    body: bytes,
    header: str,
    secret: str,
    tolerance_seconds: int,
    now: Optional[float] = None,
) -> VerifiedSignature:
    """Check the signature header against ``body``.

    Raises:
        WebhookAuthError: If the header is missing or malformed, the
            timestamp lies outside the tolerance window, or the digest
            does not match.
    """
    if not header:
        raise WebhookAuthError("Missing webhook signature")

    parts = parse_signature_header(header)
    timestamp = parts.get("t", "")
    nonce = parts.get("n", "")
    expected = parts.get("v1", "")
    if not timestamp or not nonce or not expected:
        raise WebhookAuthError("Malformed webhook signature")
    try:
        signed_at = int(timestamp)
    except ValueError:
        raise WebhookAuthError("Malformed webhook signature timestamp")

    current = time.time() if now is None else now
    if abs(current - signed_at) > tolerance_seconds:
        raise WebhookAuthError("Webhook signature timestamp outside tolerance")

    computed = compute_signature(body, secret, signed_at, nonce)
    if not hmac.compare_digest(computed, expected):
        raise WebhookAuthError("Invalid webhook signature")

    return VerifiedSignature(
        signed_at=datetime.fromtimestamp(signed_at, timezone.utc),
        nonce=nonce,
    )
