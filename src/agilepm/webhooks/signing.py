"""HMAC-SHA256 payload signing.

The signature is computed over the exact bytes sent on the wire, so
receivers must verify against the raw request body, not a re-serialized
copy of the parsed JSON.
"""

from __future__ import annotations

import hashlib
import hmac

SIGNATURE_HEADER = "X-Webhook-Signature"


def _to_bytes(value: bytes | str) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def sign(payload: bytes | str, secret: str) -> str:
    """Compute the HMAC-SHA256 signature of a webhook body.

    Args:
        payload: Serialized body exactly as transmitted.
        secret: Subscription's shared secret.

    Returns:
        Lowercase hex digest (64 characters).
    """
    return hmac.new(
        key=secret.encode("utf-8"),
        msg=_to_bytes(payload),
        digestmod=hashlib.sha256,
    ).hexdigest()


def verify(payload: bytes | str, signature: str, secret: str) -> bool:
    """Check a signature in constant time.

    Args:
        payload: Raw body that was received.
        signature: Value of the signature header.
        secret: Shared secret for HMAC.

    Returns:
        True if the signature matches, False otherwise.
    """
    expected = sign(payload, secret)
    try:
        return hmac.compare_digest(expected, signature.strip())
    except TypeError:
        # compare_digest rejects non-ASCII str input
        return False
