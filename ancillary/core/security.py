"""
Security utilities for webhook signing and identifier generation.

This module provides:
- Webhook signing secret generation
- HMAC-SHA256 payload signing in the ``sha256=<hex>`` header format
- Constant-time signature verification for webhook consumers
- Unguessable cancellation ids and booking references (PNRs)
"""

import hashlib
import hmac
import secrets
import string
import time
from typing import Optional, Union

from ancillary.core.logging import get_logger

logger = get_logger(__name__)

SIGNATURE_PREFIX = "sha256="
PNR_ALPHABET = string.ascii_uppercase + string.digits
_BASE36_ALPHABET = string.digits + string.ascii_lowercase


class SecurityError(Exception):
    """Base exception for security-related errors."""

    def __init__(self, message: str, code: str, **context):
        super().__init__(message)
        self.code = code
        self.context = context


def generate_webhook_secret(length: int = 32) -> str:
    """
    Generate a signing secret for a webhook subscription.

    Args:
        length: Number of random bytes (default: 32)

    Returns:
        Hex encoded secret, twice as long as ``length``

    Raises:
        SecurityError: If length is not positive

    Example:
        >>> len(generate_webhook_secret())
        64
    """
    if length <= 0:
        logger.error("Invalid secret length requested", length=length)
        raise SecurityError(
            "Secret length must be positive",
            code="INVALID_SECRET_LENGTH",
            length=length,
        )
    return secrets.token_hex(length)


def _to_bytes(value: Union[str, bytes]) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def compute_signature(payload: Union[str, bytes], secret: str) -> str:
    """
    Compute the hex HMAC-SHA256 digest of a payload.

    Args:
        payload: Serialized payload exactly as delivered
        secret: Subscription signing secret

    Returns:
        Hex digest without prefix
    """
    return hmac.new(
        _to_bytes(secret),
        _to_bytes(payload),
        hashlib.sha256,
    ).hexdigest()


def sign_payload(payload: Union[str, bytes], secret: str) -> str:
    """
    Sign a webhook payload.

    Args:
        payload: Serialized payload exactly as delivered
        secret: Subscription signing secret

    Returns:
        Signature header value in the form ``sha256=<hex>``

    Example:
        >>> sig = sign_payload('{"event":"cancellation.success"}', "s3cret")
        >>> verify_signature('{"event":"cancellation.success"}', sig, "s3cret")
        True
    """
    return f"{SIGNATURE_PREFIX}{compute_signature(payload, secret)}"


def verify_signature(
    payload: Union[str, bytes],
    signature: Optional[str],
    secret: str,
) -> bool:
    """
    Verify a webhook signature on the consumer side.

    The signature must carry the ``sha256=`` prefix and match the recomputed
    digest exactly. Comparison is constant time.

    Args:
        payload: Raw payload as received
        signature: Signature header value
        secret: Subscription signing secret

    Returns:
        True if the signature is valid, False otherwise
    """
    if not signature or not signature.startswith(SIGNATURE_PREFIX):
        logger.warning("Webhook signature missing or malformed")
        return False

    expected = sign_payload(payload, secret)
    return hmac.compare_digest(expected, signature)


def generate_cancellation_id(timestamp_ms: Optional[int] = None) -> str:
    """
    Generate a unique cancellation id.

    Args:
        timestamp_ms: Epoch milliseconds (defaults to now)

    Returns:
        Id in the form ``CXL-<epoch-ms>-<9 base36 chars>``
    """
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_BASE36_ALPHABET) for _ in range(9))
    return f"CXL-{timestamp_ms}-{suffix}"


def generate_pnr(length: int = 6) -> str:
    """
    Generate a booking reference.

    Args:
        length: Number of characters

    Returns:
        Upper-case alphanumeric reference
    """
    return "".join(secrets.choice(PNR_ALPHABET) for _ in range(length))


__all__ = [
    "SIGNATURE_PREFIX",
    "SecurityError",
    "compute_signature",
    "generate_cancellation_id",
    "generate_pnr",
    "generate_webhook_secret",
    "sign_payload",
    "verify_signature",
]
