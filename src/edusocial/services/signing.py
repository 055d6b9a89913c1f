"""
Shared-secret HMAC signatures for inbound callbacks

Used by the moderation callback and the scheduled flush trigger.
"""
import hmac
import hashlib
import logging
from typing import Optional

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


def compute_signature(secret: str, payload: bytes) -> str:
    """HMAC-SHA256 of the raw payload, hex encoded"""
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def verify_signature(secret: str, payload: bytes, signature: Optional[str]) -> bool:
    """
    Check a callback signature in constant time

    Accepts both a bare hex digest and the "sha256=<hex>" form. An unset
    secret never verifies.
    """
    if not secret or not signature:
        return False

    if signature.startswith(SIGNATURE_PREFIX):
        signature = signature[len(SIGNATURE_PREFIX):]

    try:
        expected = compute_signature(secret, payload)
        return hmac.compare_digest(expected, signature.strip().lower())
    except (TypeError, ValueError) as e:
        logger.warning(f"Signature verification failed: {e}")
        return False


def verify_shared_secret(secret: str, provided: Optional[str]) -> bool:
    """Constant-time comparison of a bearer-style shared secret"""
    if not secret or not provided:
        return False
    return hmac.compare_digest(secret.encode(), provided.encode())
