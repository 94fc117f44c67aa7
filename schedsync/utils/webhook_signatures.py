"""
Webhook signature validation and payload fingerprinting.

The ATS signs the raw request body with HMAC-SHA256 (hex), sent in X-Icims-Signature.
Payload hashes give a stable fingerprint for dedup when the sender omits an event id.
"""
import hashlib
import hmac
import json
import logging
from typing import Any, Union

logger = logging.getLogger(__name__)


def compute_hmac_sha256(secret: str, body: Union[str, bytes]) -> str:
    """Hex HMAC-SHA256 of body keyed by secret."""
    if isinstance(body, str):
        body = body.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def validate_hmac_sha256(
    secret: str,
    signature: str,
    body: Union[str, bytes],
    header_prefix: str = "sha256=",
) -> bool:
    """
    Validate generic HMAC-SHA256 webhook signature.
    Handles signatures with optional prefix (e.g., "sha256=...").
    Returns True if valid, False if invalid - malformed input never raises.
    """
    if not secret or not signature:
        return False

    sig = signature.strip()
    if sig.startswith(header_prefix):
        sig = sig[len(header_prefix):]

    try:
        expected = compute_hmac_sha256(secret, body)
        # compare_digest rejects non-ASCII str input with TypeError
        return hmac.compare_digest(expected.encode("ascii"), sig.lower().encode("ascii"))
    except (TypeError, ValueError, UnicodeError) as e:
        logger.warning("Malformed webhook signature rejected: %s", type(e).__name__)
        return False


def canonical_json(data: Any) -> str:
    """JSON with sorted keys and compact separators, stable across key orderings."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)


def compute_payload_hash(data: Any) -> str:
    """SHA-256 hex of the canonical JSON form of data."""
    return hashlib.sha256(canonical_json(data).encode("utf-8")).hexdigest()
