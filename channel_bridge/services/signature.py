import hashlib
import hmac
from typing import Optional

SIGNATURE_PREFIX = "sha256="


def compute_signature(raw_body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, header_value: Optional[str], secret: Optional[str]) -> bool:
    """Check a webhook signature against the exact bytes received.

    Accepts ``sha256=<hex>`` and bare ``<hex>``. Anything malformed is a
    mismatch, never an exception.
    """
    if not header_value or not secret:
        return False

    provided_hex = header_value.strip()
    if provided_hex.lower().startswith(SIGNATURE_PREFIX):
        provided_hex = provided_hex[len(SIGNATURE_PREFIX):]

    try:
        provided = bytes.fromhex(provided_hex)
    except ValueError:
        return False

    expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    if len(provided) != len(expected):
        return False
    return hmac.compare_digest(provided, expected)
