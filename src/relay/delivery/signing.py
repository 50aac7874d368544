"""
Module: signing.py
Description: Webhook payload serialization and HMAC signatures.

The envelope is serialized once to canonical JSON bytes and the
signature is computed over exactly those bytes, so a receiver verifies
the raw request body without re-serializing it.

Dependencies: hashlib, hmac, json, secrets
"""

import hashlib
import hmac
import json
import secrets
from typing import Any, Optional

SIGNATURE_ALGORITHM = hashlib.sha256
SECRET_BYTES = 32


def canonical_json(obj: Any) -> bytes:
    """Serialize with sorted keys and compact separators as UTF-8 bytes."""
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(',', ':'),
        ensure_ascii=False
    ).encode('utf-8')


def sign_payload(body: bytes, secret: str) -> str:
    """HMAC-SHA256 hex digest of body."""
    return hmac.new(secret.encode('utf-8'), body, SIGNATURE_ALGORITHM).hexdigest()


def verify_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """
    Check a received signature against the raw body.

    Args:
        body: Raw request body exactly as received
        signature: Value of the X-Webhook-Signature header
        secret: Subscription secret

    Returns:
        True if the signature matches (constant-time comparison)
    """
    if not signature or not secret:
        return False
    expected = sign_payload(body, secret)
    return hmac.compare_digest(expected, signature.strip().lower())


def generate_secret() -> str:
    """Random 64 hex character secret."""
    return secrets.token_hex(SECRET_BYTES)
