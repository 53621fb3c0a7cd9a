"""
WeChat Signature Verification

SECURITY BOUNDARY - Verify the platform's SHA-1 callback signature.
No I/O. No exceptions. Pure functions.

WeChat signs callbacks by sorting a small set of string fields
lexicographically, concatenating them and hashing with SHA-1:

- Plain mode:     sha1(sort([token, timestamp, nonce]))            -> ?signature=
- Encrypted mode: sha1(sort([token, timestamp, nonce, Encrypt]))   -> ?msg_signature=
"""

import hashlib
import hmac
from typing import Optional


def compute_signature(*parts: str) -> str:
    """
    Compute the canonical signature over the given fields.

    Args:
        parts: String fields (order does not matter)

    Returns:
        Lowercase hex SHA-1 digest of the sorted, concatenated fields
    """
    joined = "".join(sorted(str(p) for p in parts))
    return hashlib.sha1(joined.encode("utf-8")).hexdigest()


def verify(
    secret: Optional[str],
    timestamp: Optional[str],
    nonce: Optional[str],
    signature: Optional[str],
    encrypted_body: Optional[str] = None,
) -> bool:
    """
    Verify a callback signature.

    When ``encrypted_body`` is given the encrypted-body variant is used
    (the body is a fourth signed field). Any missing field fails
    verification; this function never raises.

    Args:
        secret: Shared token configured on the platform
        timestamp: ``timestamp`` query parameter
        nonce: ``nonce`` query parameter
        signature: ``signature`` or ``msg_signature`` query parameter
        encrypted_body: ``Encrypt`` element (encrypted mode only)

    Returns:
        True if the signature matches
    """
    if not secret or not timestamp or not nonce or not signature:
        return False

    parts = [secret, timestamp, nonce]
    if encrypted_body is not None:
        if not encrypted_body:
            return False
        parts.append(encrypted_body)

    expected = compute_signature(*parts)
    # Constant-time compare (bytes, so non-ASCII input cannot raise)
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


def verify_plain_signature(
    token: Optional[str],
    timestamp: Optional[str],
    nonce: Optional[str],
    signature: Optional[str],
) -> bool:
    """Verify a plain-mode ``signature``."""
    return verify(token, timestamp, nonce, signature)


def verify_msg_signature(
    token: Optional[str],
    timestamp: Optional[str],
    nonce: Optional[str],
    msg_signature: Optional[str],
    encrypted: Optional[str],
) -> bool:
    """Verify an encrypted-mode ``msg_signature`` over the ``Encrypt`` payload."""
    return verify(token, timestamp, nonce, msg_signature, encrypted_body=encrypted or "")
