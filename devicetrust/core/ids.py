"""
Identifier helpers.

Transaction ids correlate verification messages; key ids name published keys.
"""

import hashlib
import secrets

from .encoding import decode_base64


def new_transaction_id() -> str:
    """Generate an unguessable transaction id for a verification handshake."""
    return secrets.token_urlsafe(18)


def key_id(algorithm: str, identifier: str) -> str:
    """
    Build a key identifier of the form "<algorithm>:<identifier>".

    Example:
        key_id("ed25519", "DEVICEID") -> "ed25519:DEVICEID"
    """
    return f"{algorithm}:{identifier}"


def fingerprint(public_key_b64: str) -> str:
    """
    Short SHA-256 fingerprint of a base64 public key, safe to log.

    Returns:
        Hex string (16 characters)
    """
    raw = decode_base64(public_key_b64)
    return hashlib.sha256(raw).hexdigest()[:16]
