"""
Core primitives shared by the key store and verification sessions.

- Canonical: deterministic JSON encoding for signatures
- Errors: failure taxonomy
- IDs / encoding: transaction ids, key ids, unpadded base64
- Config, logging and metrics: the ambient runtime stack
"""

from .canonical import canonicalize, canonical_json_bytes, canonical_json_str
from .encoding import encode_base64, decode_base64
from .ids import new_transaction_id, key_id, fingerprint
from .errors import (
    DeviceTrustError,
    KeyNotInitialized,
    InvalidArgument,
    CanonicalEncodingError,
    InvalidState,
    TransportFailure,
    SecretStorageError,
)

__all__ = [
    "canonicalize",
    "canonical_json_bytes",
    "canonical_json_str",
    "encode_base64",
    "decode_base64",
    "new_transaction_id",
    "key_id",
    "fingerprint",
    "DeviceTrustError",
    "KeyNotInitialized",
    "InvalidArgument",
    "CanonicalEncodingError",
    "InvalidState",
    "TransportFailure",
    "SecretStorageError",
]
