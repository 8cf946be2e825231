"""
Ed25519 signing and X25519 key generation.

Raw 32-byte keys are exchanged with the rest of the package; cryptography
key objects are built on demand and never stored.
"""

from typing import Any, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey

from ..core.canonical import canonical_json_bytes
from ..core.encoding import decode_base64, encode_base64
from .model import KeyPair


def generate_ed25519() -> KeyPair:
    """Generate new Ed25519 keypair."""
    sk = Ed25519PrivateKey.generate()
    return KeyPair(
        public_key=sk.public_key().public_bytes_raw(),
        private_key=bytearray(sk.private_bytes_raw()),
    )


def generate_x25519() -> KeyPair:
    """Generate new X25519 keypair (never derived from an Ed25519 key)."""
    sk = X25519PrivateKey.generate()
    return KeyPair(
        public_key=sk.public_key().public_bytes_raw(),
        private_key=bytearray(sk.private_bytes_raw()),
    )


def ed25519_from_private(private_key: bytes) -> KeyPair:
    sk = Ed25519PrivateKey.from_private_bytes(bytes(private_key))
    return KeyPair(public_key=sk.public_key().public_bytes_raw(), private_key=bytearray(private_key))


def x25519_from_private(private_key: bytes) -> KeyPair:
    sk = X25519PrivateKey.from_private_bytes(bytes(private_key))
    return KeyPair(public_key=sk.public_key().public_bytes_raw(), private_key=bytearray(private_key))


class SigningKey:
    """
    Ed25519 signing key wrapper over a KeyPair.

    Provides:
    - Signing of raw bytes
    - Signing of canonical JSON payloads
    """

    def __init__(self, pair: KeyPair):
        self.pair = pair

    def sign(self, data: bytes) -> bytes:
        """
        Sign bytes using Ed25519.

        Returns:
            64-byte detached signature
        """
        sk = Ed25519PrivateKey.from_private_bytes(bytes(self.pair.private_key))
        return sk.sign(data)

    def sign_json(self, payload: Any) -> str:
        """
        Sign payload's canonical encoding and return unpadded base64 signature.
        """
        return encode_base64(self.sign(canonical_json_bytes(payload)))


class VerifyingKey:
    """
    Ed25519 verifying key (public key only).

    Verification never raises: malformed keys, signatures or payloads are
    reported as False.
    """

    def __init__(self, public_key: bytes):
        self.public_key = public_key

    @classmethod
    def from_base64(cls, public_key_b64: str) -> "VerifyingKey":
        return cls(decode_base64(public_key_b64))

    def verify(self, message: bytes, signature: bytes) -> bool:
        try:
            Ed25519PublicKey.from_public_bytes(bytes(self.public_key)).verify(bytes(signature), bytes(message))
            return True
        except (InvalidSignature, ValueError, TypeError):
            return False

    def verify_json(self, payload: Any, signature_b64: str) -> bool:
        """
        Verify base64 signature over the canonical encoding of payload.
        """
        try:
            message = canonical_json_bytes(payload)
            signature = decode_base64(signature_b64)
        except ValueError:
            return False
        return self.verify(message, signature)


def verify_signature(
    message: bytes,
    signature: Union[bytes, str],
    public_key: Union[bytes, str],
) -> bool:
    """
    Check a detached Ed25519 signature.

    signature and public_key may be raw bytes or base64 strings. Any parse or
    cryptographic failure returns False.
    """
    try:
        if isinstance(signature, str):
            signature = decode_base64(signature)
        if isinstance(public_key, str):
            public_key = decode_base64(public_key)
    except ValueError:
        return False
    if not isinstance(message, (bytes, bytearray)):
        return False
    return VerifyingKey(public_key).verify(message, signature)
