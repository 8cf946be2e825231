"""
SAS key agreement (curve25519-hkdf-sha256).

Each side of a verification creates an ephemeral X25519 key pair, commits to
its public key, exchanges it, and derives:
- 6 SAS bytes that map to the emoji both humans compare
- HMAC-SHA256 keys for MACs over the identity keys being verified

Both sides must feed identical info strings, so the starter's values always
come first regardless of which side is computing.
"""

import hashlib
import hmac
from typing import Optional

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ..core.canonical import canonical_json_str
from ..core.encoding import decode_base64, encode_base64
from ..keys.model import KeyPair, wipe
from ..keys.signer import generate_x25519, x25519_from_private

KEY_AGREEMENT_PROTOCOL = "curve25519-hkdf-sha256"
HASH = "sha256"
MAC_METHOD = "hkdf-hmac-sha256.v2"
SAS_INFO_PREFIX = "MATRIX_KEY_VERIFICATION_SAS"
MAC_INFO_PREFIX = "MATRIX_KEY_VERIFICATION_MAC"
# key_id under which the sorted, comma-joined list of MACed key ids is itself MACed
KEY_IDS = "KEY_IDS"


def sas_info(
    starter_user: str,
    starter_device: str,
    starter_key: str,
    accepter_user: str,
    accepter_device: str,
    accepter_key: str,
    transaction_id: str,
) -> str:
    return "|".join([
        SAS_INFO_PREFIX,
        starter_user, starter_device, starter_key,
        accepter_user, accepter_device, accepter_key,
        transaction_id,
    ])


def mac_info(
    sender_user: str,
    sender_device: str,
    receiver_user: str,
    receiver_device: str,
    transaction_id: str,
    key_id: str,
) -> str:
    # Plain concatenation, no separators
    return f"{MAC_INFO_PREFIX}{sender_user}{sender_device}{receiver_user}{receiver_device}{transaction_id}{key_id}"


def make_commitment(public_key_b64: str, start_content: dict) -> str:
    """
    base64(sha256(public_key_b64 || canonical_json(start_content)))
    """
    digest = hashlib.sha256((public_key_b64 + canonical_json_str(start_content)).encode("utf-8")).digest()
    return encode_base64(digest)


def verify_commitment(public_key_b64: str, start_content: dict, commitment: str) -> bool:
    try:
        expected = make_commitment(public_key_b64, start_content)
    except (TypeError, ValueError):
        return False
    return hmac.compare_digest(expected.encode("ascii"), str(commitment).encode("utf-8"))


class SasKeyAgreement:
    """
    Ephemeral X25519 state for one verification.

    Usage:
        ours = SasKeyAgreement()
        ours.set_their_public_key(their_key_b64)
        sas_bytes = ours.generate_bytes(info, 6)
    """

    def __init__(self, private_key: Optional[bytes] = None):
        self._pair: KeyPair = x25519_from_private(private_key) if private_key is not None else generate_x25519()
        self._their_key: Optional[bytes] = None
        self._shared: Optional[bytearray] = None

    @property
    def public_key(self) -> str:
        """Our ephemeral public key, unpadded base64."""
        return self._pair.public_b64

    @property
    def their_public_key(self) -> Optional[str]:
        return encode_base64(self._their_key) if self._their_key is not None else None

    @property
    def has_their_key(self) -> bool:
        return self._shared is not None

    def set_their_public_key(self, public_key_b64: str) -> None:
        """
        Record the peer's ephemeral key and compute the shared secret.

        Raises:
            ValueError: If the key is not a valid X25519 public key
        """
        raw = decode_base64(public_key_b64)
        if len(raw) != 32:
            raise ValueError(f"X25519 public key must be 32 bytes, got {len(raw)}")
        if raw == self._pair.public_key:
            raise ValueError("peer presented our own ephemeral key")
        sk = X25519PrivateKey.from_private_bytes(bytes(self._pair.private_key))
        shared = sk.exchange(X25519PublicKey.from_public_bytes(raw))
        self._their_key = raw
        self._shared = bytearray(shared)

    def generate_bytes(self, info: str, length: int) -> bytes:
        """HKDF-SHA256 output bound to info."""
        if self._shared is None:
            raise ValueError("peer public key not set")
        hkdf = HKDF(algorithm=hashes.SHA256(), length=length, salt=None, info=info.encode("utf-8"))
        return hkdf.derive(bytes(self._shared))

    def calculate_mac(self, message: str, info: str) -> str:
        """HMAC-SHA256 of message under an HKDF key bound to info; base64."""
        key = self.generate_bytes(info, 32)
        return encode_base64(hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest())

    def wipe(self) -> None:
        self._pair.wipe()
        wipe(self._shared)
        self._shared = None
