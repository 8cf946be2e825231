"""
Key material and publishable key bundles.

Private halves live in bytearrays so they can be overwritten in place when a
store is disposed or a one-time key is claimed.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..core.encoding import encode_base64

ED25519 = "ed25519"
CURVE25519 = "curve25519"
SIGNED_CURVE25519 = "signed_curve25519"


def wipe(buf: Optional[bytearray]) -> None:
    """Overwrite a secret buffer with zeros."""
    if buf is None:
        return
    for i in range(len(buf)):
        buf[i] = 0


@dataclass(repr=False)
class KeyPair:
    """
    Raw 32-byte key pair.

    repr is suppressed so private bytes never end up in logs or tracebacks.
    """
    public_key: bytes
    private_key: bytearray

    @property
    def public_b64(self) -> str:
        return encode_base64(self.public_key)

    def wipe(self) -> None:
        wipe(self.private_key)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(public_key={self.public_b64!r})"


@dataclass(repr=False)
class IdentityKeyPair:
    """
    Long-term device identity.

    Fields:
        signing: Ed25519 key pair used for all signatures
        encryption: X25519 key pair, generated independently of the signing key
    """
    signing: KeyPair
    encryption: KeyPair

    def public_keys(self) -> Dict[str, str]:
        return {
            ED25519: self.signing.public_b64,
            CURVE25519: self.encryption.public_b64,
        }

    def wipe(self) -> None:
        self.signing.wipe()
        self.encryption.wipe()

    def __repr__(self) -> str:
        return f"IdentityKeyPair({self.public_keys()!r})"


@dataclass(repr=False)
class OneTimeKey:
    """
    One-time X25519 key.

    Fields:
        key_id: "signed_curve25519:<index>", unique for the store's lifetime
        pair: Key material
        published: Set once the key has been handed to the directory service
    """
    key_id: str
    pair: KeyPair
    published: bool = False

    @property
    def public_b64(self) -> str:
        return self.pair.public_b64

    def wipe(self) -> None:
        self.pair.wipe()

    def __repr__(self) -> str:
        return f"OneTimeKey(key_id={self.key_id!r}, published={self.published})"


@dataclass
class SignaturesBlock:
    """
    Signatures keyed by signer: user_id -> ("<algorithm>:<device_id>" -> base64 signature).
    """
    entries: Dict[str, Dict[str, str]] = field(default_factory=dict)

    def add(self, user_id: str, key_id: str, signature_b64: str) -> None:
        self.entries.setdefault(user_id, {})[key_id] = signature_b64

    def get(self, user_id: str, key_id: str) -> Optional[str]:
        return self.entries.get(user_id, {}).get(key_id)

    def to_dict(self) -> Dict[str, Dict[str, str]]:
        return {user: dict(sigs) for user, sigs in self.entries.items()}

    @classmethod
    def from_dict(cls, data: Dict[str, Dict[str, str]]) -> "SignaturesBlock":
        """
        Raises:
            ValueError: If data is not a mapping of user id to mapping
        """
        data = data or {}
        if not isinstance(data, dict):
            raise ValueError("signatures must be an object")
        entries = {}
        for user, sigs in data.items():
            if not isinstance(sigs, dict):
                raise ValueError(f"signatures for {user} must be an object")
            entries[user] = dict(sigs)
        return cls(entries=entries)


@dataclass
class DeviceKeyBundle:
    """
    Publishable device keys.

    Fields:
        user_id: Owning user
        device_id: Device the keys belong to
        algorithms: Supported encryption algorithms, in preference order
        keys: "<key algorithm>:<device_id>" -> base64 public key
        signatures: Signatures over signing_payload()
    """
    user_id: str
    device_id: str
    algorithms: List[str]
    keys: Dict[str, str]
    signatures: SignaturesBlock = field(default_factory=SignaturesBlock)

    def signing_payload(self) -> Dict[str, Any]:
        """
        Get payload for signing (signatures field excluded).

        This is the canonical representation that gets signed.
        """
        return {
            "user_id": self.user_id,
            "device_id": self.device_id,
            "algorithms": list(self.algorithms),
            "keys": dict(self.keys),
        }

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for publication to the directory service."""
        data = self.signing_payload()
        data["signatures"] = self.signatures.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeviceKeyBundle":
        """
        Deserialize a bundle; unknown fields such as "unsigned" are dropped.

        Raises:
            KeyError: If user_id or device_id is missing
            ValueError: If a field has the wrong shape
        """
        user_id, device_id = data["user_id"], data["device_id"]
        if not isinstance(user_id, str) or not isinstance(device_id, str):
            raise ValueError("user_id and device_id must be strings")
        algorithms = data.get("algorithms", [])
        keys = data.get("keys", {})
        if not isinstance(algorithms, list):
            raise ValueError("algorithms must be a list")
        if not isinstance(keys, dict):
            raise ValueError("keys must be an object")
        return cls(
            user_id=user_id,
            device_id=device_id,
            algorithms=list(algorithms),
            keys=dict(keys),
            signatures=SignaturesBlock.from_dict(data.get("signatures", {})),
        )


@dataclass
class VerificationResult:
    """
    Outcome of a bundle check.

    A failed check is a value, not an exception; error says why.
    """
    valid: bool
    error: Optional[str] = None
