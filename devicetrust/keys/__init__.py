"""
Identity and one-time key management.

Provides:
- IdentityKeyStore: key lifecycle, bundles, signing and verification
- Key and bundle models with canonical signing payloads
- Ed25519/X25519 primitives
- Injectable secret storage
"""

from .model import (
    KeyPair,
    IdentityKeyPair,
    OneTimeKey,
    SignaturesBlock,
    DeviceKeyBundle,
    VerificationResult,
)
from .signer import SigningKey, VerifyingKey, verify_signature
from .storage import SecretStorage, InMemorySecretStorage, FileSecretStorage
from .store import IdentityKeyStore

__all__ = [
    "KeyPair",
    "IdentityKeyPair",
    "OneTimeKey",
    "SignaturesBlock",
    "DeviceKeyBundle",
    "VerificationResult",
    "SigningKey",
    "VerifyingKey",
    "verify_signature",
    "SecretStorage",
    "InMemorySecretStorage",
    "FileSecretStorage",
    "IdentityKeyStore",
]
