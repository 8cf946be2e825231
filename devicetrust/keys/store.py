"""
Identity and one-time key store.

Owns the device's long-term keys and its pool of one-time keys:
- generates and (optionally) persists identity keys
- builds signed device key bundles and one-time key uploads
- signs payloads and checks signatures
- enforces at-most-once publication and claiming of one-time keys
- wipes all private material on dispose()

Thread safety: signing and read-only views share a read lock; every mutation
takes the write lock.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from ..core.config import DEFAULT_ALGORITHMS
from ..core.errors import InvalidArgument, KeyNotInitialized
from ..core.ids import fingerprint, key_id
from ..core.locks import ReadWriteLock
from ..core import metrics
from .model import (
    CURVE25519,
    ED25519,
    SIGNED_CURVE25519,
    DeviceKeyBundle,
    IdentityKeyPair,
    OneTimeKey,
    SignaturesBlock,
    VerificationResult,
)
from .signer import (
    SigningKey,
    VerifyingKey,
    ed25519_from_private,
    generate_ed25519,
    generate_x25519,
    verify_signature,
    x25519_from_private,
)
from .storage import SecretStorage

logger = logging.getLogger(__name__)


class IdentityKeyStore:
    """
    Key store for one device.

    Usage:
        with IdentityKeyStore() as store:
            store.generate_identity_keys()
            bundle = store.build_device_key_bundle("@alice:example.org", "DEVICE")
            otks = store.generate_one_time_keys(50)
            store.mark_keys_published()
    """

    def __init__(
        self,
        storage: Optional[SecretStorage] = None,
        default_algorithms: Optional[List[str]] = None,
    ) -> None:
        self._storage = storage
        self._default_algorithms = list(default_algorithms or DEFAULT_ALGORITHMS)
        self._identity: Optional[IdentityKeyPair] = None
        self._one_time_keys: Dict[str, OneTimeKey] = {}
        self._next_key_index = 0
        self._lock = ReadWriteLock()

    # ------------------------------------------------------------------
    # Identity keys
    # ------------------------------------------------------------------

    def generate_identity_keys(self) -> Dict[str, str]:
        """
        Create identity keys, replacing (and wiping) any existing ones.

        Not idempotent: signatures made with a previous identity stop
        verifying against the new public key. Callers that only want keys on
        first run should check has_identity_keys or call load_identity_keys()
        first.

        Returns:
            Public identity keys {"ed25519": b64, "curve25519": b64}
        """
        with self._lock.write():
            identity = IdentityKeyPair(signing=generate_ed25519(), encryption=generate_x25519())

            # A failed save leaves the previous identity in place
            if self._storage is not None:
                try:
                    self._storage.save_identity({
                        ED25519: bytes(identity.signing.private_key),
                        CURVE25519: bytes(identity.encryption.private_key),
                    })
                except Exception:
                    identity.wipe()
                    raise

            if self._identity is not None:
                logger.warning("Replacing existing identity keys; previous signatures are invalidated")
                self._identity.wipe()
            self._identity = identity

            public = identity.public_keys()

        metrics.track_keys_generated("identity")
        logger.info(f"Generated identity keys (ed25519 fingerprint {fingerprint(public[ED25519])})")
        return public

    def load_identity_keys(self) -> bool:
        """
        Load identity keys from the injected secret storage.

        Returns:
            True if keys were loaded, False if storage is empty

        Raises:
            KeyNotInitialized: If no secret storage was configured
            SecretStorageError: If stored data is unreadable
        """
        if self._storage is None:
            raise KeyNotInitialized("No secret storage configured for this key store")

        with self._lock.write():
            secrets = self._storage.load_identity()
            if secrets is None:
                return False
            if ED25519 not in secrets or CURVE25519 not in secrets:
                raise InvalidArgument("Stored identity is missing a key")

            identity = IdentityKeyPair(
                signing=ed25519_from_private(secrets[ED25519]),
                encryption=x25519_from_private(secrets[CURVE25519]),
            )
            if self._identity is not None:
                self._identity.wipe()
            self._identity = identity
            public = identity.public_keys()

        logger.info(f"Loaded identity keys (ed25519 fingerprint {fingerprint(public[ED25519])})")
        return True

    @property
    def has_identity_keys(self) -> bool:
        with self._lock.read():
            return self._identity is not None

    @property
    def identity_keys(self) -> Dict[str, str]:
        """Public identity keys; raises KeyNotInitialized if none exist."""
        with self._lock.read():
            return self._require_identity().public_keys()

    def _require_identity(self) -> IdentityKeyPair:
        if self._identity is None:
            raise KeyNotInitialized("Identity keys have not been generated")
        return self._identity

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    def sign(self, data: bytes) -> bytes:
        """
        Detached Ed25519 signature over data with the identity key.

        Raises:
            KeyNotInitialized: If no identity key exists
        """
        with self._lock.read():
            identity = self._require_identity()
            return SigningKey(identity.signing).sign(bytes(data))

    def sign_json(self, payload: Any) -> str:
        """Sign the canonical encoding of payload; returns base64 signature."""
        with self._lock.read():
            identity = self._require_identity()
            return SigningKey(identity.signing).sign_json(payload)

    @staticmethod
    def verify(
        message: bytes,
        signature: Union[bytes, str],
        public_key: Union[bytes, str],
    ) -> bool:
        """
        Check a detached signature. Never raises; bad input is False.
        """
        valid = verify_signature(message, signature, public_key)
        if not valid:
            metrics.track_verify_failure()
        return valid

    # ------------------------------------------------------------------
    # Device key bundle
    # ------------------------------------------------------------------

    def build_device_key_bundle(
        self,
        user_id: str,
        device_id: str,
        algorithms: Optional[List[str]] = None,
    ) -> DeviceKeyBundle:
        """
        Build and sign the device key bundle for publication.

        The signature covers the canonical encoding of the bundle without its
        signatures field and is stored under signatures[user_id]["ed25519:<device_id>"].

        Raises:
            KeyNotInitialized: If identity keys were never generated
            InvalidArgument: If user_id or device_id is empty
        """
        if not user_id or not device_id:
            raise InvalidArgument("user_id and device_id are required")

        with self._lock.read():
            identity = self._require_identity()
            public = identity.public_keys()
            bundle = DeviceKeyBundle(
                user_id=user_id,
                device_id=device_id,
                algorithms=list(algorithms if algorithms is not None else self._default_algorithms),
                keys={
                    key_id(CURVE25519, device_id): public[CURVE25519],
                    key_id(ED25519, device_id): public[ED25519],
                },
            )
            signature = SigningKey(identity.signing).sign_json(bundle.signing_payload())

        bundle.signatures.add(user_id, key_id(ED25519, device_id), signature)
        logger.debug(f"Built device key bundle for {user_id}/{device_id}")
        return bundle

    @staticmethod
    def verify_device_key_bundle(bundle: Union[DeviceKeyBundle, Dict[str, Any]]) -> VerificationResult:
        """
        Check a bundle's self-signature against its own ed25519 key.

        Accepts the dataclass or its published dict form. Never raises.
        """
        try:
            if isinstance(bundle, dict):
                bundle = DeviceKeyBundle.from_dict(bundle)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            return VerificationResult(valid=False, error=f"Malformed bundle: {e}")

        signing_key_id = key_id(ED25519, bundle.device_id)
        public_key = bundle.keys.get(signing_key_id)
        if not public_key:
            return VerificationResult(valid=False, error=f"Bundle has no {signing_key_id} key")

        signature = bundle.signatures.get(bundle.user_id, signing_key_id)
        if not signature:
            return VerificationResult(valid=False, error=f"No signature by {bundle.user_id}/{signing_key_id}")

        try:
            valid = VerifyingKey.from_base64(public_key).verify_json(bundle.signing_payload(), signature)
        except (TypeError, ValueError) as e:
            return VerificationResult(valid=False, error=f"Undecodable key: {e}")

        if not valid:
            metrics.track_verify_failure()
            return VerificationResult(valid=False, error="Invalid signature")
        return VerificationResult(valid=True)

    # ------------------------------------------------------------------
    # One-time keys
    # ------------------------------------------------------------------

    def generate_one_time_keys(self, count: int) -> Dict[str, str]:
        """
        Generate count new one-time keys and add them to the unclaimed pool.

        Earlier unclaimed keys are kept. Key ids come from a store-wide counter
        and are never reused.

        Returns:
            {key_id: base64 public key} for the new keys only

        Raises:
            InvalidArgument: If count is not a positive integer
        """
        if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
            raise InvalidArgument(f"count must be a positive integer, got {count!r}")

        generated: Dict[str, str] = {}
        with self._lock.write():
            for _ in range(count):
                kid = key_id(SIGNED_CURVE25519, str(self._next_key_index))
                self._next_key_index += 1
                otk = OneTimeKey(key_id=kid, pair=generate_x25519())
                self._one_time_keys[kid] = otk
                generated[kid] = otk.public_b64
            total = len(self._one_time_keys)

        metrics.track_keys_generated("one_time", count)
        logger.info(f"Generated {count} one-time keys ({total} unclaimed)")
        return generated

    def signed_one_time_keys(self, user_id: str, device_id: str) -> Dict[str, Dict[str, Any]]:
        """
        Unpublished one-time keys in upload form.

        Returns:
            {key_id: {"key": b64, "signatures": {user_id: {"ed25519:<device>": sig}}}}
        """
        with self._lock.read():
            identity = self._require_identity()
            signer = SigningKey(identity.signing)
            signed = {}
            for kid, otk in self._one_time_keys.items():
                if otk.published:
                    continue
                body = {"key": otk.public_b64}
                sigs = SignaturesBlock()
                sigs.add(user_id, key_id(ED25519, device_id), signer.sign_json(body))
                body["signatures"] = sigs.to_dict()
                signed[kid] = body
        return signed

    def build_key_upload(
        self,
        user_id: str,
        device_id: str,
        algorithms: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """
        Body for the directory service upload: device keys plus unpublished one-time keys.
        """
        bundle = self.build_device_key_bundle(user_id, device_id, algorithms)
        return {
            "device_keys": bundle.to_dict(),
            "one_time_keys": self.signed_one_time_keys(user_id, device_id),
        }

    def mark_keys_published(self) -> int:
        """
        Mark every unpublished one-time key as published.

        Published keys stay in the pool until claimed.

        Returns:
            Number of keys newly marked
        """
        with self._lock.write():
            marked = 0
            for otk in self._one_time_keys.values():
                if not otk.published:
                    otk.published = True
                    marked += 1
        logger.info(f"Marked {marked} one-time keys as published")
        return marked

    def claim_one_time_key(self, key_id_: str) -> OneTimeKey:
        """
        Consume a one-time key for session establishment.

        The caller owns the returned key and must wipe() it once the session
        secret has been derived.

        Raises:
            InvalidArgument: If the key is unknown or already claimed
        """
        with self._lock.write():
            otk = self._one_time_keys.pop(key_id_, None)
        if otk is None:
            raise InvalidArgument(f"Unknown or already claimed one-time key: {key_id_}")
        logger.info(f"One-time key {key_id_} claimed")
        return otk

    def mark_keys_claimed(self, key_ids: Iterable[str]) -> int:
        """
        Remove claimed keys reported by the directory service and wipe them.

        Unknown ids are ignored (they may have been claimed locally already).

        Returns:
            Number of keys removed
        """
        removed = 0
        with self._lock.write():
            for kid in key_ids:
                otk = self._one_time_keys.pop(kid, None)
                if otk is not None:
                    otk.wipe()
                    removed += 1
        logger.info(f"Removed {removed} claimed one-time keys")
        return removed

    @property
    def one_time_keys(self) -> Dict[str, str]:
        """Unclaimed keys as {key_id: base64 public key}."""
        with self._lock.read():
            return {kid: otk.public_b64 for kid, otk in self._one_time_keys.items()}

    @property
    def unclaimed_count(self) -> int:
        with self._lock.read():
            return len(self._one_time_keys)

    @property
    def unpublished_count(self) -> int:
        with self._lock.read():
            return sum(1 for otk in self._one_time_keys.values() if not otk.published)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def dispose(self) -> None:
        """
        Overwrite all private key material and forget it.

        After dispose(), sign() raises KeyNotInitialized and the one-time key
        pool is empty. Persisted secrets in storage are left untouched.
        """
        with self._lock.write():
            if self._identity is not None:
                self._identity.wipe()
                self._identity = None
            for otk in self._one_time_keys.values():
                otk.wipe()
            self._one_time_keys.clear()
        logger.debug("Key store disposed")

    def __enter__(self) -> "IdentityKeyStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()
