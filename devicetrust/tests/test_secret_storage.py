"""
Tests for identity key persistence.
"""

import json
import os
import stat

import pytest

from devicetrust.core.errors import SecretStorageError
from devicetrust.keys import FileSecretStorage, IdentityKeyStore, InMemorySecretStorage


def test_file_storage_round_trip(tmp_path):
    storage = FileSecretStorage(str(tmp_path / "keys"))
    secrets = {"ed25519": b"\x01" * 32, "curve25519": b"\x02" * 32}

    storage.save_identity(secrets)

    assert storage.load_identity() == secrets


def test_file_storage_is_owner_only(tmp_path):
    storage = FileSecretStorage(str(tmp_path))
    storage.save_identity({"ed25519": b"\x01" * 32})

    mode = stat.S_IMODE(os.stat(storage.path).st_mode)

    assert mode == 0o600


def test_file_storage_empty_returns_none(tmp_path):
    assert FileSecretStorage(str(tmp_path)).load_identity() is None


def test_file_storage_clear(tmp_path):
    storage = FileSecretStorage(str(tmp_path))
    storage.save_identity({"ed25519": b"\x01" * 32})

    storage.clear()
    storage.clear()

    assert storage.load_identity() is None


def test_corrupt_file_raises(tmp_path):
    storage = FileSecretStorage(str(tmp_path))
    storage.path.write_text("{not json")

    with pytest.raises(SecretStorageError):
        storage.load_identity()


def test_unknown_version_raises(tmp_path):
    storage = FileSecretStorage(str(tmp_path))
    storage.path.write_text(json.dumps({"version": 99, "ed25519": "AAAA"}))

    with pytest.raises(SecretStorageError, match="Unsupported"):
        storage.load_identity()


def test_store_reloads_from_file(tmp_path):
    """A fresh store backed by the same file recovers the same identity."""
    first = IdentityKeyStore(storage=FileSecretStorage(str(tmp_path)))
    public = first.generate_identity_keys()
    first.dispose()

    second = IdentityKeyStore(storage=FileSecretStorage(str(tmp_path)))

    assert second.load_identity_keys()
    assert second.identity_keys == public


def test_in_memory_storage_copies_secrets():
    storage = InMemorySecretStorage()
    buf = bytearray(b"\x05" * 32)

    storage.save_identity({"ed25519": buf})
    buf[0] = 0

    assert storage.load_identity()["ed25519"][0] == 5
