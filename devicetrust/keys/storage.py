"""
Secret storage for identity keys.

The key store never touches ambient global state; persistence is injected as
a SecretStorage implementation.

Storage format (FileSecretStorage):
- One JSON file, created with mode 0600
- {"version": 1, "ed25519": "<b64 private>", "curve25519": "<b64 private>"}
"""

import json
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

from ..core.encoding import decode_base64, encode_base64
from ..core.errors import SecretStorageError

FORMAT_VERSION = 1


class SecretStorage(ABC):
    """
    Abstract persistence for identity private keys.

    Implementations receive and return raw private key bytes by algorithm name.
    """

    @abstractmethod
    def save_identity(self, secrets: Dict[str, bytes]) -> None:
        ...

    @abstractmethod
    def load_identity(self) -> Optional[Dict[str, bytes]]:
        """Return stored secrets, or None when nothing has been stored."""
        ...

    @abstractmethod
    def clear(self) -> None:
        ...


class InMemorySecretStorage(SecretStorage):
    """Process-local storage, used by tests and ephemeral devices."""

    def __init__(self) -> None:
        self._secrets: Optional[Dict[str, bytes]] = None

    def save_identity(self, secrets: Dict[str, bytes]) -> None:
        self._secrets = {alg: bytes(value) for alg, value in secrets.items()}

    def load_identity(self) -> Optional[Dict[str, bytes]]:
        if self._secrets is None:
            return None
        return dict(self._secrets)

    def clear(self) -> None:
        self._secrets = None


class FileSecretStorage(SecretStorage):
    """
    Identity keys in a single owner-only JSON file.
    """

    def __init__(self, directory: str, filename: str = "identity.json"):
        self.directory = Path(directory)
        self.path = self.directory / filename

    def save_identity(self, secrets: Dict[str, bytes]) -> None:
        record = {"version": FORMAT_VERSION}
        for alg, value in secrets.items():
            record[alg] = encode_base64(bytes(value))

        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(".tmp")
            fd = os.open(str(tmp_path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w") as f:
                json.dump(record, f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise SecretStorageError(f"Cannot write identity keys to {self.path}: {e}") from e

    def load_identity(self) -> Optional[Dict[str, bytes]]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r") as f:
                record = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise SecretStorageError(f"Cannot read identity keys from {self.path}: {e}") from e

        if record.get("version") != FORMAT_VERSION:
            raise SecretStorageError(f"Unsupported identity file version: {record.get('version')}")

        try:
            return {
                alg: decode_base64(value)
                for alg, value in record.items()
                if alg != "version"
            }
        except ValueError as e:
            raise SecretStorageError(f"Corrupt identity file {self.path}: {e}") from e

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise SecretStorageError(f"Cannot remove {self.path}: {e}") from e
