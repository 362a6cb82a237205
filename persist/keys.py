"""
Keys for values in the persistence.

A key is scoped by a *realm* (normally the account contact address), has a
*kind* and a caller-chosen *name* (normally the certificate's primary
domain).  Its string form is used directly as a storage identifier, so it is
deterministic and safe as a file name.
"""
from __future__ import annotations

import enum
import hashlib
from dataclasses import dataclass
from pathlib import Path


class PersistKind(enum.Enum):
    ACCOUNT_PRIVATE_KEY = "account_private_key"
    PRIVATE_KEY = "private_key"
    CERTIFICATE = "certificate"

    @property
    def extension(self) -> str:
        """``crt`` for certificates, ``key`` for both key kinds."""
        return "crt" if self is PersistKind.CERTIFICATE else "key"

    @property
    def is_secret(self) -> bool:
        return self is not PersistKind.CERTIFICATE


def realm_hash(realm: str) -> int:
    """Stable 64-bit hash of a realm string (first 8 bytes of its SHA-256)."""
    return int.from_bytes(hashlib.sha256(realm.encode("utf-8")).digest()[:8], "big")


@dataclass(frozen=True)
class PersistKey:
    realm: int
    kind: PersistKind
    name: str

    @classmethod
    def new(cls, realm: str, kind: PersistKind, name: str) -> "PersistKey":
        """Create a key under the hashed *realm* string."""
        return cls(realm_hash(realm), kind, name)

    @property
    def sanitized_name(self) -> str:
        return self.name.replace(".", "_").replace("*", "STAR")

    def __str__(self) -> str:
        return f"{self.realm}_{self.kind.extension}_{self.sanitized_name}"

    def path_in(self, directory: Path) -> Path:
        return directory / f"{self}.{self.kind.extension}"
