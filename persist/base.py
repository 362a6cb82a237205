"""The persistence contract.

Backends are plain objects with ``put`` and ``get``; they are selected by
passing one in, not by subclassing.  Implementations must be safe to share
between threads.
"""
from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from persist.keys import PersistKey


@runtime_checkable
class Persist(Protocol):
    def put(self, key: PersistKey, value: bytes) -> None:
        """Store *value* under *key*, replacing any previous value."""

    def get(self, key: PersistKey) -> Optional[bytes]:
        """Return the bytes stored under *key*, or ``None`` if there are none."""
