"""In-memory persistence for development and tests."""
from __future__ import annotations

import threading
from typing import Optional

from persist.keys import PersistKey


class MemoryPersist:
    """
    Entries live only as long as the process.

    The CA rate-limits issuance, so throwing away the account and certificates
    on every run is a poor fit for production use.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, bytes] = {}

    def put(self, key: PersistKey, value: bytes) -> None:
        with self._lock:
            self._entries[str(key)] = bytes(value)

    def get(self, key: PersistKey) -> Optional[bytes]:
        with self._lock:
            return self._entries.get(str(key))

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
