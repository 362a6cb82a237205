"""
File system persistence.

Layout (one file per key):
  <dir>/<realm>_key_<name>.key   — account / domain private key (mode 0o600)
  <dir>/<realm>_crt_<name>.crt   — certificate chain (default mode)

All writes are atomic: temp file + fsync + atomic rename.
"""
from __future__ import annotations

import logging
import os
import stat
import threading
from pathlib import Path
from typing import Optional, Union

from acmelib.errors import PersistenceFailure
from persist.atomic import atomic_write_bytes
from persist.keys import PersistKey

_SECRET_MODE = stat.S_IRUSR | stat.S_IWUSR  # 0o600

logger = logging.getLogger(__name__)


class FilePersist:
    def __init__(self, directory: Union[str, os.PathLike]) -> None:
        """The directory is created on first write and must be writable."""
        self.directory = Path(directory)
        self._lock = threading.Lock()

    def put(self, key: PersistKey, value: bytes) -> None:
        path = key.path_in(self.directory)
        mode = _SECRET_MODE if key.kind.is_secret and os.name == "posix" else None
        try:
            with self._lock:
                atomic_write_bytes(path, value, mode=mode)
        except OSError as exc:
            raise PersistenceFailure(f"Could not write {path}: {exc}") from exc
        logger.debug("Persisted %s to %s", key.kind.value, path)

    def get(self, key: PersistKey) -> Optional[bytes]:
        path = key.path_in(self.directory)
        try:
            with self._lock:
                return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise PersistenceFailure(f"Could not read {path}: {exc}") from exc
