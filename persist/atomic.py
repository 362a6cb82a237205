"""
Atomic file writing with fsync to prevent corrupt key and certificate files.

Pattern:
  1. Write to a temporary file in the same directory, created with the
     final permission bits
  2. Call fsync to flush to disk
  3. Rename atomically (atomic on POSIX filesystems)

A crash during the write leaves the previous file intact.
"""
from __future__ import annotations

import os
import tempfile
import uuid
from pathlib import Path

_CREATE_FLAGS = os.O_CREAT | os.O_EXCL | os.O_WRONLY | getattr(os, "O_BINARY", 0)


def _open_temp(path: Path, mode: int | None) -> tuple[int, str]:
    """
    Create the temp file next to *path* and return ``(fd, temp_path)``.

    With an explicit *mode* the file starts owner-only (``mkstemp``) and is
    chmod-ed before the rename.  Without one the kernel applies the process
    umask to 0o666, exactly as ``open()`` would; the umask is never changed.
    """
    if mode is not None:
        return tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    temp_path = str(path.parent / f".{path.name}.{uuid.uuid4().hex}.tmp")
    return os.open(temp_path, _CREATE_FLAGS, 0o666), temp_path


def atomic_write_bytes(path: Path, content: bytes, mode: int | None = None) -> None:
    """
    Atomically write bytes to *path* with fsync.

    *mode* sets the permission bits of the new file; ``None`` means the
    process default.  Secret content is never readable by others before the
    final mode is applied.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    # Same directory keeps the rename on one filesystem
    fd, temp_path = _open_temp(path, mode)

    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())

        if mode is not None:
            os.chmod(temp_path, mode)
        # On POSIX this overwrites the destination
        os.replace(temp_path, path)
    except BaseException:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise
