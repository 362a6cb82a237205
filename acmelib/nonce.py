"""
Anti-replay nonce bookkeeping.

The CA hands out a fresh ``Replay-Nonce`` with every response, and each nonce
may be presented exactly once.  ``NonceCache`` keeps the most recent one and
hands it out under a lock, so two concurrent requests never sign with the
same value.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Mapping, Optional

REPLAY_NONCE_HEADER = "Replay-Nonce"

logger = logging.getLogger(__name__)


class NonceCache:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._nonce: Optional[str] = None

    def take(self, fetch: Callable[[], str]) -> str:
        """
        Return a nonce for one signed request and forget it.

        When nothing is cached, *fetch* (a HEAD to newNonce) supplies a fresh
        one.  Read-then-invalidate happens under the lock.
        """
        with self._lock:
            nonce, self._nonce = self._nonce, None
            if nonce is None:
                logger.debug("Requesting fresh nonce")
                nonce = fetch()
            return nonce

    def update(self, headers: Mapping[str, str]) -> Optional[str]:
        """Store the ``Replay-Nonce`` from a response, if it carried one."""
        nonce = headers.get(REPLAY_NONCE_HEADER)
        if nonce:
            with self._lock:
                self._nonce = nonce
            logger.debug("Storing nonce: %s", nonce)
        return nonce

    def clear(self) -> None:
        with self._lock:
            self._nonce = None

    @property
    def cached(self) -> Optional[str]:
        return self._nonce
