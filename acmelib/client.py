"""
Signed-request layer of the ACME RFC 8555 client.

``AcmeClient`` owns the per-session state every higher-level component
shares: the transport, the cached directory and the nonce cache.  Accounts
and orders are plain values owned by the caller; the client keeps no state
about them.

RFC 8555 compliance notes
--------------------------
* POST-as-GET: authorizations, orders and certificates are fetched with a
  signed empty payload (``post_as_get``), not a plain GET.
* Nonces: every response's ``Replay-Nonce`` is captured, including error
  responses.  ``badNonce`` problems are retried with that nonce up to
  ``nonce_retries`` signatures per call.
"""
from __future__ import annotations

import json
import logging
import threading
from typing import Any, Optional

import requests

from acmelib import jws as jwslib
from acmelib.crypto import PrivateKey
from acmelib.directory import Directory, fetch_directory
from acmelib.errors import ApiProblem, CodecFailure
from acmelib.nonce import REPLAY_NONCE_HEADER, NonceCache
from acmelib.transport import DEFAULT_TIMEOUT, HttpTransport

PEM_CHAIN_CONTENT_TYPE = "application/pem-certificate-chain"
_NONCE_RETRIES = 3

logger = logging.getLogger(__name__)


class AcmeClient:
    def __init__(
        self,
        directory_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        ca_bundle: str = "",
        insecure: bool = False,
        nonce_retries: int = _NONCE_RETRIES,
        transport: Optional[HttpTransport] = None,
        nonces: Optional[NonceCache] = None,
    ) -> None:
        self.directory_url = directory_url
        self.nonce_retries = max(1, nonce_retries)
        self.transport = transport or HttpTransport(
            timeout=timeout, ca_bundle=ca_bundle, insecure=insecure
        )
        self.nonces = nonces or NonceCache()
        self._directory: Optional[Directory] = None
        self._directory_lock = threading.Lock()

    # ── Directory & nonce ─────────────────────────────────────────────────

    @property
    def directory(self) -> Directory:
        """The CA directory, fetched on first use and cached for the session."""
        with self._directory_lock:
            if self._directory is None:
                self._directory = fetch_directory(self.transport, self.directory_url)
            return self._directory

    def refresh_directory(self) -> Directory:
        """Fetch the directory again and replace the cached copy."""
        directory = fetch_directory(self.transport, self.directory_url)
        with self._directory_lock:
            self._directory = directory
        return directory

    def new_nonce(self) -> str:
        """HEAD newNonce and return the anti-replay nonce it hands out."""
        resp = self.transport.head(self.directory.new_nonce)
        nonce = resp.headers.get(REPLAY_NONCE_HEADER)
        if not resp.ok and not nonce:
            raise ApiProblem.from_response(resp)
        if not nonce:
            raise CodecFailure(f"No {REPLAY_NONCE_HEADER} header from {self.directory.new_nonce}")
        return nonce

    # ── Signed requests ───────────────────────────────────────────────────

    def post_signed(
        self,
        url: str,
        payload: Optional[dict],
        key: PrivateKey,
        kid: Optional[str] = None,
        accept: str = "application/json",
    ) -> requests.Response:
        """
        Sign *payload* with *key* and POST it to *url*.

        Without *kid* the public JWK is embedded (newAccount only).  Raises
        ``ApiProblem`` for any non-2xx response that is not a retried badNonce.
        """
        for attempt in range(self.nonce_retries):
            nonce = self.nonces.take(self.new_nonce)
            body = jwslib.sign_request(payload, key, nonce, url, kid)
            resp = self.transport.post(url, body, accept=accept)
            self.nonces.update(resp.headers)
            if resp.ok:
                return resp

            problem = ApiProblem.from_response(resp)
            if problem.is_bad_nonce and attempt < self.nonce_retries - 1:
                logger.warning("badNonce from %s, retrying (attempt %d/%d)",
                               url, attempt + 1, self.nonce_retries)
                continue
            raise problem

        # Unreachable: the last attempt either returns or raises.
        raise ApiProblem("badNonce", "Exceeded nonce retry limit")

    def post_as_get(
        self,
        url: str,
        key: PrivateKey,
        kid: str,
        accept: str = "application/json",
    ) -> requests.Response:
        """Fetch a resource with a signed empty payload (RFC 8555 §6.3)."""
        return self.post_signed(url, None, key, kid, accept=accept)

    def close(self) -> None:
        self.transport.close()


def read_json(resp: requests.Response) -> dict[str, Any]:
    """Decode a response body that must be a JSON object."""
    try:
        body = json.loads(resp.text)
    except ValueError as exc:
        raise CodecFailure(f"Malformed JSON from {resp.url}: {exc}") from exc
    if not isinstance(body, dict):
        raise CodecFailure(f"Expected a JSON object from {resp.url}, got {type(body).__name__}")
    logger.debug("%s", body)
    return body


def make_client() -> AcmeClient:
    """
    Create an AcmeClient from the current application settings.
    Late-imports config to avoid circular imports at module load time.
    """
    from acmelib.config import settings  # noqa: PLC0415

    return AcmeClient(
        directory_url=settings.ACME_DIRECTORY_URL,
        timeout=settings.ACME_TIMEOUT,
        ca_bundle=settings.ACME_CA_BUNDLE,
        insecure=settings.ACME_INSECURE,
        nonce_retries=settings.ACME_NONCE_RETRIES,
    )
