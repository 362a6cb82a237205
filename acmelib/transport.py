"""
Thin requests-based transport.

Performs bare GET / HEAD / POST calls with a fixed per-call timeout and turns
connection-level failures into ``TransportFailure``.  Status codes are left
for the caller to interpret, so the nonce of an error response can still be
captured.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

import requests

from acmelib.errors import TransportFailure
from acmelib.jws import JOSE_CONTENT_TYPE

DEFAULT_TIMEOUT = 30
USER_AGENT = "acmelib/1.0"

logger = logging.getLogger(__name__)


class HttpTransport:
    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        ca_bundle: str = "",
        insecure: bool = False,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": USER_AGENT})

        if insecure:
            import urllib3
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
            self._session.verify = False
        elif ca_bundle:
            self._session.verify = ca_bundle

    def get(self, url: str, accept: str = "application/json") -> requests.Response:
        return self._send("GET", url, headers={"Accept": accept})

    def head(self, url: str) -> requests.Response:
        return self._send("HEAD", url)

    def post(self, url: str, body: dict, accept: str = "application/json") -> requests.Response:
        return self._send(
            "POST",
            url,
            json=body,
            headers={"Content-Type": JOSE_CONTENT_TYPE, "Accept": accept},
        )

    def close(self) -> None:
        self._session.close()

    def _send(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        logger.debug("Sending %s request to %s", method, url)
        try:
            resp = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.Timeout as exc:
            raise TransportFailure(f"{method} {url} timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            raise TransportFailure(f"{method} {url} failed: {exc}") from exc
        logger.debug("Received response %d from %s", resp.status_code, url)
        return resp
