"""The CA's directory: operation name -> endpoint URL."""
from __future__ import annotations

import logging
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, Iterator

from acmelib.errors import ApiProblem, CodecFailure
from acmelib.transport import HttpTransport

LETSENCRYPT = "https://acme-v02.api.letsencrypt.org/directory"
LETSENCRYPT_STAGING = "https://acme-staging-v02.api.letsencrypt.org/directory"

_REQUIRED = ("newNonce", "newAccount", "newOrder")

logger = logging.getLogger(__name__)


class Directory(Mapping):
    """Immutable view of a directory document.  Only URL entries are kept as items."""

    def __init__(self, urls: Mapping[str, str], meta: Mapping[str, Any] | None = None) -> None:
        self._urls = MappingProxyType(dict(urls))
        self.meta = MappingProxyType(dict(meta or {}))

    @classmethod
    def from_json(cls, body: Any) -> "Directory":
        if not isinstance(body, dict):
            raise CodecFailure(f"Directory document is not a JSON object: {body!r}")
        missing = [name for name in _REQUIRED if not isinstance(body.get(name), str)]
        if missing:
            raise CodecFailure(f"Directory lacks required endpoints: {', '.join(missing)}")
        urls = {k: v for k, v in body.items() if isinstance(v, str)}
        meta = body.get("meta") if isinstance(body.get("meta"), dict) else {}
        return cls(urls, meta)

    def __getitem__(self, name: str) -> str:
        return self._urls[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._urls)

    def __len__(self) -> int:
        return len(self._urls)

    def __repr__(self) -> str:
        return f"Directory({dict(self._urls)!r})"

    @property
    def new_nonce(self) -> str:
        return self._urls["newNonce"]

    @property
    def new_account(self) -> str:
        return self._urls["newAccount"]

    @property
    def new_order(self) -> str:
        return self._urls["newOrder"]

    @property
    def terms_of_service(self) -> str | None:
        return self.meta.get("termsOfService")


def fetch_directory(transport: HttpTransport, url: str) -> Directory:
    """GET the directory document at *url*."""
    resp = transport.get(url)
    if not resp.ok:
        raise ApiProblem.from_response(resp)
    try:
        body = resp.json()
    except ValueError as exc:
        raise CodecFailure(f"Directory at {url} is not JSON: {exc}") from exc
    directory = Directory.from_json(body)
    logger.debug("Fetched directory from %s: %s", url, sorted(directory))
    return directory
