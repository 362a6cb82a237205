"""
Account registration and lookup (RFC 8555 §7.3).

An ``Account`` is a value owned by the caller: the account URL (used as the
JWS ``kid`` for every later request), its status and contacts, and the
private key that signs on its behalf.  The key never leaves the process.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from acmelib import jws as jwslib
from acmelib.client import AcmeClient, read_json
from acmelib.crypto import PrivateKey, create_p256_key, load_private_key_pem, private_key_to_pem
from acmelib.errors import ApiProblem, CodecFailure
from persist.base import Persist
from persist.keys import PersistKey, PersistKind

# "@" never appears in a domain, so no certificate name can sanitize to this
ACCOUNT_KEY_NAME = "@account"

logger = logging.getLogger(__name__)


@dataclass
class Account:
    url: str
    status: str
    contact: list[str]
    key: PrivateKey = field(repr=False, compare=False)

    @property
    def kid(self) -> str:
        return self.url

    @property
    def thumbprint(self) -> str:
        return jwslib.compute_jwk_thumbprint(self.key)

    def key_authorization(self, token: str) -> str:
        return jwslib.compute_key_authorization(token, self.key)


class AccountManager:
    def __init__(self, client: AcmeClient) -> None:
        self.client = client

    def register(
        self,
        key: PrivateKey,
        contact: Iterable[str] = (),
        terms_agreed: bool = True,
    ) -> Account:
        """
        POST newAccount signed with the raw public key.

        A key the CA already knows is not an error: the CA answers 200 with
        the existing account instead of 201, and both yield the same Account.
        """
        payload = {"termsOfServiceAgreed": terms_agreed, "contact": list(contact)}
        resp = self.client.post_signed(self.client.directory.new_account, payload, key)
        account = _account_from_response(resp, key)
        logger.info(
            "%s account %s (status=%s)",
            "Registered" if resp.status_code == 201 else "Found existing",
            account.url,
            account.status,
        )
        return account

    def locate(self, key: PrivateKey) -> Optional[Account]:
        """
        POST newAccount with onlyReturnExisting=True.
        Returns None when the CA has no account for *key*.
        """
        try:
            resp = self.client.post_signed(
                self.client.directory.new_account, {"onlyReturnExisting": True}, key
            )
        except ApiProblem as e:
            if e.code == "accountDoesNotExist":
                return None
            raise
        return _account_from_response(resp, key)

    def load_or_register(
        self,
        persist: Persist,
        realm: str,
        contact: Iterable[str] = (),
        key_factory: Callable[[], PrivateKey] = create_p256_key,
    ) -> Account:
        """
        Register the account whose key is stored under *realm*.

        A new key is created with *key_factory* and persisted first when none
        is stored yet, so the same account is found again on the next run.
        """
        pkey = PersistKey.new(realm, PersistKind.ACCOUNT_PRIVATE_KEY, ACCOUNT_KEY_NAME)
        pem = persist.get(pkey)
        if pem is None:
            logger.info("No account key stored for realm, creating one")
            key = key_factory()
            persist.put(pkey, private_key_to_pem(key).encode())
        else:
            key = load_private_key_pem(pem)
        return self.register(key, contact)


def _account_from_response(resp, key: PrivateKey) -> Account:
    url = resp.headers.get("Location")
    if not url:
        raise CodecFailure("newAccount response has no Location header")
    body = read_json(resp)
    return Account(
        url=url,
        status=str(body.get("status", "")),
        contact=list(body.get("contact") or []),
        key=key,
    )
