"""
End-to-end issuance: order → challenges → finalize → download → persist.

The caller supplies a ``publish`` callback that makes the proof for one
challenge reachable by the CA (serve the HTTP resource, create the TXT
record, ...).  Everything else is driven here, step by step, so a failure
names the identifier and state where it stopped.
"""
from __future__ import annotations

import logging
from typing import Callable, Optional

from acmelib.account import Account
from acmelib.cert import Certificate
from acmelib.client import AcmeClient
from acmelib.crypto import PrivateKey, create_p256_key
from acmelib.order import HTTP_01, Authorization, Challenge, OrderFlow, Status
from acmelib.polling import RetryPolicy
from persist.base import Persist
from persist.keys import PersistKey, PersistKind

Publisher = Callable[[Authorization, Challenge, str], None]

logger = logging.getLogger(__name__)


def issue_certificate(
    client: AcmeClient,
    account: Account,
    domains: list[str],
    publish: Publisher,
    challenge_type: str = HTTP_01,
    key_factory: Callable[[], PrivateKey] = create_p256_key,
    policy: Optional[RetryPolicy] = None,
) -> Certificate:
    """
    Run one order for *domains* to completion and return the Certificate.

    *publish* is called with ``(authorization, challenge, key_authorization)``
    before the CA is asked to validate that challenge.
    """
    flow = OrderFlow(client, account, policy)
    order = flow.create(domains)

    for authz in flow.authorizations(order):
        if authz.status == Status.VALID:
            logger.info("Authorization for %s already valid", authz.identifier)
            continue
        challenge = authz.challenge(challenge_type)
        publish(authz, challenge, flow.key_authorization(challenge))
        flow.validate(authz, challenge)

    if order.status != Status.READY:
        order = flow.wait_until_ready(order)

    private_key = key_factory()
    if order.status == Status.READY:
        order = flow.finalize(order, private_key)
    else:
        logger.warning("Order %s already %s, skipping finalize", order.url, order.status.value)
    if order.status != Status.VALID or not order.certificate:
        order = flow.wait_for_certificate(order)

    cert = flow.download_certificate(order, private_key)
    logger.info("Issued certificate for %s", ", ".join(domains))
    return cert


def save_certificate(persist: Persist, realm: str, name: str, cert: Certificate) -> None:
    """Store the domain key and the certificate chain under *name*."""
    persist.put(PersistKey.new(realm, PersistKind.PRIVATE_KEY, name), cert.private_key.encode())
    persist.put(PersistKey.new(realm, PersistKind.CERTIFICATE, name), cert.certificate.encode())


def load_certificate(persist: Persist, realm: str, name: str) -> Optional[Certificate]:
    """Return the stored certificate for *name*, or None unless both halves exist."""
    key = persist.get(PersistKey.new(realm, PersistKind.PRIVATE_KEY, name))
    crt = persist.get(PersistKey.new(realm, PersistKind.CERTIFICATE, name))
    if key is None or crt is None:
        return None
    return Certificate(private_key=key.decode(), certificate=crt.decode())
