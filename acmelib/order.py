"""
Orders, authorizations and challenges (RFC 8555 §7.4 – §7.5).

``OrderFlow`` walks an order through its states:

    pending ──(all authorizations valid)──▶ ready ──(finalize)──▶ processing
        └──────────────▶ invalid ◀──────────────────────────────────┘
                                                 processing ──▶ valid

Every transition is read back from the CA; the only local judgement is the
guard that refuses to finalize an order the CA has not reported as ready.
"""
from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import requests

from acmelib import jws as jwslib
from acmelib.account import Account
from acmelib.cert import Certificate
from acmelib.client import PEM_CHAIN_CONTENT_TYPE, AcmeClient, read_json
from acmelib.crypto import PrivateKey, create_csr, csr_to_der, private_key_to_pem
from acmelib.errors import (
    UNAUTHORIZED,
    CodecFailure,
    ConfigurationError,
    OrderStateError,
    ValidationFailure,
)
from acmelib.polling import RetryPolicy, poll

HTTP_01 = "http-01"
DNS_01 = "dns-01"
TLS_ALPN_01 = "tls-alpn-01"

logger = logging.getLogger(__name__)


class Status(str, enum.Enum):
    PENDING = "pending"
    READY = "ready"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"
    EXPIRED = "expired"
    REVOKED = "revoked"
    DEACTIVATED = "deactivated"

    @classmethod
    def parse(cls, value: Any) -> "Status":
        try:
            return cls(value)
        except ValueError:
            raise CodecFailure(f"Unknown status {value!r}") from None


_AUTHZ_FAILED = {Status.INVALID, Status.EXPIRED, Status.REVOKED, Status.DEACTIVATED}


# ─── Resources ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Challenge:
    type: str
    url: str
    token: str
    status: Status
    error: Optional[dict] = None

    @classmethod
    def from_json(cls, body: dict) -> "Challenge":
        try:
            return cls(
                type=body["type"],
                url=body["url"],
                token=body.get("token", ""),
                status=Status.parse(body.get("status", "pending")),
                error=body.get("error"),
            )
        except (KeyError, TypeError) as exc:
            raise CodecFailure(f"Malformed challenge {body!r}: missing {exc}") from exc

    @property
    def http01_path(self) -> str:
        """Path the CA fetches for an http-01 challenge."""
        return f"/.well-known/acme-challenge/{self.token}"


@dataclass(frozen=True)
class Authorization:
    url: str
    identifier: str
    status: Status
    challenges: tuple[Challenge, ...]
    wildcard: bool = False
    expires: Optional[str] = None

    @classmethod
    def from_json(cls, url: str, body: dict) -> "Authorization":
        try:
            return cls(
                url=url,
                identifier=body["identifier"]["value"],
                status=Status.parse(body["status"]),
                challenges=tuple(Challenge.from_json(c) for c in body.get("challenges", [])),
                wildcard=bool(body.get("wildcard", False)),
                expires=body.get("expires"),
            )
        except (KeyError, TypeError) as exc:
            raise CodecFailure(f"Malformed authorization from {url}: missing {exc}") from exc

    @property
    def challenge_types(self) -> list[str]:
        return [c.type for c in self.challenges]

    def challenge(self, type: str) -> Challenge:
        """The challenge of *type*; asking for one the CA did not offer is an error."""
        for chall in self.challenges:
            if chall.type == type:
                return chall
        raise ConfigurationError(
            f"Challenge {type} not offered for {self.identifier} "
            f"(offered: {', '.join(self.challenge_types) or 'none'})"
        )


@dataclass(frozen=True)
class Order:
    url: str
    status: Status
    identifiers: tuple[str, ...]
    authorizations: tuple[str, ...]
    finalize: str
    certificate: Optional[str] = None
    expires: Optional[str] = None
    error: Optional[dict] = field(default=None, compare=False)

    @classmethod
    def from_json(cls, url: str, body: dict) -> "Order":
        try:
            return cls(
                url=url,
                status=Status.parse(body["status"]),
                identifiers=tuple(i["value"] for i in body.get("identifiers", [])),
                authorizations=tuple(body.get("authorizations", [])),
                finalize=body["finalize"],
                certificate=body.get("certificate"),
                expires=body.get("expires"),
                error=body.get("error"),
            )
        except (KeyError, TypeError) as exc:
            raise CodecFailure(f"Malformed order from {url}: missing {exc}") from exc

    @property
    def primary_name(self) -> str:
        return self.identifiers[0] if self.identifiers else ""


# ─── State machine ────────────────────────────────────────────────────────────


class OrderFlow:
    """Drives orders for one account.  Blocks only while polling."""

    def __init__(
        self,
        client: AcmeClient,
        account: Account,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.account = account
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    # ── Orders ────────────────────────────────────────────────────────────

    def create(self, domains: list[str]) -> Order:
        """POST newOrder for *domains* (dns identifiers)."""
        if not domains:
            raise ConfigurationError("An order needs at least one domain")
        payload = {"identifiers": [{"type": "dns", "value": d} for d in domains]}
        resp = self._post(self.client.directory.new_order, payload)
        url = resp.headers.get("Location")
        if not url:
            raise CodecFailure("newOrder response has no Location header")
        order = Order.from_json(url, read_json(resp))
        logger.info("Created order %s for %s (status=%s)",
                    order.url, ", ".join(order.identifiers), order.status.value)
        return order

    def refresh(self, order: Order) -> Order:
        return self._fetch_order(order)[0]

    # ── Authorizations & challenges ───────────────────────────────────────

    def authorization(self, url: str) -> Authorization:
        return self._fetch_authorization(url)[0]

    def authorizations(self, order: Order) -> list[Authorization]:
        return [self.authorization(url) for url in order.authorizations]

    def key_authorization(self, challenge: Challenge) -> str:
        """The value the caller publishes to satisfy *challenge*."""
        return self.account.key_authorization(challenge.token)

    def dns01_txt(self, challenge: Challenge) -> str:
        """TXT record content for ``_acme-challenge.<identifier>``."""
        return jwslib.dns01_txt_value(self.key_authorization(challenge))

    def trigger(self, challenge: Challenge) -> Challenge:
        """
        POST {} to the challenge URL: the proof is published, please validate.
        Does not wait for the result; see ``wait_for_authorization``.
        """
        resp = self._post(challenge.url, {})
        updated = Challenge.from_json(read_json(resp))
        logger.info("Triggered %s challenge %s (status=%s)",
                    challenge.type, challenge.url, updated.status.value)
        return updated

    def wait_for_authorization(self, authz: Authorization) -> Authorization:
        """
        Poll *authz* until it leaves pending.

        Raises ValidationFailure for invalid/expired/revoked/deactivated and
        PollTimeout when the retry budget runs out.
        """
        def settled(current: Authorization) -> bool:
            if current.status == Status.VALID:
                return True
            if current.status in _AUTHZ_FAILED:
                raise _validation_failure(current)
            return False

        result = poll(
            lambda: self._fetch_authorization(authz.url),
            settled,
            self.policy,
            what=f"authorization for {authz.identifier}",
            sleep=self._sleep,
        )
        logger.info("Authorization for %s is valid", result.identifier)
        return result

    def validate(self, authz: Authorization, challenge: Challenge) -> Authorization:
        """Trigger *challenge* and wait for *authz* to settle."""
        if authz.status == Status.VALID:
            return authz
        updated = self.trigger(challenge)
        if updated.status == Status.INVALID:
            raise _validation_failure(authz, updated)
        return self.wait_for_authorization(authz)

    # ── Finalization & certificate download ───────────────────────────────

    def wait_until_ready(self, order: Order) -> Order:
        """Poll *order* until the CA reports it ready (all authorizations valid)."""
        def settled(current: Order) -> bool:
            if current.status == Status.INVALID:
                raise _order_failure(current, "became invalid before finalization")
            return current.status != Status.PENDING

        return poll(
            lambda: self._fetch_order(order),
            settled,
            self.policy,
            what=f"order {order.url}",
            sleep=self._sleep,
        )

    def finalize(self, order: Order, private_key: PrivateKey) -> Order:
        """
        Submit a CSR for exactly the order's identifiers.

        The order must already read ``ready``; anything else is refused
        locally rather than sending a request the CA would reject.
        """
        if order.status != Status.READY:
            raise OrderStateError(
                f"Order {order.url} is {order.status.value}, not ready; "
                "all authorizations must be valid before finalizing",
                identifier=order.primary_name,
                status=order.status.value,
            )
        csr = create_csr(private_key, list(order.identifiers))
        payload = {"csr": jwslib.b64url(csr_to_der(csr))}
        resp = self._post(order.finalize, payload)
        updated = Order.from_json(order.url, read_json(resp))
        if updated.status == Status.INVALID:
            raise _order_failure(updated, "was rejected at finalization")
        logger.info("Finalized order %s (status=%s)", order.url, updated.status.value)
        return updated

    def wait_for_certificate(self, order: Order) -> Order:
        """Poll *order* until it is valid and carries a certificate URL."""
        def settled(current: Order) -> bool:
            if current.status == Status.INVALID:
                raise _order_failure(current, "became invalid while processing")
            if current.status == Status.VALID:
                if not current.certificate:
                    raise CodecFailure(f"Order {current.url} is valid but has no certificate URL")
                return True
            return False

        return poll(
            lambda: self._fetch_order(order),
            settled,
            self.policy,
            what=f"order {order.url}",
            sleep=self._sleep,
        )

    def download_certificate(self, order: Order, private_key: PrivateKey) -> Certificate:
        """POST-as-GET the certificate URL and pair the chain with *private_key*."""
        if order.status != Status.VALID or not order.certificate:
            raise OrderStateError(
                f"Order {order.url} has no certificate to download (status={order.status.value})",
                identifier=order.primary_name,
                status=order.status.value,
            )
        resp = self.client.post_as_get(
            order.certificate, self.account.key, self.account.kid, accept=PEM_CHAIN_CONTENT_TYPE
        )
        logger.info("Downloaded certificate for %s", ", ".join(order.identifiers))
        return Certificate(private_key=private_key_to_pem(private_key), certificate=resp.text)

    # ── Internal ──────────────────────────────────────────────────────────

    def _post(self, url: str, payload: Optional[dict]) -> requests.Response:
        return self.client.post_signed(url, payload, self.account.key, self.account.kid)

    def _fetch_order(self, order: Order) -> tuple[Order, requests.Response]:
        resp = self.client.post_as_get(order.url, self.account.key, self.account.kid)
        return Order.from_json(order.url, read_json(resp)), resp

    def _fetch_authorization(self, url: str) -> tuple[Authorization, requests.Response]:
        resp = self.client.post_as_get(url, self.account.key, self.account.kid)
        return Authorization.from_json(url, read_json(resp)), resp


def _validation_failure(authz: Authorization, challenge: Optional[Challenge] = None) -> ValidationFailure:
    errors = [c.error for c in ([challenge] if challenge else authz.challenges) if c.error]
    error = errors[0] if errors else {}
    return ValidationFailure(
        identifier=authz.identifier,
        status=authz.status.value if challenge is None else challenge.status.value,
        problem_type=error.get("type", UNAUTHORIZED),
        detail=error.get("detail", ""),
        subproblems=error.get("subproblems"),
    )


def _order_failure(order: Order, what: str) -> OrderStateError:
    error = order.error or {}
    detail = f"Order {order.url} for {', '.join(order.identifiers)} {what}"
    if error:
        detail += f": {error.get('type', '')} {error.get('detail', '')}".rstrip()
    return OrderStateError(
        detail,
        identifier=order.primary_name,
        status=order.status.value,
        subproblems=error.get("subproblems"),
    )
