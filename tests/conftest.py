"""
Shared pytest fixtures.

Fixture CA
----------
The `fixture_ca` fixture mocks a small ACME server with the `responses`
library: directory, newNonce, newAccount, newOrder, one order with one
authorization offering http-01 / dns-01 / tls-alpn-01, finalize and
certificate download.  Triggering any challenge marks the authorization
valid and the order ready, finalizing moves the order to processing and the
next order poll reports it valid.  With `fail_validation` set, triggering a
challenge makes the authorization and the order invalid instead.  Setting
`status_after_validation` lets the order skip straight past ready, as a CA
that finalizes on its own would.

Every response carries a fresh Replay-Nonce and every nonce presented in a
signed request is recorded, so tests can assert single use.
"""
from __future__ import annotations

import base64
import datetime
import itertools
import json
from typing import Optional

import pytest
import responses as resp_lib
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.oid import NameOID

from acmelib.crypto import create_p256_key

BASE = "https://ca.test"
DIRECTORY_URL = f"{BASE}/directory"
NEW_NONCE_URL = f"{BASE}/acme/new-nonce"
NEW_ACCOUNT_URL = f"{BASE}/acme/new-acct"
NEW_ORDER_URL = f"{BASE}/acme/new-order"
ACCOUNT_URL = f"{BASE}/acme/acct/7728515"
ORDER_URL = f"{BASE}/acme/order/YTqpYUthlVfwBncUufE8"
AUTHZ_URL = f"{BASE}/acme/authz/YTqpYUthlVfwBncUufE8IRWLMSRqcSs"
FINALIZE_URL = f"{BASE}/acme/finalize/7738992/18234324"
CERT_URL = f"{BASE}/acme/cert/fae41c070f967713109028"
CHALLENGE_URLS = {
    "http-01": f"{BASE}/acme/challenge/YTqpYUthlVfwBncUufE8IRWLMSRqcSs/216789597",
    "tls-alpn-01": f"{BASE}/acme/challenge/YTqpYUthlVfwBncUufE8IRWLMSRqcSs/216789598",
    "dns-01": f"{BASE}/acme/challenge/YTqpYUthlVfwBncUufE8IRWLMSRqcSs/216789599",
}
TOKENS = {
    "http-01": "MUi-gqeOJdRkSb_YR2eaMxQBqf6al8dgt_dOttSWb0w",
    "tls-alpn-01": "WCdRWkCy4THTD_j5IH4ISAzr59lFIg5wzYmKxuOJ1lU",
    "dns-01": "RRo2ZcXAEqxKvMH8RGcATjSK1KknLEUmauwfQ5i3gG8",
}
DOMAIN = "acmetest.example.com"

DIRECTORY = {
    "keyChange": f"{BASE}/acme/key-change",
    "newAccount": NEW_ACCOUNT_URL,
    "newNonce": NEW_NONCE_URL,
    "newOrder": NEW_ORDER_URL,
    "revokeCert": f"{BASE}/acme/revoke-cert",
    "meta": {"caaIdentities": ["testdir.org"]},
}


# ─── Certificate helpers ──────────────────────────────────────────────────────

def make_cert_pem(
    domains: list[str],
    not_after: Optional[datetime.datetime] = None,
    key=None,
) -> str:
    """Self-signed certificate for *domains*, valid until *not_after*."""
    key = key or create_p256_key()
    now = datetime.datetime.now(datetime.timezone.utc)
    not_after = not_after or now + datetime.timedelta(days=90)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domains[0])])
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(min(now, not_after) - datetime.timedelta(days=1))
        .not_valid_after(not_after)
        .add_extension(
            x509.SubjectAlternativeName([x509.DNSName(d) for d in domains]), critical=False
        )
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(Encoding.PEM).decode()


def decode_jws(body) -> tuple[dict, Optional[dict]]:
    """Return (protected header, payload or None for POST-as-GET) of a JWS body."""
    if isinstance(body, bytes):
        body = body.decode()
    jws = json.loads(body)

    def _dec(s: str) -> bytes:
        return base64.urlsafe_b64decode(s + "=" * (-len(s) % 4))

    protected = json.loads(_dec(jws["protected"]))
    payload = json.loads(_dec(jws["payload"])) if jws["payload"] else None
    return protected, payload


# ─── Fixture CA ───────────────────────────────────────────────────────────────

class FixtureCA:
    def __init__(self, rsps: resp_lib.RequestsMock) -> None:
        self.rsps = rsps
        self._counter = itertools.count(1)
        self.nonces_issued: list[str] = []
        self.nonces_presented: list[str] = []
        self.requests: list[tuple[str, dict, Optional[dict]]] = []
        self.account_exists = False
        self.authz_status = "pending"
        self.order_status = "pending"
        self.bad_nonce_budget = 0
        self.fail_validation = False
        self.status_after_validation = "ready"
        self.finalized_csr: Optional[str] = None
        self.cert_pem = make_cert_pem([DOMAIN])
        self._register()

    # ── helpers ──

    def next_nonce(self) -> str:
        nonce = f"nonce-{next(self._counter):04d}"
        self.nonces_issued.append(nonce)
        return nonce

    def _headers(self, **extra: str) -> dict:
        return {"Replay-Nonce": self.next_nonce(), **extra}

    def _signed(self, handler):
        def callback(request):
            protected, payload = decode_jws(request.body)
            self.nonces_presented.append(protected["nonce"])
            self.requests.append((request.url, protected, payload))
            if self.bad_nonce_budget > 0:
                self.bad_nonce_budget -= 1
                return (
                    400,
                    self._headers(**{"Content-Type": "application/problem+json"}),
                    json.dumps({"type": "urn:ietf:params:acme:error:badNonce",
                                "detail": "JWS has an invalid anti-replay nonce"}),
                )
            return handler(protected, payload)
        return callback

    # ── routes ──

    def _register(self) -> None:
        r = self.rsps
        r.add(resp_lib.GET, DIRECTORY_URL, json=DIRECTORY)
        r.add_callback(resp_lib.HEAD, NEW_NONCE_URL,
                       callback=lambda req: (200, self._headers(), ""))
        r.add_callback(resp_lib.POST, NEW_ACCOUNT_URL, callback=self._signed(self._new_account),
                       content_type="application/json")
        r.add_callback(resp_lib.POST, NEW_ORDER_URL, callback=self._signed(self._new_order),
                       content_type="application/json")
        r.add_callback(resp_lib.POST, ORDER_URL, callback=self._signed(self._get_order),
                       content_type="application/json")
        r.add_callback(resp_lib.POST, AUTHZ_URL, callback=self._signed(self._get_authz),
                       content_type="application/json")
        for typ, url in CHALLENGE_URLS.items():
            r.add_callback(resp_lib.POST, url, callback=self._signed(self._challenge(typ)),
                           content_type="application/json")
        r.add_callback(resp_lib.POST, FINALIZE_URL, callback=self._signed(self._finalize),
                       content_type="application/json")
        r.add_callback(resp_lib.POST, CERT_URL, callback=self._signed(self._certificate),
                       content_type="application/pem-certificate-chain")

    def _new_account(self, protected, payload):
        if payload.get("onlyReturnExisting") and not self.account_exists:
            return (
                400,
                self._headers(**{"Content-Type": "application/problem+json"}),
                json.dumps({"type": "urn:ietf:params:acme:error:accountDoesNotExist",
                            "detail": "No account exists with the provided key"}),
            )
        status = 200 if self.account_exists else 201
        self.account_exists = True
        body = {
            "id": 7728515,
            "key": protected.get("jwk"),
            "contact": payload.get("contact", ["mailto:foo@bar.com"]),
            "initialIp": "90.171.37.12",
            "createdAt": "2018-12-31T17:15:40.399104457Z",
            "status": "valid",
        }
        return status, self._headers(Location=ACCOUNT_URL), json.dumps(body)

    def _order_body(self) -> dict:
        body = {
            "status": self.order_status,
            "expires": "2019-01-09T08:26:43.570360537Z",
            "identifiers": [{"type": "dns", "value": DOMAIN}],
            "authorizations": [AUTHZ_URL],
            "finalize": FINALIZE_URL,
        }
        if self.order_status == "valid":
            body["certificate"] = CERT_URL
        return body

    def _new_order(self, protected, payload):
        return 201, self._headers(Location=ORDER_URL), json.dumps(self._order_body())

    def _get_order(self, protected, payload):
        if self.order_status == "processing":
            body = self._order_body()
            self.order_status = "valid"
            return 200, self._headers(**{"Retry-After": "0"}), json.dumps(body)
        return 200, self._headers(), json.dumps(self._order_body())

    def _authz_body(self) -> dict:
        challenges = []
        for typ in ("http-01", "tls-alpn-01", "dns-01"):
            chall = {"type": typ, "status": self.authz_status, "url": CHALLENGE_URLS[typ],
                     "token": TOKENS[typ]}
            if self.authz_status == "invalid":
                chall["error"] = {
                    "type": "urn:ietf:params:acme:error:incorrectResponse",
                    "detail": "The key authorization file from the server did not match",
                }
            challenges.append(chall)
        return {
            "identifier": {"type": "dns", "value": DOMAIN},
            "status": self.authz_status,
            "expires": "2019-01-09T08:26:43Z",
            "challenges": challenges,
        }

    def _get_authz(self, protected, payload):
        return 200, self._headers(), json.dumps(self._authz_body())

    def _challenge(self, typ: str):
        def handler(protected, payload):
            body = {"type": typ, "status": "processing", "url": CHALLENGE_URLS[typ],
                    "token": TOKENS[typ]}
            if self.fail_validation:
                self.authz_status = "invalid"
                self.order_status = "invalid"
            else:
                self.authz_status = "valid"
                self.order_status = self.status_after_validation
            return 200, self._headers(), json.dumps(body)
        return handler

    def _finalize(self, protected, payload):
        self.finalized_csr = payload["csr"]
        self.order_status = "processing"
        return 200, self._headers(), json.dumps(self._order_body())

    def _certificate(self, protected, payload):
        return 200, self._headers(), self.cert_pem


@pytest.fixture()
def fixture_ca():
    with resp_lib.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        yield FixtureCA(rsps)


@pytest.fixture(scope="session")
def account_key():
    return create_p256_key()
