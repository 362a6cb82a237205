"""
JWK / JWS utilities for the ACME protocol (RFC 8555, RFC 7515, RFC 7638).

Uses *josepy* for the JWK representation and thumbprint, and *cryptography*
for the signatures themselves.

Responsibilities (boundary with acmelib/crypto.py):
  - Public JWK of an account key (RSA, P-256, P-384)
  - JWK thumbprint and the derived key-authorization / DNS-01 values
  - Sign ACME POST bodies as flattened JWS (with jwk or kid header)
"""
from __future__ import annotations

import base64
import hashlib
import json
from typing import Any, Optional

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from josepy.jwk import JWK, JWKEC, JWKRSA

from acmelib.crypto import PrivateKey
from acmelib.errors import CodecFailure, CryptoFailure

JOSE_CONTENT_TYPE = "application/jose+json"

# curve name -> (JWS alg, hash, coordinate size in bytes)
_EC_ALGS = {
    "secp256r1": ("ES256", hashes.SHA256, 32),
    "secp384r1": ("ES384", hashes.SHA384, 48),
}


# ─── JWK ──────────────────────────────────────────────────────────────────────


def jwk_for(key: PrivateKey) -> JWK:
    """Wrap *key* in the matching josepy JWK type."""
    if isinstance(key, rsa.RSAPrivateKey):
        return JWKRSA(key=key)
    if isinstance(key, ec.EllipticCurvePrivateKey):
        _ec_params(key)
        return JWKEC(key=key)
    raise CryptoFailure(f"Unsupported account key type {type(key).__name__}")


def public_jwk(key: PrivateKey) -> dict[str, Any]:
    """The public JWK as a JSON-ready dict (includes ``kty``)."""
    return jwk_for(key).public_key().to_partial_json()


def algorithm_for(key: PrivateKey) -> str:
    if isinstance(key, rsa.RSAPrivateKey):
        return "RS256"
    if isinstance(key, ec.EllipticCurvePrivateKey):
        return _ec_params(key)[0]
    raise CryptoFailure(f"Unsupported account key type {type(key).__name__}")


def compute_jwk_thumbprint(key: PrivateKey) -> str:
    """Base64url SHA-256 thumbprint of the public JWK (RFC 7638)."""
    return b64url(jwk_for(key).public_key().thumbprint(hash_function=hashes.SHA256))


def compute_key_authorization(token: str, key: PrivateKey) -> str:
    """Return ``token + "." + thumbprint``, the value every challenge proves."""
    return f"{token}.{compute_jwk_thumbprint(key)}"


def dns01_txt_value(key_authorization: str) -> str:
    """TXT record content for ``_acme-challenge.<domain>``."""
    return b64url(hashlib.sha256(key_authorization.encode("ascii")).digest())


# ─── JWS signing ─────────────────────────────────────────────────────────────


def sign_request(
    payload: Optional[dict],
    key: PrivateKey,
    nonce: str,
    url: str,
    kid: Optional[str] = None,
) -> dict:
    """
    Sign an ACME request payload and return the flattened JWS dict to POST.

    If *kid* is None the protected header embeds the public JWK (used for
    newAccount).  Otherwise the header refers to the account URL via ``kid``.
    A ``None`` payload produces the empty payload used by POST-as-GET.
    """
    header: dict[str, Any] = {
        "alg": algorithm_for(key),
        "nonce": nonce,
        "url": url,
    }
    if kid:
        header["kid"] = kid
    else:
        header["jwk"] = public_jwk(key)

    protected = b64url(json.dumps(header).encode())
    payload_b64 = "" if payload is None else b64url(json.dumps(payload).encode())

    signing_input = f"{protected}.{payload_b64}".encode()
    signature = sign(key, signing_input)

    return {
        "protected": protected,
        "payload": payload_b64,
        "signature": b64url(signature),
    }


def sign(key: PrivateKey, data: bytes) -> bytes:
    """
    Produce the JWS signature bytes over *data*.

    RSA uses PKCS1v15 + SHA-256.  ECDSA signatures are converted from DER to
    the fixed-width ``r || s`` form JWS requires (RFC 7518 §3.4).
    """
    try:
        if isinstance(key, rsa.RSAPrivateKey):
            return key.sign(data, padding.PKCS1v15(), hashes.SHA256())
        if isinstance(key, ec.EllipticCurvePrivateKey):
            _, hash_cls, size = _ec_params(key)
            r, s = decode_dss_signature(key.sign(data, ec.ECDSA(hash_cls())))
            return r.to_bytes(size, "big") + s.to_bytes(size, "big")
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise CryptoFailure(f"JWS signing failed: {exc}") from exc
    raise CryptoFailure(f"Unsupported account key type {type(key).__name__}")


# ─── Internal helpers ─────────────────────────────────────────────────────────


def b64url(data: bytes) -> str:
    """URL-safe base64 encoding with no padding (as required by JOSE)."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def b64url_decode(s: str) -> bytes:
    """URL-safe base64 decode, adding padding as needed."""
    pad = 4 - len(s) % 4
    if pad != 4:
        s += "=" * pad
    try:
        return base64.urlsafe_b64decode(s.encode("ascii"))
    except (ValueError, UnicodeEncodeError) as exc:
        raise CodecFailure(f"Invalid base64url data: {exc}") from exc


def _ec_params(key: ec.EllipticCurvePrivateKey) -> tuple:
    try:
        return _EC_ALGS[key.curve.name]
    except KeyError:
        raise CryptoFailure(f"Unsupported curve {key.curve.name}") from None
