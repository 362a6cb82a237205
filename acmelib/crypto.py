"""
Key pair generation, CSR construction and PEM helpers.

Boundary: this module owns the raw key material and the signing request.
Everything JOSE-specific (JWK, thumbprints, JWS) lives in acmelib/jws.py.
"""
from __future__ import annotations

import functools
from typing import Union

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from acmelib.errors import CryptoFailure

PrivateKey = Union[rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey]

_CURVES = {
    "P-256": ec.SECP256R1,
    "P-384": ec.SECP384R1,
}


@functools.lru_cache(maxsize=None)
def curve(name: str) -> ec.EllipticCurve:
    """Return the shared curve instance for *name* ("P-256" or "P-384")."""
    try:
        return _CURVES[name]()
    except KeyError:
        raise CryptoFailure(f"Unsupported curve {name!r}") from None


# ─── Key generation ───────────────────────────────────────────────────────────


def create_rsa_key(bits: int) -> rsa.RSAPrivateKey:
    """
    Generate an RSA private key.

    The bit length is not checked here; Let's Encrypt accepts 2048 to 4096.
    """
    try:
        return rsa.generate_private_key(public_exponent=65537, key_size=bits)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise CryptoFailure(f"RSA key generation failed for {bits} bits: {exc}") from exc


def create_p256_key() -> ec.EllipticCurvePrivateKey:
    return _create_ec_key("P-256")


def create_p384_key() -> ec.EllipticCurvePrivateKey:
    return _create_ec_key("P-384")


def _create_ec_key(name: str) -> ec.EllipticCurvePrivateKey:
    try:
        return ec.generate_private_key(curve(name))
    except (ValueError, UnsupportedAlgorithm) as exc:
        raise CryptoFailure(f"EC key generation failed on {name}: {exc}") from exc


KEY_FACTORIES = {
    "p256": create_p256_key,
    "p384": create_p384_key,
    "rsa2048": functools.partial(create_rsa_key, 2048),
    "rsa3072": functools.partial(create_rsa_key, 3072),
    "rsa4096": functools.partial(create_rsa_key, 4096),
}


# ─── CSR ──────────────────────────────────────────────────────────────────────


def create_csr(private_key: PrivateKey, domains: list[str]) -> x509.CertificateSigningRequest:
    """
    Build a CSR binding *private_key* to *domains*.

    All domains go into one SubjectAlternativeName extension; the request is
    self-signed with SHA-256.  The subject is left empty, the CA only looks at
    the SAN list.
    """
    if not domains:
        raise CryptoFailure("A CSR needs at least one domain")

    unique = list(dict.fromkeys(domains))
    try:
        builder = (
            x509.CertificateSigningRequestBuilder()
            .subject_name(x509.Name([]))
            .add_extension(
                x509.SubjectAlternativeName([x509.DNSName(d) for d in unique]),
                critical=False,
            )
        )
        return builder.sign(private_key, hashes.SHA256())
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise CryptoFailure(f"Building the CSR failed: {exc}") from exc


def csr_to_der(csr: x509.CertificateSigningRequest) -> bytes:
    return csr.public_bytes(serialization.Encoding.DER)


def csr_domains(csr: x509.CertificateSigningRequest) -> list[str]:
    """Return the DNS names of the CSR's SubjectAlternativeName extension."""
    try:
        san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return []
    return san.value.get_values_for_type(x509.DNSName)


# ─── PEM ──────────────────────────────────────────────────────────────────────


def private_key_to_pem(key: PrivateKey) -> str:
    """Serialize a private key to an unencrypted PKCS#8 PEM string."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


def load_private_key_pem(pem: Union[str, bytes]) -> PrivateKey:
    if isinstance(pem, str):
        pem = pem.encode()
    try:
        key = serialization.load_pem_private_key(pem, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise CryptoFailure(f"Could not load private key: {exc}") from exc
    if not isinstance(key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        raise CryptoFailure(f"Unsupported private key type {type(key).__name__}")
    return key
