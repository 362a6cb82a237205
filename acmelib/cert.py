"""
The issued certificate together with its private key.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from acmelib.crypto import PrivateKey, load_private_key_pem
from acmelib.errors import CryptoFailure

_ONE_DAY = timedelta(days=1)


@dataclass(frozen=True)
class Certificate:
    """PEM private key plus the PEM certificate chain (leaf first)."""

    private_key: str
    certificate: str

    def private_key_der(self) -> bytes:
        """The private key as PKCS#8 DER."""
        return self.load_private_key().private_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )

    def load_private_key(self) -> PrivateKey:
        return load_private_key_pem(self.private_key)

    def certificate_der(self) -> bytes:
        """The leaf certificate as DER."""
        return self.leaf().public_bytes(serialization.Encoding.DER)

    def chain(self) -> list[x509.Certificate]:
        try:
            certs = x509.load_pem_x509_certificates(self.certificate.encode())
        except ValueError as exc:
            raise CryptoFailure(f"Malformed certificate PEM: {exc}") from exc
        if not certs:
            raise CryptoFailure("No certificate found in PEM data")
        return certs

    def leaf(self) -> x509.Certificate:
        return self.chain()[0]

    def not_after(self) -> datetime:
        """The leaf's notAfter as a timezone-aware UTC datetime."""
        return self.leaf().not_valid_after_utc

    def valid_days_left(self, now: Optional[datetime] = None) -> int:
        """
        Whole days until the certificate expires.

        Let's Encrypt issues 90-day certificates, so a fresh one reports 89.
        Partial days are truncated toward zero; an expired certificate gives a
        negative number.
        """
        now = now or datetime.now(tz=timezone.utc)
        return int((self.not_after() - now) / _ONE_DAY)
