"""Server certificate fingerprinting and validation hooks.

This module provides:
- CertificateFingerprint: stable SHA-256 identity of a presented certificate,
  plus descriptive metadata for user-facing trust prompts
- CertificateValidator: capability interface a host implements to answer
  interactive trust prompts

Security:
- The fingerprint is only ever compared for equality against a trust list
- Descriptive fields are display-only and never used for decisions
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol, runtime_checkable

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes


class CertificateVerdict(Enum):
    """Answer from an external certificate validator."""

    TRUSTED = "trusted"
    REJECTED = "rejected"


@dataclass(frozen=True)
class CertificateFingerprint:
    """Identity and metadata of a server certificate."""

    fingerprint: str
    serial_number: str
    algorithm: str
    valid_from: datetime | None
    valid_to: datetime | None
    issuer: str
    subject: str

    @classmethod
    def from_der(cls, der: bytes) -> "CertificateFingerprint":
        """Build a fingerprint from a DER-encoded certificate.

        Args:
            der: Certificate bytes as returned by getpeercert(binary_form=True)

        Returns:
            CertificateFingerprint with SHA-256 thumbprint (upper-case hex)

        Raises:
            ValueError: Bytes are not a valid X.509 certificate
        """
        cert = x509.load_der_x509_certificate(der)

        try:
            hash_algorithm = cert.signature_hash_algorithm
            algorithm = hash_algorithm.name.upper() if hash_algorithm else "NONE"
        except UnsupportedAlgorithm:
            algorithm = cert.signature_algorithm_oid.dotted_string

        return cls(
            fingerprint=cert.fingerprint(hashes.SHA256()).hex().upper(),
            serial_number=format(cert.serial_number, "X"),
            algorithm=algorithm,
            valid_from=cert.not_valid_before_utc,
            valid_to=cert.not_valid_after_utc,
            issuer=cert.issuer.rfc4514_string(),
            subject=cert.subject.rfc4514_string(),
        )

    def describe(self) -> str:
        """Multi-line summary for trust prompts."""
        valid_from = self.valid_from.isoformat() if self.valid_from else "unknown"
        valid_to = self.valid_to.isoformat() if self.valid_to else "unknown"
        return (
            f"Fingerprint: {self.fingerprint}\n"
            f"Subject:     {self.subject}\n"
            f"Issuer:      {self.issuer}\n"
            f"Serial:      {self.serial_number}\n"
            f"Algorithm:   {self.algorithm}\n"
            f"Valid:       {valid_from} -> {valid_to}"
        )


@runtime_checkable
class CertificateValidator(Protocol):
    """Host-provided trust prompt.

    Invoked synchronously during the TLS handshake for certificates that are
    neither pending first use nor already in the persisted trust list.
    """

    def evaluate(self, fingerprint: CertificateFingerprint) -> CertificateVerdict: ...


__all__ = ["CertificateFingerprint", "CertificateValidator", "CertificateVerdict"]
