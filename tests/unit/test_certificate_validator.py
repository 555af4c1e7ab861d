"""Tests for certificate fingerprinting."""

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes

from ftpsync.certificate_validator import (
    CertificateFingerprint,
    CertificateValidator,
    CertificateVerdict,
)


class TestCertificateFingerprint:
    """Tests for CertificateFingerprint.from_der()."""

    def test_sha256_fingerprint(self, self_signed_der):
        cert = x509.load_der_x509_certificate(self_signed_der)

        fingerprint = CertificateFingerprint.from_der(self_signed_der)

        assert fingerprint.fingerprint == cert.fingerprint(hashes.SHA256()).hex().upper()
        assert len(fingerprint.fingerprint) == 64

    def test_descriptive_fields(self, self_signed_der):
        cert = x509.load_der_x509_certificate(self_signed_der)

        fingerprint = CertificateFingerprint.from_der(self_signed_der)

        assert fingerprint.subject == "CN=ftp.example.test"
        assert fingerprint.issuer == "CN=ftp.example.test"
        assert fingerprint.algorithm == "SHA256"
        assert fingerprint.serial_number == format(cert.serial_number, "X")
        assert fingerprint.valid_from < fingerprint.valid_to
        assert fingerprint.valid_from.tzinfo is not None

    def test_stable_and_distinct(self, self_signed_der, other_self_signed_der):
        first = CertificateFingerprint.from_der(self_signed_der)

        assert CertificateFingerprint.from_der(self_signed_der) == first
        assert CertificateFingerprint.from_der(other_self_signed_der) != first

    def test_describe(self, self_signed_der):
        fingerprint = CertificateFingerprint.from_der(self_signed_der)

        text = fingerprint.describe()

        assert fingerprint.fingerprint in text
        assert "CN=ftp.example.test" in text

    def test_invalid_bytes(self):
        with pytest.raises(ValueError):
            CertificateFingerprint.from_der(b"not a certificate")


class TestCertificateValidatorProtocol:
    """Tests for the validator capability interface."""

    def test_any_object_with_evaluate_is_a_validator(self):
        class AlwaysTrust:
            def evaluate(self, fingerprint):
                return CertificateVerdict.TRUSTED

        assert isinstance(AlwaysTrust(), CertificateValidator)
        assert not isinstance(object(), CertificateValidator)
