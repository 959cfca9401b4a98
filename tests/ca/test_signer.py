"""Tests for hostca.ca.signer -- request building and certificate signing."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from hostca.ca.cert_utils import dns_names, generate_private_key
from hostca.ca.errors import CAError
from hostca.ca.signer import CertificateSigner, build_request, self_sign_root
from hostca.models.certificate import CAIdentity

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def identity() -> CAIdentity:
    key = generate_private_key("ec")
    root = self_sign_root(key, "Signer Test CA", serial_number=1, validity_days=365)
    return CAIdentity(root_key=key, root_certificate=root, serial=2)


@pytest.fixture()
def signer(identity) -> CertificateSigner:
    return CertificateSigner(identity)


# ---------------------------------------------------------------------------
# build_request
# ---------------------------------------------------------------------------


class TestBuildRequest:
    def test_subject_only(self):
        csr = build_request("web01", generate_private_key("ec"))
        assert csr.subject.rfc4514_string() == "CN=web01"
        assert csr.is_signature_valid
        assert dns_names(csr) == ()

    def test_alt_names_follow_subject(self):
        csr = build_request("web01", generate_private_key("ec"), ("foo", "bar"))
        assert dns_names(csr) == ("web01", "foo", "bar")

    def test_subject_not_duplicated(self):
        csr = build_request("web01", generate_private_key("ec"), ("web01", "foo"))
        assert dns_names(csr) == ("web01", "foo")

    def test_unsupported_hash(self):
        with pytest.raises(CAError, match="Unsupported hash algorithm"):
            build_request("web01", generate_private_key("ec"), hash_algorithm="md5")


# ---------------------------------------------------------------------------
# self_sign_root
# ---------------------------------------------------------------------------


class TestSelfSignRoot:
    def test_root_is_a_ca(self, identity):
        root = identity.root_certificate
        assert root.serial_number == 1
        assert root.subject == root.issuer
        assert root.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value == "Signer Test CA"
        bc = root.extensions.get_extension_for_class(x509.BasicConstraints)
        assert bc.critical and bc.value.ca is True
        ku = root.extensions.get_extension_for_class(x509.KeyUsage).value
        assert ku.key_cert_sign and ku.crl_sign

    def test_root_verifies_itself(self, identity):
        root = identity.root_certificate
        root.verify_directly_issued_by(root)

    def test_validity_backdated(self, identity):
        root = identity.root_certificate
        now = datetime.now(UTC)
        assert root.not_valid_before_utc < now - timedelta(hours=23)
        assert root.not_valid_after_utc > now + timedelta(days=364)

    def test_sha384(self):
        root = self_sign_root(
            generate_private_key("ec"),
            "SHA384 CA",
            serial_number=1,
            validity_days=1,
            hash_algorithm="sha384",
        )
        assert isinstance(root.signature_hash_algorithm, hashes.SHA384)


# ---------------------------------------------------------------------------
# CertificateSigner.sign
# ---------------------------------------------------------------------------


class TestSign:
    def test_leaf_certificate(self, signer, identity):
        csr = build_request("web01", generate_private_key("ec"), ("foo", "bar"))
        cert = signer.sign(csr, serial_number=7, validity_days=30)

        assert cert.serial_number == 7
        assert cert.subject.rfc4514_string() == "CN=web01"
        assert cert.issuer == identity.root_certificate.subject
        assert dns_names(cert) == ("web01", "foo", "bar")
        cert.verify_directly_issued_by(identity.root_certificate)

        bc = cert.extensions.get_extension_for_class(x509.BasicConstraints).value
        assert bc.ca is False
        eku = cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
        assert ExtendedKeyUsageOID.SERVER_AUTH in eku
        assert ExtendedKeyUsageOID.CLIENT_AUTH in eku
        aki = cert.extensions.get_extension_for_class(x509.AuthorityKeyIdentifier).value
        ski = identity.root_certificate.extensions.get_extension_for_class(
            x509.SubjectKeyIdentifier,
        ).value
        assert aki.key_identifier == ski.digest

    def test_no_san_without_alt_names(self, signer):
        cert = signer.sign(build_request("web01", generate_private_key("ec")), serial_number=2, validity_days=1)
        with pytest.raises(x509.ExtensionNotFound):
            cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)

    def test_rsa_request(self, signer):
        csr = build_request("web01", generate_private_key("rsa", 2048))
        cert = signer.sign(csr, serial_number=3, validity_days=1)
        assert cert.public_key().key_size == 2048

    def test_missing_common_name(self, signer):
        csr = (
            x509.CertificateSigningRequestBuilder()
            .subject_name(x509.Name([x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Acme")]))
            .sign(generate_private_key("ec"), hashes.SHA256())
        )
        with pytest.raises(CAError, match="no subject common name"):
            signer.sign(csr, serial_number=2, validity_days=1)
