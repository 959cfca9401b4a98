"""Build certificate requests and sign them with the local root key.

Certificates are built from CSRs with SAN, key usage, EKU, AKI, SKI and
basic-constraint extensions.  The CA's own root is produced the same
way: a CSR for the CA name is built with the freshly generated key and
signed against itself.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.x509.oid import NameOID

from hostca.ca.cert_utils import (
    CA_KEY_USAGES,
    HASH_ALGORITHMS,
    LEAF_EXTENDED_KEY_USAGES,
    LEAF_KEY_USAGES,
    build_eku,
    build_key_usage,
    common_name,
    subject_alt_names,
)
from hostca.ca.errors import CAError

if TYPE_CHECKING:
    from cryptography.hazmat.primitives.asymmetric.types import (
        CertificateIssuerPrivateKeyTypes,
    )

    from hostca.models.certificate import CAIdentity

log = logging.getLogger(__name__)

# Tolerate clock skew between the CA and the hosts it signs for.
_BACKDATE = timedelta(days=1)


def _hash(name: str):
    try:
        return HASH_ALGORITHMS[name]()
    except KeyError:
        msg = f"Unsupported hash algorithm '{name}'; supported: {sorted(HASH_ALGORITHMS)}"
        raise CAError(msg) from None


def build_request(
    subject_name: str,
    key: CertificateIssuerPrivateKeyTypes,
    dns_alt_names: tuple[str, ...] = (),
    *,
    hash_algorithm: str = "sha256",
) -> x509.CertificateSigningRequest:
    """Build a CSR for *subject_name* signed with *key*.

    When alt names are requested the subject name is listed first in the
    SubjectAlternativeName extension, followed by the requested names in
    order.
    """
    builder = x509.CertificateSigningRequestBuilder().subject_name(
        x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, subject_name)]),
    )
    names = subject_alt_names(subject_name, dns_alt_names)
    if names:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([x509.DNSName(n) for n in names]),
            critical=False,
        )
    return builder.sign(key, _hash(hash_algorithm))


def self_sign_root(
    key: CertificateIssuerPrivateKeyTypes,
    ca_name: str,
    *,
    serial_number: int,
    validity_days: int,
    hash_algorithm: str = "sha256",
) -> x509.Certificate:
    """Create the CA's self-signed root certificate.

    Parameters
    ----------
    key:
        The newly generated CA private key.
    ca_name:
        Common name of the authority.
    serial_number:
        Serial embedded in the root (the first serial of the store).
    validity_days:
        Lifetime of the root certificate.
    hash_algorithm:
        Digest used for the self-signature.

    """
    csr = build_request(ca_name, key, hash_algorithm=hash_algorithm)
    now = datetime.now(UTC)
    builder = (
        x509.CertificateBuilder()
        .subject_name(csr.subject)
        .issuer_name(csr.subject)
        .public_key(csr.public_key())
        .serial_number(serial_number)
        .not_valid_before(now - _BACKDATE)
        .not_valid_after(now + timedelta(days=validity_days))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(build_key_usage(CA_KEY_USAGES), critical=True)
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(csr.public_key()),
            critical=False,
        )
    )
    cert = builder.sign(key, _hash(hash_algorithm))
    log.info("Self-signed CA certificate for %s (serial=%X)", ca_name, serial_number)
    return cert


class CertificateSigner:
    """Sign CSRs with the root key of a :class:`CAIdentity`.

    Parameters
    ----------
    identity:
        The loaded CA identity (root key and certificate).
    hash_algorithm:
        Digest used for signatures.

    """

    def __init__(self, identity: CAIdentity, *, hash_algorithm: str = "sha256") -> None:
        self._identity = identity
        self._hash_algorithm = _hash(hash_algorithm)

    def sign(
        self,
        csr: x509.CertificateSigningRequest,
        *,
        serial_number: int,
        validity_days: int,
    ) -> x509.Certificate:
        """Sign *csr* and return the certificate.

        Build a certificate with:
        - Subject CN copied from the CSR
        - Issuer from the root certificate's subject
        - SAN extension copied from the CSR, if present
        - Leaf key usage and EKU (server and client auth)
        - Basic constraints (CA=false)
        - Authority key identifier from the root certificate
        - Subject key identifier from the CSR public key

        Raises
        ------
        CAError
            If the CSR signature is invalid or signing fails.

        """
        if not csr.is_signature_valid:
            msg = "Certificate request signature is invalid"
            raise CAError(msg)

        cn = common_name(csr.subject)
        if not cn:
            msg = "Certificate request has no subject common name"
            raise CAError(msg)

        root = self._identity.root_certificate
        now = datetime.now(UTC)
        builder = (
            x509.CertificateBuilder()
            .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, cn)]))
            .issuer_name(root.subject)
            .public_key(csr.public_key())
            .serial_number(serial_number)
            .not_valid_before(now - _BACKDATE)
            .not_valid_after(now + timedelta(days=validity_days))
        )

        try:
            san_ext = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        except x509.ExtensionNotFound:
            pass
        else:
            builder = builder.add_extension(san_ext.value, critical=False)

        builder = (
            builder.add_extension(
                x509.BasicConstraints(ca=False, path_length=None),
                critical=True,
            )
            .add_extension(build_key_usage(LEAF_KEY_USAGES), critical=True)
            .add_extension(build_eku(LEAF_EXTENDED_KEY_USAGES), critical=False)
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(
                    root.public_key(),  # type: ignore[arg-type]
                ),
                critical=False,
            )
            .add_extension(
                x509.SubjectKeyIdentifier.from_public_key(csr.public_key()),
                critical=False,
            )
        )

        try:
            cert = builder.sign(self._identity.root_key, self._hash_algorithm)  # type: ignore[arg-type]
        except Exception as exc:  # noqa: BLE001
            msg = f"Failed to build/sign certificate for {cn}: {exc}"
            raise CAError(msg) from exc

        log.info(
            "Signed certificate: serial=%X, cn=%s, validity=%d days",
            serial_number,
            cn,
            validity_days,
        )
        return cert
