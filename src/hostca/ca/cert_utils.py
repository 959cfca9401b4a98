"""Shared certificate helpers.

Key generation, key-usage / extended-key-usage mappings, subject-name
validation, and small accessors for names and fingerprints used by the
signer, the store, and the authority.
"""

from __future__ import annotations

import hashlib
import re
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from hostca.ca.errors import CAError

if TYPE_CHECKING:
    from cryptography.hazmat.primitives.asymmetric.types import (
        CertificateIssuerPrivateKeyTypes,
        PublicKeyTypes,
    )

HASH_ALGORITHMS = {
    "sha256": hashes.SHA256,
    "sha384": hashes.SHA384,
    "sha512": hashes.SHA512,
}

_SUBJECT_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9._-]*$")
_DNS_LABEL_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")

# ---------------------------------------------------------------------------
# Key usage / EKU mappings
# ---------------------------------------------------------------------------

_EKU_OIDS = {
    "server_auth": ExtendedKeyUsageOID.SERVER_AUTH,
    "client_auth": ExtendedKeyUsageOID.CLIENT_AUTH,
    "code_signing": ExtendedKeyUsageOID.CODE_SIGNING,
    "email_protection": ExtendedKeyUsageOID.EMAIL_PROTECTION,
    "time_stamping": ExtendedKeyUsageOID.TIME_STAMPING,
    "ocsp_signing": ExtendedKeyUsageOID.OCSP_SIGNING,
}

CA_KEY_USAGES = ("digital_signature", "key_cert_sign", "crl_sign")
LEAF_KEY_USAGES = ("digital_signature", "key_encipherment")
LEAF_EXTENDED_KEY_USAGES = ("server_auth", "client_auth")


def build_key_usage(usages: tuple[str, ...]) -> x509.KeyUsage:
    """Build an :class:`x509.KeyUsage` extension from usage names."""
    usage_set = set(usages)
    ka = "key_agreement" in usage_set
    return x509.KeyUsage(
        digital_signature="digital_signature" in usage_set,
        content_commitment="content_commitment" in usage_set,
        key_encipherment="key_encipherment" in usage_set,
        data_encipherment="data_encipherment" in usage_set,
        key_agreement=ka,
        key_cert_sign="key_cert_sign" in usage_set,
        crl_sign="crl_sign" in usage_set,
        encipher_only="encipher_only" in usage_set if ka else False,
        decipher_only="decipher_only" in usage_set if ka else False,
    )


def build_eku(ekus: tuple[str, ...]) -> x509.ExtendedKeyUsage:
    """Build an :class:`x509.ExtendedKeyUsage` extension from usage names."""
    oids = []
    for name in ekus:
        oid = _EKU_OIDS.get(name)
        if oid is None:
            msg = f"Unknown extended key usage '{name}'; supported: {sorted(_EKU_OIDS)}"
            raise CAError(msg)
        oids.append(oid)
    return x509.ExtendedKeyUsage(oids)


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


def generate_private_key(
    key_type: str = "rsa",
    key_size: int = 2048,
) -> CertificateIssuerPrivateKeyTypes:
    """Generate a fresh private key of the configured type."""
    if key_type == "rsa":
        return rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    if key_type == "ec":
        return ec.generate_private_key(ec.SECP384R1())
    msg = f"Unsupported key type '{key_type}'; expected 'rsa' or 'ec'"
    raise CAError(msg)


def public_key_der(key: PublicKeyTypes) -> bytes:
    return key.public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def public_keys_match(a: PublicKeyTypes, b: PublicKeyTypes) -> bool:
    """Compare two public keys by their SubjectPublicKeyInfo encoding."""
    return public_key_der(a) == public_key_der(b)


# ---------------------------------------------------------------------------
# Names
# ---------------------------------------------------------------------------


def validate_subject_name(name: str) -> str:
    """Return *name* if it is usable as a certificate name and file name.

    Raises
    ------
    CAError
        If the name is empty, not lower case, or contains characters
        outside ``[a-z0-9._-]``.

    """
    if not name:
        msg = "Certificate name must not be empty"
        raise CAError(msg)
    if name != name.lower():
        msg = f"Certificate names must be lower case; use {name.lower()!r} instead of {name!r}"
        raise CAError(msg)
    if not _SUBJECT_NAME_RE.match(name) or ".." in name:
        msg = f"Certificate name {name!r} contains invalid characters"
        raise CAError(msg)
    return name


def validate_dns_name(name: str) -> str:
    """Return *name* lower-cased if it is a plain ASCII DNS name.

    Raises
    ------
    CAError
        For wildcards, internationalised names given in U-label form,
        and anything else that is not a sequence of LDH labels.

    """
    lowered = name.lower()
    if not lowered.isascii():
        msg = f"DNS alt name {name!r} is not ASCII; pass the IDNA (xn--) form instead"
        raise CAError(msg)
    labels = lowered.split(".")
    if len(lowered) > 253 or not all(_DNS_LABEL_RE.match(label) for label in labels):
        msg = f"DNS alt name {name!r} is not a valid host name"
        raise CAError(msg)
    return lowered


def parse_dns_alt_names(value: str | list[str] | tuple[str, ...] | None) -> tuple[str, ...]:
    """Decode and validate a comma-separated (or already split) alt-name list.

    Whitespace is trimmed, empty entries dropped, names lower-cased and
    duplicates removed keeping the first occurrence.  Order is preserved.

    Raises
    ------
    CAError
        If an entry is not a valid DNS name (see :func:`validate_dns_name`).

    """
    if not value:
        return ()
    parts = value.split(",") if isinstance(value, str) else list(value)
    seen: dict[str, None] = {}
    for part in parts:
        name = part.strip()
        if name:
            seen.setdefault(validate_dns_name(name), None)
    return tuple(seen)


def subject_alt_names(subject_name: str, dns_alt_names: tuple[str, ...]) -> tuple[str, ...]:
    """SAN list for *subject_name*: the subject first, then the other alt names."""
    if not dns_alt_names:
        return ()
    return (subject_name, *(n for n in dns_alt_names if n != subject_name))


def common_name(name: x509.Name) -> str | None:
    attrs = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    if not attrs:
        return None
    value = attrs[0].value
    return value.decode("utf-8") if isinstance(value, bytes) else value


def dns_names(obj: x509.Certificate | x509.CertificateSigningRequest) -> tuple[str, ...]:
    """Return the DNS SubjectAlternativeName entries of a cert or CSR, in order."""
    try:
        san = obj.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return ()
    return tuple(san.value.get_values_for_type(x509.DNSName))


def extra_subject_alt_names(
    csr: x509.CertificateSigningRequest,
    subject_name: str,
) -> tuple[str, ...]:
    """Describe every SAN entry of *csr* other than a DNS name equal to *subject_name*.

    Non-DNS entries are rendered with their type, e.g. ``IPAddress:10.0.0.1``.
    """
    try:
        san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return ()
    extra = []
    for general_name in san.value:
        if isinstance(general_name, x509.DNSName):
            if general_name.value.lower() != subject_name:
                extra.append(general_name.value)
        else:
            extra.append(f"{type(general_name).__name__}:{general_name.value}")
    return tuple(extra)


def fingerprint(cert: x509.Certificate) -> str:
    """Colon-separated upper-case SHA-256 fingerprint of the DER encoding."""
    digest = hashlib.sha256(cert.public_bytes(serialization.Encoding.DER)).hexdigest().upper()
    return ":".join(digest[i : i + 2] for i in range(0, len(digest), 2))
