"""Certificate, certificate request, and CA identity entities."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from hostca.core.types import CertificateStatus

if TYPE_CHECKING:
    from cryptography import x509
    from cryptography.hazmat.primitives.asymmetric.types import (
        PrivateKeyTypes,
        PublicKeyTypes,
    )


@dataclass(frozen=True)
class CertificateRequest:
    subject_name: str
    public_key: PublicKeyTypes
    dns_alt_names: tuple[str, ...]
    submitted_at: datetime
    pem: str
    status: CertificateStatus = CertificateStatus.REQUESTED


@dataclass(frozen=True)
class Certificate:
    subject_name: str
    serial_number: int
    public_key: PublicKeyTypes
    issuer: str
    dns_alt_names: tuple[str, ...]
    not_before: datetime
    not_after: datetime
    fingerprint: str
    pem: str
    status: CertificateStatus = CertificateStatus.SIGNED

    @property
    def serial_hex(self) -> str:
        return format(self.serial_number, "X")


@dataclass(frozen=True)
class CAIdentity:
    """The single root identity of a store.

    ``serial`` is the *next* serial number to be assigned, as read when
    the identity was loaded; the authoritative counter lives in the store.
    """

    root_key: PrivateKeyTypes
    root_certificate: x509.Certificate
    serial: int

    @property
    def name(self) -> str:
        return self.root_certificate.subject.rfc4514_string()
