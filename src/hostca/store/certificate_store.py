"""Durable key/value access to everything the CA persists.

Layout under ``ssldir``::

    ca/ca_key.pem          CA private key
    ca/ca_crt.pem          CA root certificate
    ca/serial              next serial number (hex)
    ca/requests/<n>.pem    pending certificate requests
    ca/signed/<n>.pem      signed certificates
    ca/.lock               store lock
    certs/ca.pem           cached CA certificate
    certs/<n>.pem          cached signed certificates
    private_keys/<n>.pem   private keys

The store holds no business logic.  Mutators take the
:class:`StoreTransaction` they belong to; the caller holds :attr:`lock`.
Readers return ``None`` for missing entries and never take the lock.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from hostca.ca.cert_utils import validate_subject_name
from hostca.ca.errors import CAError
from hostca.store.locking import StoreLock
from hostca.store.unit_of_work import StoreTransaction

if TYPE_CHECKING:
    from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

    from hostca.config.settings import CASettings

log = logging.getLogger(__name__)

_PRIVATE_MODE = 0o600
_PUBLIC_MODE = 0o644


def _private_pem(key: PrivateKeyTypes) -> bytes:
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )


def _read(path: Path) -> bytes | None:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None


class CertificateStore:
    """File-backed certificate store rooted at ``ca_settings.ssldir``.

    Parameters
    ----------
    ca_settings:
        The ``ca`` configuration section.

    """

    def __init__(self, ca_settings: CASettings) -> None:
        self._root = Path(ca_settings.ssldir)
        self._ca_dir = self._root / "ca"
        self._lock = StoreLock(
            self._ca_dir / ".lock",
            timeout=ca_settings.lock_timeout_seconds,
        )

    # -- infrastructure ------------------------------------------------------

    @property
    def root(self) -> Path:
        return self._root

    @property
    def lock(self) -> StoreLock:
        return self._lock

    def transaction(self) -> StoreTransaction:
        """Return a new transaction; use it while holding :attr:`lock`."""
        return StoreTransaction()

    # -- paths ---------------------------------------------------------------

    @property
    def ca_key_path(self) -> Path:
        return self._ca_dir / "ca_key.pem"

    @property
    def ca_cert_path(self) -> Path:
        return self._ca_dir / "ca_crt.pem"

    @property
    def cached_ca_cert_path(self) -> Path:
        return self._root / "certs" / "ca.pem"

    @property
    def serial_path(self) -> Path:
        return self._ca_dir / "serial"

    def request_path(self, name: str) -> Path:
        return self._ca_dir / "requests" / f"{validate_subject_name(name)}.pem"

    def signed_path(self, name: str) -> Path:
        return self._ca_dir / "signed" / f"{validate_subject_name(name)}.pem"

    def cached_cert_path(self, name: str) -> Path:
        return self._root / "certs" / f"{validate_subject_name(name)}.pem"

    def private_key_path(self, name: str) -> Path:
        return self._root / "private_keys" / f"{validate_subject_name(name)}.pem"

    # -- CA material ---------------------------------------------------------

    def load_ca_key(self) -> PrivateKeyTypes | None:
        return self._load_key(self.ca_key_path)

    def load_ca_certificate(self) -> x509.Certificate | None:
        return self._load_cert(self.ca_cert_path)

    def load_cached_ca_certificate(self) -> x509.Certificate | None:
        return self._load_cert(self.cached_ca_cert_path)

    def save_ca_key(self, tx: StoreTransaction, key: PrivateKeyTypes) -> None:
        tx.write(self.ca_key_path, _private_pem(key), mode=_PRIVATE_MODE)

    def create_ca_certificate(self, tx: StoreTransaction, cert: x509.Certificate) -> bool:
        """Write the root certificate unless one already exists.

        Returns ``False`` if a root certificate was already present, in
        which case nothing is written.
        """
        return tx.create(self.ca_cert_path, cert.public_bytes(serialization.Encoding.PEM))

    def cache_ca_certificate(self, tx: StoreTransaction, cert: x509.Certificate) -> None:
        tx.write(self.cached_ca_cert_path, cert.public_bytes(serialization.Encoding.PEM))

    # -- serial counter ------------------------------------------------------

    def read_serial(self) -> int | None:
        """Return the next serial number, or ``None`` if uninitialised."""
        raw = _read(self.serial_path)
        if raw is None:
            return None
        try:
            return int(raw.decode("ascii").strip(), 16)
        except ValueError as exc:
            msg = f"Corrupt serial file {self.serial_path}: {raw!r}"
            raise CAError(msg) from exc

    def write_serial(self, tx: StoreTransaction, value: int) -> None:
        tx.write(self.serial_path, f"{value:04X}\n".encode("ascii"))

    def next_serial(self, tx: StoreTransaction) -> int:
        """Allocate a serial number and advance the counter.

        Must be called with :attr:`lock` held; the increment is rolled
        back together with the rest of *tx* on failure.
        """
        if not self._lock.locked:
            msg = "Serial allocation requires the store lock"
            raise CAError(msg)
        current = self.read_serial()
        if current is None:
            msg = f"Serial file {self.serial_path} is missing; the CA is not bootstrapped"
            raise CAError(msg)
        self.write_serial(tx, current + 1)
        return current

    # -- certificate requests ------------------------------------------------

    def load_request(self, name: str) -> x509.CertificateSigningRequest | None:
        path = self.request_path(name)
        raw = _read(path)
        if raw is None:
            return None
        try:
            return x509.load_pem_x509_csr(raw)
        except ValueError as exc:
            msg = f"Corrupt certificate request {path}: {exc}"
            raise CAError(msg) from exc

    def save_request(
        self,
        tx: StoreTransaction,
        name: str,
        csr: x509.CertificateSigningRequest,
    ) -> None:
        tx.write(self.request_path(name), csr.public_bytes(serialization.Encoding.PEM))

    def delete_request(self, tx: StoreTransaction, name: str) -> bool:
        return tx.delete(self.request_path(name))

    def request_names(self) -> list[str]:
        return self._names_in(self._ca_dir / "requests")

    def request_submitted_at(self, name: str) -> datetime | None:
        """Modification time of the stored request, as an aware UTC datetime."""
        try:
            mtime = self.request_path(name).stat().st_mtime
        except FileNotFoundError:
            return None
        return datetime.fromtimestamp(mtime, tz=UTC)

    # -- signed certificates -------------------------------------------------

    def load_certificate(self, name: str) -> x509.Certificate | None:
        return self._load_cert(self.signed_path(name))

    def save_certificate(self, tx: StoreTransaction, name: str, cert: x509.Certificate) -> None:
        """Persist a signed certificate and its cached copy."""
        pem = cert.public_bytes(serialization.Encoding.PEM)
        tx.write(self.signed_path(name), pem, mode=_PUBLIC_MODE)
        tx.write(self.cached_cert_path(name), pem, mode=_PUBLIC_MODE)

    def delete_certificate(self, tx: StoreTransaction, name: str) -> bool:
        return tx.delete(self.signed_path(name))

    def delete_cached_certificate(self, tx: StoreTransaction, name: str) -> bool:
        return tx.delete(self.cached_cert_path(name))

    def certificate_names(self) -> list[str]:
        return self._names_in(self._ca_dir / "signed")

    # -- private keys --------------------------------------------------------

    def load_private_key(self, name: str) -> PrivateKeyTypes | None:
        return self._load_key(self.private_key_path(name))

    def save_private_key(self, tx: StoreTransaction, name: str, key: PrivateKeyTypes) -> None:
        tx.write(self.private_key_path(name), _private_pem(key), mode=_PRIVATE_MODE)

    def delete_private_key(self, tx: StoreTransaction, name: str) -> bool:
        return tx.delete(self.private_key_path(name))

    # -- helpers -------------------------------------------------------------

    @staticmethod
    def _names_in(directory: Path) -> list[str]:
        if not directory.is_dir():
            return []
        return sorted(p.stem for p in directory.glob("*.pem"))

    @staticmethod
    def _load_cert(path: Path) -> x509.Certificate | None:
        raw = _read(path)
        if raw is None:
            return None
        try:
            return x509.load_pem_x509_certificate(raw)
        except ValueError as exc:
            msg = f"Corrupt certificate {path}: {exc}"
            raise CAError(msg) from exc

    @staticmethod
    def _load_key(path: Path) -> PrivateKeyTypes | None:
        raw = _read(path)
        if raw is None:
            return None
        try:
            return serialization.load_pem_private_key(raw, password=None)
        except (ValueError, TypeError) as exc:
            msg = f"Failed to load private key from {path}: {exc}"
            raise CAError(msg) from exc
