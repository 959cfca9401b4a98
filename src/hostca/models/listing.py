"""Read-side views returned by ``list`` and ``clean``."""

from __future__ import annotations

from dataclasses import dataclass

from hostca.core.types import Artifact, CertificateStatus

# Sentinel accepted by ``CertificateAuthority.list`` to select everything.
ALL = "all"


@dataclass(frozen=True)
class ListingEntry:
    subject_name: str
    status: CertificateStatus
    dns_alt_names: tuple[str, ...] = ()
    serial_number: int | None = None
    fingerprint: str | None = None

    def render(self) -> str:
        """Render one line of ``cert list`` output.

        Signed entries are prefixed with ``+``; alt names are shown as
        ``"DNS:name"``.
        """
        prefix = "+ " if self.status is CertificateStatus.SIGNED else "  "
        line = f'{prefix}"{self.subject_name}"'
        if self.fingerprint:
            line += f" (SHA256) {self.fingerprint}"
        if self.dns_alt_names:
            names = ", ".join(f'"DNS:{n}"' for n in self.dns_alt_names)
            line += f" (alt names: {names})"
        return line


@dataclass(frozen=True)
class CleanReport:
    subject_name: str
    removed: tuple[Artifact, ...] = ()

    @property
    def nothing_removed(self) -> bool:
        return not self.removed
