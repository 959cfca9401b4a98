"""Certificate management subcommands."""

from __future__ import annotations

import logging
import sys

from hostca.core.types import CertificateStatus

log = logging.getLogger(__name__)


def run_cert(config, args) -> int:
    """Handle cert subcommands; returns the exit status."""
    from hostca.ca.authority import CertificateAuthority

    authority = CertificateAuthority(config.settings)
    command = args.cert_command

    if command == "generate":
        cert = authority.generate(
            args.name,
            autosign=args.autosign,
            dns_alt_names=args.dns_alt_names,
        )
        print(f"Signed certificate for {cert.subject_name} (serial {cert.serial_hex})")  # noqa: T201
    elif command == "sign":
        cert = authority.sign(args.name)
        print(f"Signed certificate for {cert.subject_name} (serial {cert.serial_hex})")  # noqa: T201
    elif command == "clean":
        report = authority.clean(args.name)
        if report.nothing_removed:
            print(f"Nothing to clean for {report.subject_name}")  # noqa: T201
        for artifact in report.removed:
            print(f"Removed {artifact} for {report.subject_name}")  # noqa: T201
    elif command == "list":
        _list(authority, args)
    else:
        print("usage: hostca cert {generate,sign,clean,list} ...", file=sys.stderr)  # noqa: T201
        return 1
    return 0


def _list(authority, args) -> None:
    entries = authority.list(args.names or None)
    if not args.all and not args.names:
        entries = [e for e in entries if e.status is CertificateStatus.REQUESTED]
    for entry in entries:
        print(entry.render())  # noqa: T201
