"""Structured security event logger.

Emits standardized security events for audit and SIEM integration.
All events are logged to the ``hostca.security`` logger with a
consistent ``event_id`` field for filtering and alerting.

Sensitive material (PEM bodies) is redacted via
:func:`~hostca.logging.sanitize.sanitize_for_logs` before emission.
"""

from __future__ import annotations

import logging
from typing import Any

from hostca.logging.sanitize import sanitize_for_logs

security_log = logging.getLogger("hostca.security")


def _emit(
    event_id: str,
    message: str,
    *args: Any,  # noqa: ANN401
    severity: str = "INFO",
    **extra: Any,  # noqa: ANN401
) -> None:
    """Emit a structured security event.

    All *extra* keyword arguments are sanitized to redact
    cryptographic material before logging.
    """
    data: dict[str, object] = {
        "event_id": event_id,
        "severity": severity,
    }
    data.update(sanitize_for_logs(extra))
    level = getattr(logging, severity.upper(), logging.INFO)
    security_log.log(level, message, *args, extra=data)


def ca_bootstrapped(ca_name: str, serial_number: int) -> None:
    """Log creation of a new root CA identity."""
    _emit(
        "hostca.security.ca_bootstrapped",
        "CA bootstrapped: %s (serial=%X)",
        ca_name,
        serial_number,
        ca_name=ca_name,
        severity="WARNING",
    )


def identity_mismatch(detail: str) -> None:
    """Log a node trying to act as a CA it does not hold the key for."""
    _emit(
        "hostca.security.identity_mismatch",
        "CA identity mismatch: %s",
        detail,
        severity="ERROR",
    )


def request_submitted(subject_name: str, requester: str, dns_alt_names: tuple[str, ...]) -> None:
    """Log a certificate request being filed."""
    _emit(
        "hostca.security.request_submitted",
        "Certificate request submitted for %s by %s",
        subject_name,
        requester,
        subject_name=subject_name,
        dns_alt_names=list(dns_alt_names),
    )


def autosign_decision(subject_name: str, *, autosigned: bool) -> None:
    """Log the autosign policy verdict for a submitted request."""
    _emit(
        "hostca.security.autosign_decision",
        "Autosign %s for %s",
        "granted" if autosigned else "not granted",
        subject_name,
        subject_name=subject_name,
        autosigned=autosigned,
    )


def certificate_signed(subject_name: str, serial_number: int, dns_alt_names: tuple[str, ...]) -> None:
    """Log issuance of a new certificate."""
    _emit(
        "hostca.security.certificate_signed",
        "Signed certificate for %s: serial=%X",
        subject_name,
        serial_number,
        subject_name=subject_name,
        serial_number=format(serial_number, "X"),
        dns_alt_names=list(dns_alt_names),
    )


def certificate_cleaned(subject_name: str, removed: list[str]) -> None:
    """Log removal of a subject's certificate state."""
    _emit(
        "hostca.security.certificate_cleaned",
        "Cleaned %s: removed %s",
        subject_name,
        ", ".join(removed) or "nothing",
        subject_name=subject_name,
        removed=removed,
        severity="WARNING",
    )


def authorization_denied(namespace: str, requester: str) -> None:
    """Log a remote caller rejected by the authorization rules."""
    _emit(
        "hostca.security.authorization_denied",
        "Authorization denied: %s may not perform %s",
        requester,
        namespace,
        namespace=namespace,
        severity="WARNING",
    )
