"""Typed, frozen dataclasses for every configuration section.

This module is the **single source of truth** for default values.
JSON Schema defaults exist only for documentation -- these builders
are what the application actually reads.

Settings are plain values injected into the components that need them;
there is no process-wide configuration object::

    settings = HostcaConfig(config_file="hostca.yaml").settings
    authority = CertificateAuthority(settings)
"""

from __future__ import annotations

import socket
from dataclasses import dataclass
from pathlib import Path

# ---------------------------------------------------------------------------
# CA
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CASettings:
    """Certificate authority and on-disk store configuration.

    ``autosign`` is either a boolean, the path of a policy file holding
    one glob per line, or a tuple of glob patterns.
    """

    ssldir: Path
    ca_name: str
    key_type: str
    key_size: int
    hash_algorithm: str
    ca_ttl_days: int
    cert_ttl_days: int
    autosign: bool | str | tuple[str, ...]
    lock_timeout_seconds: float


def default_ca_name() -> str:
    return f"HostCA on {socket.gethostname()}"


def _build_autosign(value) -> bool | str | tuple[str, ...]:
    if isinstance(value, (list, tuple)):
        return tuple(str(v) for v in value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "false"}:
            return lowered == "true"
        return value
    return bool(value)


def _build_ca(data: dict | None) -> CASettings:
    d = data or {}
    return CASettings(
        ssldir=Path(d["ssldir"]),
        ca_name=d.get("ca_name") or default_ca_name(),
        key_type=d.get("key_type", "rsa"),
        key_size=d.get("key_size", 2048),
        hash_algorithm=d.get("hash_algorithm", "sha256"),
        ca_ttl_days=d.get("ca_ttl_days", 1825),
        cert_ttl_days=d.get("cert_ttl_days", 1825),
        autosign=_build_autosign(d.get("autosign", False)),
        lock_timeout_seconds=float(d.get("lock_timeout_seconds", 10)),
    )


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuthSettings:
    """Location of the namespace rule file (``None`` denies all remote callers)."""

    rules_file: Path | None


def _build_auth(data: dict | None) -> AuthSettings:
    d = data or {}
    rules_file = d.get("rules_file")
    return AuthSettings(rules_file=Path(rules_file) if rules_file else None)


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuditLogSettings:
    """Security audit log output (rotating JSON file)."""

    enabled: bool
    file: str | None
    max_file_size_bytes: int
    backup_count: int


@dataclass(frozen=True)
class LoggingSettings:
    """Log level, output format, and audit sub-section."""

    level: str
    format: str
    audit: AuditLogSettings


def _build_logging(data: dict | None) -> LoggingSettings:
    d = data or {}
    audit = d.get("audit") or {}
    return LoggingSettings(
        level=d.get("level", "INFO"),
        format=d.get("format", "text"),
        audit=AuditLogSettings(
            enabled=audit.get("enabled", False),
            file=audit.get("file"),
            max_file_size_bytes=audit.get("max_file_size_bytes", 10 * 1024 * 1024),
            backup_count=audit.get("backup_count", 5),
        ),
    )


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HostcaSettings:
    """Root settings tree."""

    ca: CASettings
    auth: AuthSettings
    logging: LoggingSettings


def build_settings(data: dict) -> HostcaSettings:
    """Build the full :class:`HostcaSettings` tree from a validated dict."""
    return HostcaSettings(
        ca=_build_ca(data.get("ca")),
        auth=_build_auth(data.get("auth")),
        logging=_build_logging(data.get("logging")),
    )
