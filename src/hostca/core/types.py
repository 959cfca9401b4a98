"""Enumerated types shared across HostCA.

All enums inherit from ``StrEnum`` so their ``.value`` is a plain
string that round-trips through JSON logs and CLI output unchanged.
"""

from __future__ import annotations

from enum import StrEnum

# ---------------------------------------------------------------------------
# Certificate lifecycle
# ---------------------------------------------------------------------------


class CertificateStatus(StrEnum):
    REQUESTED = "requested"
    SIGNED = "signed"
    REVOKED = "revoked"


# ---------------------------------------------------------------------------
# Certificate authority bootstrap
# ---------------------------------------------------------------------------


class CAState(StrEnum):
    UNINITIALIZED = "uninitialized"
    BOOTSTRAPPING = "bootstrapping"
    READY = "ready"
    BOOTSTRAP_FAILED = "bootstrap_failed"


# ---------------------------------------------------------------------------
# Authorization rules
# ---------------------------------------------------------------------------


class AuthVerb(StrEnum):
    ALLOW = "allow"
    DENY = "deny"


class PatternKind(StrEnum):
    IP = "ip"
    NETWORK = "network"
    NAME = "name"


# ---------------------------------------------------------------------------
# Store artifacts (reported by clean)
# ---------------------------------------------------------------------------


class Artifact(StrEnum):
    REQUEST = "request"
    CERTIFICATE = "certificate"
    CACHED_CERTIFICATE = "cached_certificate"
    PRIVATE_KEY = "private_key"
