"""Structured error types for the certificate authority.

Every failure a CA operation can report derives from :class:`CAError`.
Each subclass carries a distinct message prefix and an ``exit_code`` so
the command-line front end can tell "you are not the CA" apart from
"no such request" and "policy denied you" without parsing text.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from hostca.models.requester import Requester

EXIT_GENERIC = 1
EXIT_IDENTITY_MISMATCH = 23


class CAError(Exception):
    """Raised by CA operations on failure.

    Parameters
    ----------
    detail:
        Human-readable description of the failure.
    retryable:
        Whether the failure is transient and the operation may be retried.

    """

    exit_code = EXIT_GENERIC

    def __init__(self, detail: str, *, retryable: bool = False) -> None:
        self.detail = detail
        self.retryable = retryable
        super().__init__(detail)


class IdentityMismatch(CAError):
    """Local CA key material does not correspond to the CA certificate.

    Raised when a node that holds another authority's cached root
    certificate tries to act as a CA.  Fatal and never retried.
    """

    exit_code = EXIT_IDENTITY_MISMATCH

    def __init__(self, detail: str) -> None:
        super().__init__(f"CA identity mismatch: {detail}", retryable=False)


class MissingRequest(CAError):
    """An operation targets a subject with no pending certificate request."""

    def __init__(self, subject_name: str) -> None:
        self.subject_name = subject_name
        super().__init__(f"Could not find certificate request for {subject_name}")


class LockUnavailable(CAError):
    """The exclusive store lock could not be acquired."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"Store lock unavailable: {detail}", retryable=True)


class AuthorizationDenied(CAError):
    """The authorization rules rejected the requester for a namespace."""

    def __init__(self, namespace: str, requester: Requester, reason: str | None = None) -> None:
        self.namespace = namespace
        self.requester = requester
        self.reason = reason
        msg = f"Access denied: {requester} is not allowed to perform '{namespace}'"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)
