"""Certificate authority: errors, autosign policy, signing.

The orchestrating :class:`~hostca.ca.authority.CertificateAuthority`
lives in :mod:`hostca.ca.authority`.
"""

from hostca.ca.autosign import AutosignPolicy
from hostca.ca.errors import (
    AuthorizationDenied,
    CAError,
    IdentityMismatch,
    LockUnavailable,
    MissingRequest,
)

__all__ = [
    "AuthorizationDenied",
    "AutosignPolicy",
    "CAError",
    "IdentityMismatch",
    "LockUnavailable",
    "MissingRequest",
]
