"""Entity models for HostCA.

All models are frozen dataclasses.  Use :func:`dataclasses.replace`
for modifications (copy-on-write).
"""

from hostca.models.certificate import CAIdentity, Certificate, CertificateRequest
from hostca.models.listing import ALL, CleanReport, ListingEntry
from hostca.models.requester import Requester

__all__ = [
    "ALL",
    "CAIdentity",
    "Certificate",
    "CertificateRequest",
    "CleanReport",
    "ListingEntry",
    "Requester",
]
