"""On-disk certificate store.

Public API::

    from hostca.store import CertificateStore

    store = CertificateStore(settings.ca)
    with store.lock, store.transaction() as tx:
        ...
"""

from hostca.store.certificate_store import CertificateStore
from hostca.store.locking import StoreLock
from hostca.store.unit_of_work import StoreTransaction

__all__ = [
    "CertificateStore",
    "StoreLock",
    "StoreTransaction",
]
