"""Logging subsystem for HostCA.

Public API::

    from hostca.logging import configure_logging

    configure_logging(settings.logging)
"""

from hostca.logging.context import requester_context
from hostca.logging.setup import configure_logging

__all__ = ["configure_logging", "requester_context"]
