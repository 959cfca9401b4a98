"""HostCA: local certificate authority with namespace-scoped access control."""

__version__ = "1.0.0"
