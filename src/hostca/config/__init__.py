"""Configuration subsystem for HostCA.

Public API::

    from hostca.config import HostcaConfig

    config = HostcaConfig(config_file="hostca.yaml")
    ssldir = config.settings.ca.ssldir      # typed access
    level = config.get("logging.level")     # dynamic dot-path
"""

from hostca.config.hostca_config import ConfigValidationError, HostcaConfig
from hostca.config.settings import (
    AuditLogSettings,
    AuthSettings,
    CASettings,
    HostcaSettings,
    LoggingSettings,
    build_settings,
)

__all__ = [
    "AuditLogSettings",
    "AuthSettings",
    "CASettings",
    "ConfigValidationError",
    "HostcaConfig",
    "HostcaSettings",
    "LoggingSettings",
    "build_settings",
]
