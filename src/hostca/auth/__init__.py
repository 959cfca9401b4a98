"""Namespace-scoped access control for remote operations."""

from hostca.auth.engine import AuthorizationEngine, parent_namespace
from hostca.auth.parser import load_rules, parse_rules
from hostca.auth.rules import AuthConfigError, AuthRule

__all__ = [
    "AuthConfigError",
    "AuthRule",
    "AuthorizationEngine",
    "load_rules",
    "parent_namespace",
    "parse_rules",
]
