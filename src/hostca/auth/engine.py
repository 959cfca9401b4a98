"""Authorization engine -- namespace-scoped allow/deny decisions.

Rules are grouped by namespace.  A request for ``fileserver.list`` uses
the rules of ``fileserver.list`` if any are declared, otherwise those of
``fileserver``, and so on up the dotted hierarchy; if no ancestor has
rules the request is denied.  Within the resolved group the first
matching rule (in specificity order, see :meth:`AuthRule.sort_key`)
decides, and no match means deny.

Usage::

    engine = AuthorizationEngine.from_settings(settings.auth)
    engine.allowed("fileserver.list", "web1.example.com", "10.0.0.5")
    engine.authorize("cert.sign", requester)   # raises AuthorizationDenied
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import TYPE_CHECKING

from hostca.auth.parser import load_rules, parse_rules
from hostca.ca.errors import AuthorizationDenied
from hostca.core.types import AuthVerb
from hostca.logging import security_events

if TYPE_CHECKING:
    from collections.abc import Iterable

    from hostca.auth.rules import AuthRule
    from hostca.config.settings import AuthSettings
    from hostca.models.requester import Requester

log = logging.getLogger(__name__)


def parent_namespace(namespace: str) -> str | None:
    """Strip the last dotted segment; ``None`` for a top-level namespace."""
    head, sep, _ = namespace.rpartition(".")
    return head if sep else None


class AuthorizationEngine:
    """Evaluates rule sets for operation namespaces.

    Parameters
    ----------
    rules:
        Rules in declaration order, from any number of namespaces.

    """

    def __init__(self, rules: Iterable[AuthRule] = ()) -> None:
        grouped: dict[str, list[AuthRule]] = defaultdict(list)
        for rule in rules:
            grouped[rule.namespace].append(rule)
        self._rules: dict[str, tuple[AuthRule, ...]] = {
            ns: tuple(sorted(group, key=lambda r: r.sort_key())) for ns, group in grouped.items()
        }

    @classmethod
    def from_text(cls, text: str) -> AuthorizationEngine:
        return cls(parse_rules(text))

    @classmethod
    def from_settings(cls, settings: AuthSettings) -> AuthorizationEngine:
        """Load the configured rule file; no file means no rules (deny all)."""
        if settings.rules_file is None:
            log.info("No authorization rules configured; remote requests are denied")
            return cls()
        return cls(load_rules(settings.rules_file))

    @property
    def namespaces(self) -> tuple[str, ...]:
        return tuple(sorted(self._rules))

    def resolve(self, namespace: str) -> tuple[str | None, tuple[AuthRule, ...]]:
        """Return the namespace whose rules apply, and those rules."""
        current: str | None = namespace
        while current is not None:
            rules = self._rules.get(current)
            if rules:
                return current, rules
            current = parent_namespace(current)
        return None, ()

    def allowed(self, namespace: str, hostname: str | None, ip: str | None) -> bool:
        """Return whether *hostname* / *ip* may perform *namespace*."""
        resolved, rules = self.resolve(namespace)
        for rule in rules:
            if rule.matches(hostname, ip):
                log.debug(
                    "%s for %s(%s) decided by [%s] %s",
                    namespace,
                    hostname,
                    ip,
                    resolved,
                    rule,
                )
                return rule.verb is AuthVerb.ALLOW
        log.debug("%s for %s(%s): no matching rule, denying", namespace, hostname, ip)
        return False

    def authorize(self, namespace: str, requester: Requester) -> None:
        """Raise :class:`AuthorizationDenied` unless *requester* is allowed.

        Local requesters (the operator on the CA host) are always allowed.
        """
        if requester.local:
            return
        if not self.allowed(namespace, requester.name, requester.ip):
            security_events.authorization_denied(namespace, str(requester))
            raise AuthorizationDenied(namespace, requester)
