"""Authorization rules -- one ``allow``/``deny`` pattern in one namespace.

A pattern is classified once, when the rule is built:

* an IP literal (``10.10.1.1``, ``::1``) matches that address exactly;
* a CIDR network (``192.168.0.0/24``) or a trailing-wildcard IPv4 glob
  (``10.10.*``) matches addresses inside the network;
* anything else is a hostname: either exact (``db1.example.com``) or
  with a leading wildcard label (``*.example.com``); ``*`` alone matches
  every hostname.

Hostname rules are only ever compared with the requester's hostname and
IP rules only with its address.
"""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass, field

from hostca.core.types import AuthVerb, PatternKind

_LABEL_RE = re.compile(r"^[a-z0-9_]([a-z0-9_-]*[a-z0-9_])?$")
_IP_GLOB_RE = re.compile(r"^\d{1,3}(\.\d{1,3}){0,2}\.\*$")

_IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address
_IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network


class AuthConfigError(ValueError):
    """Raised for malformed rule files or rule patterns."""


def _ip_glob_network(pattern: str) -> _IPNetwork:
    octets = pattern.split(".")[:-1]
    prefix = 8 * len(octets)
    padded = octets + ["0"] * (4 - len(octets))
    return ipaddress.ip_network(f"{'.'.join(padded)}/{prefix}")


@dataclass(frozen=True)
class AuthRule:
    """One declared rule.

    Build instances with :meth:`parse` so the pattern is validated and
    classified.
    """

    namespace: str
    verb: AuthVerb
    pattern: str
    kind: PatternKind
    declaration_order: int
    _address: _IPAddress | None = field(default=None, repr=False, compare=False)
    _network: _IPNetwork | None = field(default=None, repr=False, compare=False)
    _labels: tuple[str, ...] = field(default=(), repr=False, compare=False)
    _wildcard: bool = field(default=False, repr=False, compare=False)

    @classmethod
    def parse(
        cls,
        namespace: str,
        verb: AuthVerb | str,
        pattern: str,
        declaration_order: int,
    ) -> AuthRule:
        verb = AuthVerb(verb)
        pattern = pattern.strip()
        if not pattern:
            msg = f"Empty pattern in [{namespace}]"
            raise AuthConfigError(msg)

        try:
            address = ipaddress.ip_address(pattern)
        except ValueError:
            pass
        else:
            return cls(namespace, verb, pattern, PatternKind.IP, declaration_order, _address=address)

        if "/" in pattern or _IP_GLOB_RE.match(pattern):
            try:
                network = (
                    _ip_glob_network(pattern)
                    if pattern.endswith("*")
                    else ipaddress.ip_network(pattern, strict=False)
                )
            except ValueError as exc:
                msg = f"Invalid network pattern {pattern!r} in [{namespace}]: {exc}"
                raise AuthConfigError(msg) from exc
            return cls(namespace, verb, pattern, PatternKind.NETWORK, declaration_order, _network=network)

        name = pattern.lower()
        if name == "*":
            return cls(namespace, verb, pattern, PatternKind.NAME, declaration_order, _wildcard=True)
        wildcard = name.startswith("*.")
        labels = tuple(name[2:].split(".") if wildcard else name.split("."))
        if not all(_LABEL_RE.match(label) for label in labels):
            msg = f"Invalid hostname pattern {pattern!r} in [{namespace}]"
            raise AuthConfigError(msg)
        return cls(
            namespace,
            verb,
            pattern,
            PatternKind.NAME,
            declaration_order,
            _labels=labels,
            _wildcard=wildcard,
        )

    # -- classification ------------------------------------------------------

    @property
    def exact(self) -> bool:
        return self.kind is PatternKind.IP or (self.kind is PatternKind.NAME and not self._wildcard)

    @property
    def length(self) -> int:
        """Specificity of the pattern: prefix bits or hostname labels."""
        if self._address is not None:
            return self._address.max_prefixlen
        if self._network is not None:
            return self._network.prefixlen
        return len(self._labels)

    def sort_key(self) -> tuple:
        """Evaluation order within a namespace.

        Exact before wildcard, addresses before hostnames, longer before
        shorter, deny before allow, then declaration order.
        """
        return (
            not self.exact,
            self.kind is PatternKind.NAME,
            -self.length,
            self.verb is AuthVerb.ALLOW,
            self.declaration_order,
        )

    # -- matching ------------------------------------------------------------

    def matches(self, hostname: str | None, ip: str | None) -> bool:
        if self.kind is PatternKind.NAME:
            return self._matches_name(hostname)
        return self._matches_address(ip)

    def _matches_name(self, hostname: str | None) -> bool:
        if not hostname:
            return False
        host = hostname.lower().rstrip(".")
        if self._wildcard and not self._labels:
            return True
        host_labels = tuple(host.split("."))
        if self._wildcard:
            return len(host_labels) > len(self._labels) and host_labels[-len(self._labels) :] == self._labels
        return host_labels == self._labels

    def _matches_address(self, ip: str | None) -> bool:
        if not ip:
            return False
        try:
            address = ipaddress.ip_address(ip)
        except ValueError:
            return False
        if self._address is not None:
            return address == self._address
        return self._network is not None and address in self._network

    def __str__(self) -> str:
        return f"{self.verb.value} {self.pattern}"
