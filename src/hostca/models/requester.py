"""Explicit identity of whoever invokes a CA operation."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Requester:
    """Caller identity supplied by the transport layer.

    ``local`` marks the trusted operator running commands on the CA host
    itself; local requesters are never subject to authorization rules.
    """

    name: str
    ip: str | None = None
    local: bool = False

    @classmethod
    def local_operator(cls) -> Requester:
        return cls(name="localhost", ip="127.0.0.1", local=True)

    @classmethod
    def remote(cls, name: str, ip: str) -> Requester:
        return cls(name=name, ip=ip, local=False)

    def __str__(self) -> str:
        if self.ip:
            return f"{self.name}({self.ip})"
        return self.name
