"""Authorization rule subcommands."""

from __future__ import annotations

import logging
import sys

log = logging.getLogger(__name__)


def run_auth(config, args) -> int:
    """Handle auth subcommands; returns the exit status."""
    if args.auth_command == "check":
        return _check(config, args)
    print("usage: hostca auth check NAMESPACE HOSTNAME IP", file=sys.stderr)  # noqa: T201
    return 1


def _check(config, args) -> int:
    """Report whether a caller is allowed in a namespace (exit 1 if not)."""
    from hostca.auth.engine import AuthorizationEngine

    engine = AuthorizationEngine.from_settings(config.settings.auth)
    resolved, _rules = engine.resolve(args.namespace)
    allowed = engine.allowed(args.namespace, args.hostname, args.ip)

    verdict = "allowed" if allowed else "denied"
    via = f" (rules from [{resolved}])" if resolved else " (no rules)"
    print(f"{args.hostname}({args.ip}) {verdict} for {args.namespace}{via}")  # noqa: T201
    return 0 if allowed else 1
