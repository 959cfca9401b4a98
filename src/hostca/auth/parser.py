"""Parser for the namespace rule file.

Format::

    # comment
    [fileserver]
        allow *.example.com
        deny 10.10.1.1

    [fileserver.list]
        allow 10.10.1.1, 192.168.0.0/24

Section headers are dotted namespaces.  Each rule line is a verb
(``allow`` or ``deny``) followed by one or more comma-separated
patterns.  Declaration order is counted across the whole file.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from hostca.auth.rules import AuthConfigError, AuthRule
from hostca.core.types import AuthVerb

log = logging.getLogger(__name__)

_SECTION_RE = re.compile(r"^\[\s*([A-Za-z0-9_-]+(?:\.[A-Za-z0-9_-]+)*)\s*\]$")
_RULE_RE = re.compile(r"^(\w+)\s+(.+)$")


def parse_rules(text: str, *, source: str = "<string>") -> list[AuthRule]:
    """Parse rule-file *text* into rules in declaration order.

    Raises
    ------
    AuthConfigError
        On an unknown verb, a rule outside any section, a malformed
        header, or an invalid pattern.  The message names the line.

    """
    rules: list[AuthRule] = []
    namespace: str | None = None

    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.split("#", 1)[0].strip()
        if not line:
            continue

        if line.startswith("["):
            match = _SECTION_RE.match(line)
            if match is None:
                msg = f"{source}:{lineno}: invalid section header {line!r}"
                raise AuthConfigError(msg)
            namespace = match.group(1)
            continue

        match = _RULE_RE.match(line)
        if match is None:
            msg = f"{source}:{lineno}: expected 'allow <pattern>' or 'deny <pattern>', got {line!r}"
            raise AuthConfigError(msg)
        verb_text, patterns = match.groups()
        try:
            verb = AuthVerb(verb_text.lower())
        except ValueError:
            msg = f"{source}:{lineno}: unknown verb {verb_text!r}; expected 'allow' or 'deny'"
            raise AuthConfigError(msg) from None
        if namespace is None:
            msg = f"{source}:{lineno}: rule declared before any [namespace] section"
            raise AuthConfigError(msg)

        for pattern in patterns.split(","):
            try:
                rules.append(AuthRule.parse(namespace, verb, pattern, len(rules)))
            except AuthConfigError as exc:
                msg = f"{source}:{lineno}: {exc}"
                raise AuthConfigError(msg) from exc

    return rules


def load_rules(path: str | Path) -> list[AuthRule]:
    """Read and parse the rule file at *path*."""
    rule_path = Path(path)
    try:
        text = rule_path.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"Cannot read authorization rules from {rule_path}: {exc}"
        raise AuthConfigError(msg) from exc
    rules = parse_rules(text, source=str(rule_path))
    log.info("Loaded %d authorization rule(s) from %s", len(rules), rule_path)
    return rules
