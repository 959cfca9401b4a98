"""Autosign policy -- decide whether a pending request is signed unattended.

The policy is configured as ``ca.autosign``:

* ``true`` / ``false`` -- applies to every subject;
* a list of glob patterns -- the first pattern matching the subject
  name wins, no match means "leave pending";
* the absolute path of a policy file -- one glob per line, blank lines
  and ``#`` comments ignored.

Matching is case-sensitive (:func:`fnmatch.fnmatchcase`).  The policy
is only consulted for requests submitted by remote hosts; the local
operator's ``generate`` always signs.
"""

from __future__ import annotations

import fnmatch
import logging
from pathlib import Path

log = logging.getLogger(__name__)


def evaluate(subject_name: str, config: bool | tuple[str, ...] | list[str]) -> bool:
    """Pure decision for an already-loaded policy value."""
    if isinstance(config, bool):
        return config
    for pattern in config:
        if fnmatch.fnmatchcase(subject_name, pattern):
            log.debug("Autosign pattern %r matched %s", pattern, subject_name)
            return True
    return False


def read_policy_file(path: str | Path) -> tuple[str, ...]:
    """Read glob patterns from *path*; a missing file yields no patterns."""
    policy_path = Path(path)
    try:
        text = policy_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        log.warning("Autosign policy file %s does not exist; not autosigning", policy_path)
        return ()
    patterns = []
    for raw in text.splitlines():
        line = raw.split("#", 1)[0].strip()
        if line:
            patterns.append(line)
    return tuple(patterns)


class AutosignPolicy:
    """Autosign decision bound to the configured ``ca.autosign`` value.

    A policy file is re-read on every evaluation so edits take effect
    without a restart.
    """

    def __init__(self, setting: bool | str | tuple[str, ...]) -> None:
        self._setting = setting

    @property
    def setting(self) -> bool | str | tuple[str, ...]:
        return self._setting

    def patterns(self) -> bool | tuple[str, ...]:
        if isinstance(self._setting, str):
            return read_policy_file(self._setting)
        return self._setting

    def evaluate(self, subject_name: str) -> bool:
        return evaluate(subject_name, self.patterns())
