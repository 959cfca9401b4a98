"""Certificate authority bootstrap state machine.

``uninitialized -> bootstrapping -> ready`` on success, and
``bootstrapping -> bootstrap_failed`` when the stored CA material is
inconsistent.  A bootstrap interrupted by a transient error (I/O, a
corrupt file that an operator may repair) returns to ``uninitialized``
so it can be retried.  ``ready`` and ``bootstrap_failed`` are terminal.

Usage::

    from hostca.core.state import BOOTSTRAP_TRANSITIONS, assert_transition
    from hostca.core.types import CAState

    assert_transition(CAState.UNINITIALIZED, CAState.BOOTSTRAPPING, BOOTSTRAP_TRANSITIONS)
"""

from __future__ import annotations

import logging

from hostca.core.types import CAState

log = logging.getLogger(__name__)

BOOTSTRAP_TRANSITIONS: dict[CAState, frozenset[CAState]] = {
    CAState.UNINITIALIZED: frozenset({CAState.BOOTSTRAPPING}),
    CAState.BOOTSTRAPPING: frozenset(
        {CAState.READY, CAState.BOOTSTRAP_FAILED, CAState.UNINITIALIZED},
    ),
    CAState.READY: frozenset(),
    CAState.BOOTSTRAP_FAILED: frozenset(),
}


def assert_transition(
    current: CAState,
    target: CAState,
    table: dict,
) -> None:
    """Raise :class:`ValueError` if *current* → *target* is not allowed.

    Parameters
    ----------
    current:
        The current state.
    target:
        The desired new state.
    table:
        A transition table such as :data:`BOOTSTRAP_TRANSITIONS`.

    """
    allowed = table.get(current)
    if allowed is None:
        msg = f"Unknown state {current!r}"
        raise ValueError(msg)
    if target not in allowed:
        msg = (
            f"Invalid transition {current.value!r} -> {target.value!r}; "
            f"allowed targets: {sorted(s.value for s in allowed) or '(terminal)'}"
        )
        raise ValueError(msg)


def log_transition(
    resource_type: str,
    resource_id,
    from_status,
    to_status,
    *,
    reason: str | None = None,
) -> None:
    """Emit a structured log entry for a state transition."""
    extra = {
        "event": "state_transition",
        "resource_type": resource_type,
        "resource_id": str(resource_id),
        "from_status": from_status.value if hasattr(from_status, "value") else str(from_status),
        "to_status": to_status.value if hasattr(to_status, "value") else str(to_status),
    }
    if reason:
        extra["reason"] = reason
    log.info(
        "%s %s: %s -> %s%s",
        resource_type,
        resource_id,
        extra["from_status"],
        extra["to_status"],
        f" ({reason})" if reason else "",
        extra=extra,
    )
