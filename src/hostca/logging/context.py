"""Requester context propagated into log records.

CA operations run inside :func:`requester_context` so every record they
emit -- including records from the store and signer -- carries the
identity of whoever asked for the operation.
"""

from __future__ import annotations

import contextlib
from contextvars import ContextVar
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

    from hostca.models.requester import Requester

_current_requester: ContextVar[Requester | None] = ContextVar("hostca_requester", default=None)


def current_requester() -> Requester | None:
    return _current_requester.get()


@contextlib.contextmanager
def requester_context(requester: Requester) -> Iterator[Requester]:
    token = _current_requester.set(requester)
    try:
        yield requester
    finally:
        _current_requester.reset(token)
