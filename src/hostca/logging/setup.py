"""Structured logging configuration for HostCA.

Provides JSON and text formatters, a requester-context filter that
injects the identity of the caller into every log record, and a
one-call ``configure_logging`` function driven by config settings.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from hostca.logging.context import current_requester

if TYPE_CHECKING:
    from hostca.config.settings import LoggingSettings

# Attributes that are part of the standard LogRecord; everything
# else is considered "extra" and gets included in structured output.
_STANDARD_ATTRS = frozenset(
    {
        "args",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
        # Our own well-known context attributes (handled explicitly):
        "requester",
        "requester_ip",
    }
)


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


class StructuredFormatter(logging.Formatter):
    """JSON-lines formatter for audit and machine consumption.

    Every record becomes a single JSON object on one line containing
    the standard fields plus any *extra* attributes passed by the
    caller or injected by filters.
    """

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()

        data: dict = {
            "timestamp": datetime.fromtimestamp(
                record.created,
                tz=UTC,
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }

        requester = getattr(record, "requester", None)
        if requester not in (None, "-"):
            data["requester"] = requester

        requester_ip = getattr(record, "requester_ip", None)
        if requester_ip not in (None, "-"):
            data["requester_ip"] = requester_ip

        # Caller-supplied extra fields
        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                data.setdefault(key, value)

        if record.exc_info and record.exc_info[0] is not None:
            data["exception"] = self.formatException(record.exc_info)

        if record.stack_info:
            data["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for console use."""

    _FMT = "%(asctime)s %(levelname)-8s [%(requester)s] %(name)s: %(message)s"

    def __init__(self) -> None:
        super().__init__(fmt=self._FMT, datefmt="%Y-%m-%d %H:%M:%S")


# ---------------------------------------------------------------------------
# Filter
# ---------------------------------------------------------------------------


class RequesterContextFilter(logging.Filter):
    """Inject the active requester into every log record.

    Adds ``requester`` and ``requester_ip`` from the surrounding
    :func:`~hostca.logging.context.requester_context`, falling back to
    ``"-"`` outside of any CA operation.
    """

    CONTEXT_ATTRS = frozenset({"requester", "requester_ip"})

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if not hasattr(record, "requester"):
            record.requester = "-"  # type: ignore[attr-defined]
        if not hasattr(record, "requester_ip"):
            record.requester_ip = "-"  # type: ignore[attr-defined]

        active = current_requester()
        if active is not None:
            record.requester = active.name  # type: ignore[attr-defined]
            record.requester_ip = active.ip or "-"  # type: ignore[attr-defined]

        return True


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def configure_logging(settings: LoggingSettings) -> logging.Logger:
    """Configure the ``hostca`` logger hierarchy from settings.

    Replaces any previously installed handlers with properly formatted
    output.  When ``settings.audit.enabled`` is set, security events
    are additionally written as JSON lines to the audit file.

    Returns the root ``hostca`` logger.
    """
    level = getattr(logging, settings.level.upper(), logging.INFO)

    # ── Root hostca logger ──────────────────────────────────────────
    root = logging.getLogger("hostca")
    root.setLevel(level)
    root.handlers.clear()
    root.propagate = False

    formatter: logging.Formatter
    formatter = StructuredFormatter() if settings.format == "json" else TextFormatter()

    ctx_filter = RequesterContextFilter()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    console.addFilter(ctx_filter)
    root.addHandler(console)

    # ── Security / audit logger ─────────────────────────────────────
    security = logging.getLogger("hostca.security")
    security.setLevel(logging.INFO)
    security.handlers.clear()

    if settings.audit.enabled and settings.audit.file:
        try:
            from logging.handlers import RotatingFileHandler

            fh = RotatingFileHandler(
                settings.audit.file,
                maxBytes=settings.audit.max_file_size_bytes,
                backupCount=settings.audit.backup_count,
            )
            # Audit logs are always structured JSON
            fh.setFormatter(StructuredFormatter())
            fh.addFilter(ctx_filter)
            security.addHandler(fh)
        except OSError as exc:
            root.warning(
                "Could not open audit log file %s: %s",
                settings.audit.file,
                exc,
            )

    return root
