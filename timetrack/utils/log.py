"""Shared *structlog* logger for the sync client.

The rest of the client can ``from timetrack.utils.log import log`` and call
``log.info("event-name", key=value)``; records render as JSON lines with
level and ISO timestamp.
"""

from __future__ import annotations

from typing import Any

import structlog

# Attach default processor chain only if structlog has not been configured by
# the embedding application already.
if not structlog.is_configured():
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ]
    )

# Keep the logger global so every import shares the same base instance.
log = structlog.get_logger("timetrack")


def get_logger(**bindings: Any):
    """Return a bound logger with optional key/value bindings."""

    return log.bind(**bindings)


__all__ = ["log", "get_logger"]
