"""Shared *Enum* definitions for SQLAlchemy, Pydantic and the sync client.

The Enums inherit from ``str`` so that:

* JSON serialisation remains unchanged (values render as plain strings).
* Equality checks against raw literals (``op.type == "start_session"``) keep
  working.
"""

from __future__ import annotations

from enum import Enum


class OperationType(str, Enum):
    START_SESSION = "start_session"
    END_SESSION = "end_session"
    UPDATE_SESSION = "update_session"
    DELETE_SESSION = "delete_session"


class Connectivity(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


class SyncStatus(str, Enum):
    """Advisory sync activity – never a gate for user actions."""

    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


class AutoSync(str, Enum):
    ENABLED = "enabled"
    DISABLED = "disabled"


__all__ = [
    "OperationType",
    "Connectivity",
    "SyncStatus",
    "AutoSync",
]
