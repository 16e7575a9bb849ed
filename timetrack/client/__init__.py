"""Offline-first sync client."""

from timetrack.client.connectivity import ConnectivityProbe
from timetrack.client.operation_queue import DrainResult
from timetrack.client.operation_queue import OperationQueue
from timetrack.client.session_store import SessionStore
from timetrack.client.storage import LocalStorage
from timetrack.client.sync_engine import SyncEngine
from timetrack.client.tracker import TimeTracker
from timetrack.client.transport import RemoteSessionClient
from timetrack.client.transport import TransportError

__all__ = [
    "ConnectivityProbe",
    "DrainResult",
    "LocalStorage",
    "OperationQueue",
    "RemoteSessionClient",
    "SessionStore",
    "SyncEngine",
    "TimeTracker",
    "TransportError",
]
