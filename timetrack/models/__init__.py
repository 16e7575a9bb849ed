from timetrack.models.enums import AutoSync
from timetrack.models.enums import Connectivity
from timetrack.models.enums import OperationType
from timetrack.models.enums import SyncStatus

__all__ = [
    "AutoSync",
    "Connectivity",
    "OperationType",
    "SyncStatus",
]
