"""Project-wide constants shared by the HTTP service and the sync client."""

from typing import Final

# Base API prefix (all HTTP routes are served under /api/*)
API_PREFIX: Final = "/api"

# Router prefixes (relative to API_PREFIX)
USER_CODE_PREFIX: Final = "/user-code"
SESSIONS_PREFIX: Final = "/sessions"
SYNC_PREFIX: Final = "/sync"

# Header carrying the client-generated device UUID (attribution only)
DEVICE_ID_HEADER: Final = "X-Device-ID"
UNKNOWN_DEVICE: Final = "unknown-device"

# Queued operations are dropped once they failed this many times
MAX_OPERATION_RETRIES: Final = 5

# Attempt budget for minting a unique user code before answering 503
USER_CODE_MAX_ATTEMPTS: Final = 100

# ---------------------------------------------------------------------------
# Client-side storage keys
# ---------------------------------------------------------------------------

DEVICE_ID_KEY: Final = "device_id"
USER_CODE_KEY: Final = "user_code"
PENDING_OPERATIONS_KEY: Final = "pending_operations"
SESSIONS_KEY: Final = "sessions"
AUTO_SYNC_KEY: Final = "auto_sync"
LEGACY_LOGS_KEY: Final = "legacy_logs"
LEGACY_LOGS_BACKUP_KEY: Final = "legacy_logs_backup"


def last_sync_key(user_code: str) -> str:
    """Watermarks are tracked per user code."""
    return f"last_sync:{user_code}"
