"""Environment-driven settings shared by the session service and the client.

Call :func:`get_settings` instead of reading ``os.environ`` directly; a
``.env`` file at the checkout root is loaded first, so one file configures
either side.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Checkout root; a ``.env`` placed there is picked up by both sides.
_REPO_ROOT = Path(__file__).resolve().parents[2]


def _truthy(value: str | None) -> bool:
    """``1``/``true``/``yes``/``on`` (any case) count as set."""

    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Settings:
    """Every tunable of the service and the sync client, read once from the environment."""

    # Flags -----------------------------------------------------------
    testing: bool

    # Server ------------------------------------------------------------
    database_url: str
    allowed_cors_origins: str
    log_level: str

    # Client ------------------------------------------------------------
    api_url: str
    client_database_url: str
    sync_interval_seconds: float
    sync_error_cooldown_seconds: float
    request_timeout_seconds: float
    health_probe_interval_seconds: float

    @property
    def cors_origins(self) -> list[str]:
        origins = [o.strip() for o in self.allowed_cors_origins.split(",") if o.strip()]
        return origins or ["*"]


def _default_client_db() -> str:
    path = Path.home() / ".timetrack" / "client.db"
    return f"sqlite:///{path}"


def _load_settings() -> Settings:
    """Read ``.env`` (if present) and build :class:`Settings`."""

    env_path = _REPO_ROOT / ".env"
    if env_path.exists():
        # Explicit environment wins over the file so tests can pin values.
        load_dotenv(env_path, override=False)

    testing = _truthy(os.getenv("TESTING"))

    return Settings(
        testing=testing,
        database_url=os.getenv("DATABASE_URL", ""),
        allowed_cors_origins=os.getenv("ALLOWED_CORS_ORIGINS", "*"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        api_url=os.getenv("TIMETRACK_API_URL", "http://localhost:8000"),
        client_database_url=os.getenv("TIMETRACK_CLIENT_DB", "") or _default_client_db(),
        sync_interval_seconds=float(os.getenv("SYNC_INTERVAL_SECONDS", "30")),
        sync_error_cooldown_seconds=float(os.getenv("SYNC_ERROR_COOLDOWN_SECONDS", "5")),
        request_timeout_seconds=float(os.getenv("REQUEST_TIMEOUT_SECONDS", "10")),
        health_probe_interval_seconds=float(os.getenv("HEALTH_PROBE_INTERVAL_SECONDS", "15")),
    )


def get_settings() -> Settings:
    """Fresh :class:`Settings`; cheap enough to call per use, so env changes apply."""

    return _load_settings()


__all__ = [
    "Settings",
    "get_settings",
]
