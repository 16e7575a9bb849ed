"""Durable key-value storage for the sync client.

A single SQLite table holds every client-side value (device id, user code,
watermarks, the pending queue, the session set, preferences) as JSON.  Each
``set`` is its own committed transaction, so a write is durable as soon as
the call returns.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from sqlalchemy import Column
from sqlalchemy import Engine
from sqlalchemy import JSON
from sqlalchemy import String
from sqlalchemy.engine import make_url
from sqlalchemy.orm import declarative_base

from timetrack.config import get_settings
from timetrack.database import db_session
from timetrack.database import make_engine
from timetrack.database import make_sessionmaker

# Separate metadata: client tables never end up in the server schema.
ClientBase = declarative_base()


class StorageEntry(ClientBase):
    __tablename__ = "client_storage"

    key = Column(String, primary_key=True)
    value = Column(JSON, nullable=True)


def _prepare_sqlite_path(db_url: str) -> str:
    """Expand ``~`` in file-backed SQLite URLs and create the parent directory."""
    url = make_url(db_url)
    if url.get_backend_name() != "sqlite" or not url.database or url.database == ":memory:":
        return db_url

    path = Path(url.database).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    return url.set(database=str(path)).render_as_string(hide_password=False)


class LocalStorage:
    """JSON values keyed by string, persisted through SQLAlchemy."""

    def __init__(self, db_url: str | None = None, *, engine: Engine | None = None):
        if engine is None:
            db_url = _prepare_sqlite_path(db_url or get_settings().client_database_url)
            engine = make_engine(db_url)

        ClientBase.metadata.create_all(bind=engine)
        self._engine = engine
        self._session_factory = make_sessionmaker(engine)

    def get(self, key: str, default: Any = None) -> Any:
        with db_session(self._session_factory) as db:
            entry = db.get(StorageEntry, key)
            return default if entry is None else entry.value

    def set(self, key: str, value: Any) -> None:
        with db_session(self._session_factory) as db:
            entry = db.get(StorageEntry, key)
            if entry is None:
                db.add(StorageEntry(key=key, value=value))
            else:
                entry.value = value

    def delete(self, key: str) -> None:
        with db_session(self._session_factory) as db:
            entry = db.get(StorageEntry, key)
            if entry is not None:
                db.delete(entry)

    def __contains__(self, key: str) -> bool:
        with db_session(self._session_factory) as db:
            return db.get(StorageEntry, key) is not None

    def close(self) -> None:
        self._engine.dispose()
