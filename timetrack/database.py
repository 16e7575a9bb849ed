"""Engine/session helpers for the session service.

The same helpers back the client's :class:`~timetrack.client.storage.LocalStorage`,
which keeps its own engine and metadata.
"""

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import Engine
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from timetrack.config import get_settings

logger = logging.getLogger(__name__)

_settings = get_settings()

# Declarative base for the server-side tables
Base = declarative_base()


def make_engine(db_url: str, **kwargs) -> Engine:
    """Create an engine; SQLite URLs get thread and pool settings that suit FastAPI.

    Args:
        db_url: Database connection URL
        **kwargs: Passed through to ``create_engine``
    """
    connect_args = kwargs.pop("connect_args", {})
    if db_url.startswith("sqlite"):
        # Sync endpoints run in a threadpool
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", 30)
        # An in-memory database lives and dies with its connection: share one.
        if ":memory:" in db_url:
            kwargs.setdefault("poolclass", StaticPool)

    return create_engine(db_url, connect_args=connect_args, **kwargs)


def make_sessionmaker(engine: Engine) -> sessionmaker:
    """Session factory bound to *engine*.

    ``expire_on_commit=False`` so rows stay readable after the request
    session commits and closes.
    """
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def initialize_database(engine: Engine | None = None) -> None:
    """Create missing tables."""

    # Registers the tables on Base.metadata
    from timetrack.models import models  # noqa: F401

    Base.metadata.create_all(bind=engine or default_engine)


_resolved_db_url = _settings.database_url or ("sqlite:///:memory:" if _settings.testing else "sqlite:///./timetrack.db")

default_engine = make_engine(_resolved_db_url)
default_session_factory = make_sessionmaker(default_engine)


def get_session_factory() -> sessionmaker:
    return default_session_factory


def get_db() -> Iterator[Session]:
    """FastAPI dependency yielding a request-scoped session.

    Routers commit explicitly; the session is always closed afterwards.
    """
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def db_session(session_factory: sessionmaker | None = None) -> Iterator[Session]:
    """Unit-of-work scope: commit on success, roll back and re-raise on error, always close.

    Usage:
        with db_session(factory) as db:
            db.add(entry)
    """
    session = (session_factory or get_session_factory())()

    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Database session rolled back due to error: {e}")
        raise
    finally:
        session.close()
