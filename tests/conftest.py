import os

# Set *before* any project imports so settings pick up the test profile
os.environ["TESTING"] = "1"

import asyncio
from typing import Callable
from typing import Dict
from typing import List
from typing import Optional

import httpx
import pytest
from fastapi.testclient import TestClient

import timetrack.database as _db_mod
from timetrack.client.storage import LocalStorage
from timetrack.client.transport import RemoteSessionClient
from timetrack.client.transport import TransportError
from timetrack.database import Base
from timetrack.database import get_db
from timetrack.database import make_engine
from timetrack.database import make_sessionmaker
from timetrack.main import app
from timetrack.models import models  # noqa: F401 – register tables
from timetrack.schemas.schemas import OperationResult
from timetrack.schemas.schemas import SessionListResponse
from timetrack.schemas.schemas import SessionRecord
from timetrack.schemas.schemas import StartSessionResponse
from timetrack.schemas.schemas import SyncResponse

# In-memory SQLite shared through a StaticPool (see make_engine)
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

test_engine = make_engine(SQLALCHEMY_DATABASE_URL)
TestingSessionLocal = make_sessionmaker(test_engine)

# Route every default-factory user (lifespan, db_session()) to the test DB
_db_mod.default_engine = test_engine
_db_mod.default_session_factory = TestingSessionLocal


@pytest.fixture
def db_session():
    """
    Creates a fresh database for each test, then tears it down after the test is done.
    """
    Base.metadata.create_all(bind=test_engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=test_engine)


def _override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def client(db_session):
    """FastAPI TestClient bound to the test database."""
    app.dependency_overrides[get_db] = _override_get_db

    with TestClient(app, backend="asyncio") as client:
        yield client

    app.dependency_overrides = {}


@pytest.fixture
def asgi_transport(db_session):
    """httpx transport that runs the real app in-process."""
    app.dependency_overrides[get_db] = _override_get_db
    yield httpx.ASGITransport(app=app)
    app.dependency_overrides = {}


@pytest.fixture
def remote_client_factory(asgi_transport) -> Callable[[str], RemoteSessionClient]:
    """Build real HTTP clients (one per simulated device) against the app."""

    def _make(device_id: str) -> RemoteSessionClient:
        return RemoteSessionClient("http://testserver", device_id=device_id, transport=asgi_transport)

    return _make


@pytest.fixture
def storage():
    store = LocalStorage("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def storage_factory():
    """Independent local stores, one per simulated device."""
    created: List[LocalStorage] = []

    def _make() -> LocalStorage:
        store = LocalStorage("sqlite:///:memory:")
        created.append(store)
        return store

    yield _make

    for store in created:
        store.close()


class Clock:
    """Deterministic replacement for ``now_ms`` across server and client."""

    def __init__(self, start: int = 0):
        self.value = start

    def set(self, value: int) -> None:
        self.value = value

    def __call__(self) -> int:
        return self.value


_CLOCK_TARGETS = (
    "timetrack.crud.crud.now_ms",
    "timetrack.routers.sessions.now_ms",
    "timetrack.routers.sync.now_ms",
    "timetrack.client.operation_queue.now_ms",
    "timetrack.client.sync_engine.now_ms",
    "timetrack.client.tracker.now_ms",
)


@pytest.fixture
def clock(monkeypatch):
    fake = Clock()
    for target in _CLOCK_TARGETS:
        monkeypatch.setattr(target, fake)
    return fake


# ---------------------------------------------------------------------------
# Fake transport for engine/queue unit tests
# ---------------------------------------------------------------------------


class FakeTransport:
    """In-memory stand-in for :class:`RemoteSessionClient`.

    ``online = False`` makes every call raise :class:`TransportError`.
    ``op_succeeds`` decides the per-operation outcome of batch syncs and
    ``batch_gate`` (when set) blocks ``sync_operations`` until released.
    """

    def __init__(self):
        self.online = True
        self.calls: List[tuple] = []
        self.sessions: Dict[str, SessionRecord] = {}
        self.batches: List[List] = []
        self.op_succeeds: Callable = lambda op: True
        self.omit_results: bool = False
        self.batch_gate: Optional[asyncio.Event] = None
        self.batch_entered = asyncio.Event()
        self.in_flight = 0
        self.max_in_flight = 0
        self.timestamp = 1_000
        self.closed = False
        self.next_code = "calm-robot-4"

    def _record(self, name: str, *args, **kwargs) -> None:
        self.calls.append((name, args, kwargs))
        if not self.online:
            raise TransportError(f"{name}: connection refused")

    def calls_to(self, name: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == name]

    def _tick(self) -> int:
        self.timestamp += 1
        return self.timestamp

    async def generate_user_code(self) -> str:
        self._record("generate_user_code")
        return self.next_code

    async def list_sessions(self, user_code, *, since=None, include_deleted=False):
        self._record("list_sessions", user_code, since=since, include_deleted=include_deleted)
        sessions = [s for s in self.sessions.values() if since is None or s.updated_at > since]
        return SessionListResponse(sessions=sessions, timestamp=self._tick())

    async def create_session(self, user_code, start_time, *, session_id=None):
        self._record("create_session", user_code, start_time, session_id=session_id)
        session_id = session_id or f"server-{len(self.sessions) + 1}"
        now = self._tick()
        self.sessions[session_id] = SessionRecord(
            id=session_id, device_id="fake", start_time=start_time, created_at=now, updated_at=now
        )
        return StartSessionResponse(sessionId=session_id, timestamp=now)

    async def update_session(self, user_code, session_id, changes):
        self._record("update_session", user_code, session_id, changes)
        return {"updated": True, "timestamp": self._tick()}

    async def delete_session(self, user_code, session_id):
        self._record("delete_session", user_code, session_id)
        return {"deleted": True, "timestamp": self._tick()}

    async def sync_operations(self, user_code, operations):
        self._record("sync_operations", user_code, [op.id for op in operations])
        self.batches.append(list(operations))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.batch_entered.set()
        try:
            if self.batch_gate is not None:
                await self.batch_gate.wait()
        finally:
            self.in_flight -= 1

        results = [] if self.omit_results else [
            OperationResult(operationId=op.id, success=bool(self.op_succeeds(op))) for op in operations
        ]
        return SyncResponse(results=results, timestamp=self._tick())

    async def health(self) -> bool:
        self._record("health")
        return True

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_transport():
    return FakeTransport()
