"""User-facing check-in/check-out handlers.

Each action writes the :class:`SessionStore` first and only then hands the
mutation to the :class:`SyncEngine`, which either confirms it remotely or
queues it.  The local write is never rolled back.
"""

from __future__ import annotations

import uuid
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from timetrack.client.session_store import SessionStore
from timetrack.client.storage import LocalStorage
from timetrack.client.sync_engine import SyncEngine
from timetrack.events import SyncEvent
from timetrack.schemas.operations import UpdateSessionData
from timetrack.schemas.schemas import SessionRecord
from timetrack.utils.log import log
from timetrack.utils.time import now_ms


class TimeTracker:
    def __init__(self, engine: SyncEngine, store: SessionStore):
        self.engine = engine
        self.store = store
        self.engine.on(SyncEvent.SESSIONS_RECEIVED, self._on_sessions_received)

    @classmethod
    def create(cls, storage: LocalStorage, **engine_kwargs: Any) -> "TimeTracker":
        engine = SyncEngine(storage, **engine_kwargs)
        return cls(engine, SessionStore(storage, device_id=engine.device_id))

    async def start(self) -> None:
        await self.engine.start()

    async def close(self) -> None:
        self.engine.off(SyncEvent.SESSIONS_RECEIVED, self._on_sessions_received)
        await self.engine.stop()

    async def _on_sessions_received(self, payload: Dict[str, Any]) -> None:
        result = self.store.apply_remote(payload.get("sessions", []))
        if result.changed:
            log.info("remote-sessions-merged", inserted=len(result.inserted), replaced=len(result.replaced))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def sessions(self) -> List[SessionRecord]:
        return self.store.list()

    @property
    def active_session(self) -> Optional[SessionRecord]:
        return self.store.find_active()

    @property
    def is_checked_in(self) -> bool:
        return self.active_session is not None

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def check_in(self, start_time: int | None = None) -> SessionRecord:
        """Open a new session; an already open one is closed at the new start."""
        now = now_ms()
        start = now if start_time is None else start_time

        active = self.store.find_active()
        if active is not None:
            await self.check_out(start)

        session = self.store.upsert(
            SessionRecord(
                id=str(uuid.uuid4()),
                device_id=self.engine.device_id,
                start_time=start,
                created_at=now,
                updated_at=now,
            )
        )
        await self.engine.start_session(start, session_id=session.id)
        return session

    async def check_out(self, end_time: int | None = None) -> Optional[SessionRecord]:
        """Close the active session; ``None`` when nothing is open."""
        active = self.store.find_active()
        if active is None:
            return None

        end = now_ms() if end_time is None else end_time
        session = self.store.upsert(active.model_copy(update={"end_time": end, "updated_at": now_ms()}))
        await self.engine.end_session(session.id, end)
        return session

    async def edit_session(self, session_id: str, changes: Dict[str, Any]) -> Optional[SessionRecord]:
        """Change ``startTime``/``endTime`` of a live session.

        Returns ``None`` for unknown or deleted sessions.  An edit that
        changes nothing is not sent anywhere.
        """
        session = self.store.get(session_id)
        if session is None or session.is_deleted:
            return None

        update = UpdateSessionData.model_validate(changes).changes()
        diff = {name: value for name, value in update.items() if getattr(session, name) != value}
        if not diff:
            return session

        session = self.store.upsert(session.model_copy(update={**diff, "updated_at": now_ms()}))
        await self.engine.update_session(session_id, UpdateSessionData(**diff).to_wire(exclude_unset=True))
        return session

    async def delete_session(self, session_id: str) -> bool:
        """Tombstone a session locally and propagate the delete."""
        session = self.store.get(session_id)
        if session is None or session.is_deleted:
            return False

        now = now_ms()
        self.store.upsert(session.model_copy(update={"deleted_at": now, "updated_at": now}))
        await self.engine.delete_session(session_id)
        return True

    async def refresh(self, force_refresh: bool = False) -> List[SessionRecord]:
        """Run a sync cycle now; merged results arrive via ``sessionsReceived``."""
        await self.engine.sync_now(force_refresh)
        return self.sessions
