"""Local record of sessions – the source of truth while offline.

Every mutation rewrites the whole set to :class:`LocalStorage` before
returning.
"""

from __future__ import annotations

from typing import Dict
from typing import Iterable
from typing import List
from typing import Optional

from pydantic import ValidationError

from timetrack.client.legacy import convert_logs_to_sessions
from timetrack.client.merge import MergeResult
from timetrack.client.merge import merge_sessions
from timetrack.client.storage import LocalStorage
from timetrack.constants import LEGACY_LOGS_BACKUP_KEY
from timetrack.constants import LEGACY_LOGS_KEY
from timetrack.constants import SESSIONS_KEY
from timetrack.schemas.schemas import SessionRecord
from timetrack.utils.log import log


class SessionStore:
    def __init__(self, storage: LocalStorage, *, device_id: str = "local-device"):
        self._storage = storage
        self._sessions: Dict[str, SessionRecord] = {}
        self._load(device_id)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self, device_id: str) -> None:
        stored = self._storage.get(SESSIONS_KEY)
        if stored is None:
            migrated = self._migrate_legacy_logs(device_id)
            if migrated is not None:
                stored = [s.to_wire() for s in migrated]

        for raw in stored or []:
            try:
                session = SessionRecord.model_validate(raw)
            except ValidationError as exc:
                log.warning("stored-session-discarded", error=str(exc.errors()[:1]))
                continue
            self._sessions[session.id] = session

    def _persist(self) -> None:
        self._storage.set(SESSIONS_KEY, [s.to_wire() for s in self._sorted(self._sessions.values())])

    def _migrate_legacy_logs(self, device_id: str) -> Optional[List[SessionRecord]]:
        """Convert legacy check-in/check-out logs once, keeping a backup."""
        logs = self._storage.get(LEGACY_LOGS_KEY)
        if not logs:
            return None

        sessions = convert_logs_to_sessions(logs, device_id=device_id)
        self._storage.set(SESSIONS_KEY, [s.to_wire() for s in sessions])
        self._storage.set(LEGACY_LOGS_BACKUP_KEY, logs)
        self._storage.delete(LEGACY_LOGS_KEY)
        log.info("legacy-logs-migrated", logs=len(logs), sessions=len(sessions))
        return sessions

    @staticmethod
    def _sorted(sessions: Iterable[SessionRecord]) -> List[SessionRecord]:
        return sorted(sessions, key=lambda s: (s.start_time, s.id))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list(self, *, include_deleted: bool = False) -> List[SessionRecord]:
        """Sessions ordered by start time; tombstones only on request."""
        sessions = self._sessions.values()
        if not include_deleted:
            sessions = [s for s in sessions if not s.is_deleted]
        return self._sorted(sessions)

    def get(self, session_id: str) -> Optional[SessionRecord]:
        return self._sessions.get(session_id)

    def find_active(self) -> Optional[SessionRecord]:
        """Return the open session, or the most recently started if several are open."""
        open_sessions = [s for s in self._sessions.values() if s.is_open]
        if not open_sessions:
            return None
        if len(open_sessions) > 1:
            log.warning("multiple-open-sessions", count=len(open_sessions))
        return max(open_sessions, key=lambda s: (s.start_time, s.updated_at))

    def __len__(self) -> int:
        return len(self._sessions)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def upsert(self, session: SessionRecord) -> SessionRecord:
        self._sessions[session.id] = session
        self._persist()
        return session

    def remove(self, session_id: str) -> Optional[SessionRecord]:
        removed = self._sessions.pop(session_id, None)
        if removed is not None:
            self._persist()
        return removed

    def apply_remote(self, incoming: Iterable[SessionRecord]) -> MergeResult:
        """Merge a fetched batch (last-write-wins) and persist once."""
        result = merge_sessions(self._sessions, incoming)
        if result.changed:
            self._sessions = result.sessions
            self._persist()
        return result
