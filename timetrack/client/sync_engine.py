"""Offline-first synchronisation of local sessions with the remote service.

The engine tracks three independent sub-states:

* **connectivity** (:class:`Connectivity`) – driven by :meth:`handle_online`
  / :meth:`handle_offline`; going offline stops the periodic timer and
  suspends immediate flushes, coming back online drains the queue, fetches
  once and resumes the timer.
* **sync status** (:class:`SyncStatus`) – ``SYNCING`` while a drain or fetch
  runs, ``ERROR`` after a failed call (reverting to ``IDLE`` after a short
  cool-down).  Advisory only.
* **auto-sync** (:class:`AutoSync`) – persisted preference; the periodic
  timer only runs while it is enabled.

Session mutations try the remote service first and fall back to the
:class:`OperationQueue` on any :class:`TransportError`; network problems are
reported through events and never raised to the caller.  The one exception is
:meth:`generate_user_code`, which the user triggers explicitly.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any
from typing import Dict
from typing import List
from typing import Optional
from typing import Protocol
from typing import Sequence
from typing import Set

from timetrack.client.operation_queue import DrainResult
from timetrack.client.operation_queue import OperationQueue
from timetrack.client.storage import LocalStorage
from timetrack.client.transport import RemoteSessionClient
from timetrack.client.transport import TransportError
from timetrack.config import get_settings
from timetrack.constants import AUTO_SYNC_KEY
from timetrack.constants import DEVICE_ID_KEY
from timetrack.constants import USER_CODE_KEY
from timetrack.constants import last_sync_key
from timetrack.events import EventBus
from timetrack.events import EventHandler
from timetrack.events import SyncEvent
from timetrack.metrics import sync_cycles_total
from timetrack.models.enums import AutoSync
from timetrack.models.enums import Connectivity
from timetrack.models.enums import OperationType
from timetrack.models.enums import SyncStatus
from timetrack.schemas.operations import Operation
from timetrack.schemas.operations import UpdateSessionData
from timetrack.schemas.schemas import SessionListResponse
from timetrack.schemas.schemas import SessionRecord
from timetrack.schemas.schemas import StartSessionResponse
from timetrack.schemas.schemas import SyncResponse
from timetrack.utils.log import get_logger
from timetrack.utils.time import now_ms


class SessionTransport(Protocol):
    """Remote calls the engine relies on (see :class:`RemoteSessionClient`)."""

    async def generate_user_code(self) -> str: ...

    async def list_sessions(
        self, user_code: str, *, since: Optional[int] = None, include_deleted: bool = False
    ) -> SessionListResponse: ...

    async def create_session(
        self, user_code: str, start_time: int, *, session_id: Optional[str] = None
    ) -> StartSessionResponse: ...

    async def update_session(self, user_code: str, session_id: str, changes: Dict[str, Any]) -> Dict[str, Any]: ...

    async def delete_session(self, user_code: str, session_id: str) -> Dict[str, Any]: ...

    async def sync_operations(self, user_code: str, operations: Sequence[Operation]) -> SyncResponse: ...

    async def health(self) -> bool: ...

    async def aclose(self) -> None: ...


class SyncEngine:
    def __init__(
        self,
        storage: LocalStorage,
        *,
        transport: SessionTransport | None = None,
        api_url: str | None = None,
        event_bus: EventBus | None = None,
        online: bool = True,
        sync_interval: float | None = None,
        error_cooldown: float | None = None,
    ):
        settings = get_settings()

        self._storage = storage
        self.device_id = self._load_device_id()
        self.transport: SessionTransport = transport or RemoteSessionClient(api_url, device_id=self.device_id)
        self.events = event_bus or EventBus()
        self.queue = OperationQueue(storage, on_enqueue=self._on_operation_enqueued)

        self.user_code: Optional[str] = storage.get(USER_CODE_KEY)
        self.last_sync_timestamp: Optional[int] = self._load_watermark()

        self.connectivity = Connectivity.ONLINE if online else Connectivity.OFFLINE
        self.auto_sync = AutoSync.ENABLED if storage.get(AUTO_SYNC_KEY, False) else AutoSync.DISABLED
        self._status = SyncStatus.IDLE

        self._sync_interval = sync_interval if sync_interval is not None else settings.sync_interval_seconds
        self._error_cooldown = error_cooldown if error_cooldown is not None else settings.sync_error_cooldown_seconds

        self._timer_task: Optional[asyncio.Task] = None
        self._cooldown_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()

        # Overlap guard for flush(): a request made while a drain runs sets
        # the pending flag and the running flush repeats once.
        self._flushing = False
        self._flush_pending = False

        self._started = False
        self._stopped = False
        self._log = get_logger(device_id=self.device_id)

    # ------------------------------------------------------------------
    # Persisted state
    # ------------------------------------------------------------------

    def _load_device_id(self) -> str:
        device_id = self._storage.get(DEVICE_ID_KEY)
        if not device_id:
            device_id = str(uuid.uuid4())
            self._storage.set(DEVICE_ID_KEY, device_id)
        return device_id

    def _load_watermark(self) -> Optional[int]:
        if not self.user_code:
            return None
        return self._storage.get(last_sync_key(self.user_code))

    def _save_watermark(self) -> None:
        if self.user_code and self.last_sync_timestamp is not None:
            self._storage.set(last_sync_key(self.user_code), self.last_sync_timestamp)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Resume auto-sync for a previously configured user code.

        Raises:
            RuntimeError: the engine was stopped; its transport is closed.
        """
        if self._stopped:
            raise RuntimeError("SyncEngine cannot be restarted after stop(); create a new instance")
        if self._started:
            self._log.warning("sync-engine-already-started")
            return

        self._started = True
        self._log.info(
            "sync-engine-started",
            user_code=self.user_code,
            auto_sync=self.auto_sync.value,
            pending=len(self.queue),
        )
        if self.auto_sync is AutoSync.ENABLED and self.can_sync:
            await self.sync_now()
            self._start_timer()

    async def stop(self) -> None:
        """Cancel every background task and close the transport.

        Stopping is final: build a new engine to sync again.
        """
        await self._stop_timer()
        await self._cancel(self._cooldown_task)
        self._cooldown_task = None

        for task in list(self._background):
            await self._cancel(task)
        self._background.clear()

        await self.transport.aclose()
        self._started = False
        self._stopped = True
        self._log.info("sync-engine-stopped")

    async def join(self) -> None:
        """Wait for background flushes scheduled by enqueues to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    @staticmethod
    async def _cancel(task: Optional[asyncio.Task]) -> None:
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on(self, event: SyncEvent, handler: EventHandler) -> None:
        self.events.subscribe(event, handler)

    def off(self, event: SyncEvent, handler: EventHandler) -> None:
        self.events.unsubscribe(event, handler)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_online(self) -> bool:
        return self.connectivity is Connectivity.ONLINE

    @property
    def can_sync(self) -> bool:
        return self.is_online and bool(self.user_code)

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def pending_operations(self) -> List[Operation]:
        return self.queue.pending

    async def _set_status(self, status: SyncStatus) -> None:
        if status is self._status:
            return
        previous, self._status = self._status, status
        await self.events.publish(SyncEvent.SYNC_STATUS_CHANGED, {"status": status.value, "previous": previous.value})

    async def _begin_cycle(self, kind: str, **details: Any) -> None:
        # A new cycle supersedes a pending ERROR cool-down.
        await self._cancel(self._cooldown_task)
        self._cooldown_task = None
        await self._set_status(SyncStatus.SYNCING)
        await self.events.publish(SyncEvent.SYNC_START, {"kind": kind, **details})

    async def _finish_cycle(self, kind: str, payload: Dict[str, Any]) -> None:
        sync_cycles_total.labels(kind, "success").inc()
        await self._set_status(SyncStatus.IDLE)
        await self.events.publish(SyncEvent.SYNC_SUCCESS, {"kind": kind, **payload})

    async def _fail_cycle(self, kind: str, exc: TransportError) -> None:
        sync_cycles_total.labels(kind, "error").inc()
        self._log.warning("sync-cycle-failed", kind=kind, error=str(exc), status_code=exc.status_code)
        await self._set_status(SyncStatus.ERROR)
        await self._cancel(self._cooldown_task)
        self._cooldown_task = asyncio.create_task(self._error_cooldown_elapsed())
        await self.events.publish(
            SyncEvent.SYNC_ERROR,
            {"kind": kind, "error": str(exc), "statusCode": exc.status_code},
        )

    async def _error_cooldown_elapsed(self) -> None:
        await asyncio.sleep(self._error_cooldown)
        if self._status is SyncStatus.ERROR:
            await self._set_status(SyncStatus.IDLE)

    # ------------------------------------------------------------------
    # Connectivity
    # ------------------------------------------------------------------

    async def handle_online(self) -> None:
        if self.is_online:
            return

        self.connectivity = Connectivity.ONLINE
        self._log.info("connectivity-online", pending=len(self.queue))
        await self.events.publish(SyncEvent.ONLINE, {})

        if self.can_sync:
            await self.sync_now()
        self._start_timer()

    async def handle_offline(self) -> None:
        if not self.is_online:
            return

        self.connectivity = Connectivity.OFFLINE
        self._log.info("connectivity-offline")
        await self._stop_timer()
        await self.events.publish(SyncEvent.OFFLINE, {})

    # ------------------------------------------------------------------
    # User code
    # ------------------------------------------------------------------

    async def set_user_code(self, code: str) -> None:
        """Switch the sync target to *code* and activate it when auto-sync is on."""
        self.user_code = code
        self._storage.set(USER_CODE_KEY, code)
        self.last_sync_timestamp = self._load_watermark()
        self._log.info("user-code-set", user_code=code)

        await self._stop_timer()
        if self.auto_sync is AutoSync.ENABLED and self.can_sync:
            await self.sync_now()
            self._start_timer()

    async def generate_user_code(self) -> str:
        """Mint a new code remotely; failures propagate as :class:`TransportError`."""
        code = await self.transport.generate_user_code()
        await self.set_user_code(code)
        await self.events.publish(SyncEvent.USER_CODE_GENERATED, {"code": code})
        return code

    # ------------------------------------------------------------------
    # Auto-sync
    # ------------------------------------------------------------------

    async def enable_auto_sync(self, interval: float | None = None) -> None:
        if interval is not None:
            self._sync_interval = interval
        self.auto_sync = AutoSync.ENABLED
        self._storage.set(AUTO_SYNC_KEY, True)

        await self._stop_timer()
        if self.can_sync:
            await self.sync_now()
            self._start_timer()

    async def disable_auto_sync(self) -> None:
        self.auto_sync = AutoSync.DISABLED
        self._storage.set(AUTO_SYNC_KEY, False)
        await self._stop_timer()

    @property
    def timer_running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    def _start_timer(self) -> None:
        if self.auto_sync is not AutoSync.ENABLED or not self.can_sync or self.timer_running:
            return
        self._timer_task = asyncio.create_task(self._auto_sync_loop())
        self._log.info("auto-sync-started", interval=self._sync_interval)

    async def _stop_timer(self) -> None:
        if self._timer_task is None:
            return
        await self._cancel(self._timer_task)
        self._timer_task = None
        self._log.info("auto-sync-stopped")

    async def _auto_sync_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sync_interval)
            if not self.can_sync:
                continue
            try:
                await self.sync_now()
            except Exception as exc:  # noqa: BLE001 – keep the timer alive
                self._log.exception("auto-sync-cycle-crashed", error=str(exc))

    # ------------------------------------------------------------------
    # Queue draining
    # ------------------------------------------------------------------

    def _on_operation_enqueued(self, operation: Operation) -> None:
        if not self.can_sync:
            return
        task = asyncio.create_task(self.flush())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def flush(self) -> Optional[DrainResult]:
        """Drain the queue once, repeating once more if asked to while draining."""
        if self._flushing:
            self._flush_pending = True
            return None

        self._flushing = True
        try:
            result = await self._drain()
            while self._flush_pending:
                self._flush_pending = False
                result = await self._drain()
        finally:
            self._flushing = False
        return result

    async def _drain(self) -> Optional[DrainResult]:
        if not self.can_sync or not len(self.queue):
            return None

        await self._begin_cycle("drain", pending=len(self.queue))
        try:
            result = await self.queue.drain(self.transport, self.user_code)
        except TransportError as exc:
            await self._fail_cycle("drain", exc)
            return None

        for operation in result.dropped:
            await self.events.publish(
                SyncEvent.OPERATION_DROPPED,
                {"operation": operation.to_wire(), "retries": operation.retries},
            )

        self._log.info(
            "queue-drained",
            succeeded=len(result.succeeded),
            failed=len(result.failed),
            dropped=len(result.dropped),
        )
        await self._finish_cycle(
            "drain",
            {
                "succeeded": result.succeeded,
                "failed": result.failed,
                "dropped": [op.id for op in result.dropped],
                "timestamp": result.timestamp,
            },
        )
        return result

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    async def fetch_sessions(self, force_refresh: bool = False) -> List[SessionRecord]:
        """Pull sessions changed since the watermark (everything when forced).

        Tombstones are included so remote deletions reach the local store.
        """
        if not self.can_sync:
            return []

        since = None if force_refresh else self.last_sync_timestamp
        await self._begin_cycle("fetch", since=since)
        try:
            response = await self.transport.list_sessions(self.user_code, since=since, include_deleted=True)
        except TransportError as exc:
            await self._fail_cycle("fetch", exc)
            return []

        self.last_sync_timestamp = response.timestamp
        self._save_watermark()
        self._log.info("sessions-fetched", count=len(response.sessions), since=since)

        await self._finish_cycle("fetch", {"count": len(response.sessions), "timestamp": response.timestamp})
        await self.events.publish(
            SyncEvent.SESSIONS_RECEIVED,
            {"sessions": response.sessions, "timestamp": response.timestamp, "forceRefresh": force_refresh},
        )
        return response.sessions

    async def sync_now(self, force_refresh: bool = False) -> List[SessionRecord]:
        """One full cycle: push pending operations, then pull remote changes."""
        await self.flush()
        return await self.fetch_sessions(force_refresh)

    # ------------------------------------------------------------------
    # Session mutations
    # ------------------------------------------------------------------

    async def start_session(self, start_time: int | None = None, *, session_id: str | None = None) -> str:
        """Create a session remotely, or queue it; returns the session id.

        Pass *session_id* when a local copy already exists so the server
        adopts the same id.
        """
        start_time = now_ms() if start_time is None else start_time

        if self.can_sync:
            try:
                response = await self.transport.create_session(self.user_code, start_time, session_id=session_id)
            except TransportError as exc:
                self._log.info("start-session-queued", error=str(exc))
            else:
                await self.events.publish(
                    SyncEvent.SESSION_STARTED,
                    {"sessionId": response.sessionId, "startTime": start_time, "queued": False},
                )
                return response.sessionId

        local_id = session_id or str(uuid.uuid4())
        self.queue.enqueue(OperationType.START_SESSION, local_id, {"startTime": start_time})
        await self.events.publish(
            SyncEvent.SESSION_STARTED,
            {"sessionId": local_id, "startTime": start_time, "queued": True},
        )
        return local_id

    async def end_session(self, session_id: str, end_time: int | None = None) -> None:
        end_time = now_ms() if end_time is None else end_time
        queued = await self._remote_or_queue(
            OperationType.END_SESSION,
            session_id,
            {"endTime": end_time},
            lambda: self.transport.update_session(self.user_code, session_id, {"endTime": end_time}),
        )
        await self.events.publish(
            SyncEvent.SESSION_ENDED,
            {"sessionId": session_id, "endTime": end_time, "queued": queued},
        )

    async def update_session(self, session_id: str, data: Dict[str, Any]) -> None:
        """Apply a partial ``{startTime?, endTime?}`` update."""
        changes = UpdateSessionData.model_validate(data).to_wire(exclude_unset=True)
        queued = await self._remote_or_queue(
            OperationType.UPDATE_SESSION,
            session_id,
            changes,
            lambda: self.transport.update_session(self.user_code, session_id, changes),
        )
        await self.events.publish(SyncEvent.SESSION_UPDATED, {"sessionId": session_id, **changes, "queued": queued})

    async def delete_session(self, session_id: str) -> None:
        queued = await self._remote_or_queue(
            OperationType.DELETE_SESSION,
            session_id,
            {},
            lambda: self.transport.delete_session(self.user_code, session_id),
        )
        await self.events.publish(SyncEvent.SESSION_DELETED, {"sessionId": session_id, "queued": queued})

    async def _remote_or_queue(self, op_type: OperationType, session_id: str, data: Dict[str, Any], call) -> bool:
        """Try *call* when online; enqueue on failure.  Returns whether it was queued."""
        if self.can_sync:
            try:
                await call()
            except TransportError as exc:
                self._log.info("remote-call-queued", type=op_type.value, session_id=session_id, error=str(exc))
            else:
                return False

        self.queue.enqueue(op_type, session_id, data)
        return True
