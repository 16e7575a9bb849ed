"""Sync engine behaviour against an in-memory fake transport."""

import asyncio

import pytest

from timetrack.client.sync_engine import SyncEngine
from timetrack.client.transport import TransportError
from timetrack.constants import AUTO_SYNC_KEY
from timetrack.constants import USER_CODE_KEY
from timetrack.constants import last_sync_key
from timetrack.events import SyncEvent
from timetrack.models.enums import AutoSync
from timetrack.models.enums import Connectivity
from timetrack.models.enums import OperationType
from timetrack.models.enums import SyncStatus
from timetrack.schemas.operations import StartSessionOperation

CODE = "calm-robot-4"


def _make_engine(storage, transport, *, user_code=CODE, **kwargs) -> SyncEngine:
    if user_code:
        storage.set(USER_CODE_KEY, user_code)
    kwargs.setdefault("sync_interval", 0.01)
    kwargs.setdefault("error_cooldown", 0.02)
    return SyncEngine(storage, transport=transport, **kwargs)


def _record(engine: SyncEngine, *events: SyncEvent):
    received = []

    def _subscribe(event):
        async def handler(data):
            received.append((event, data))

        engine.on(event, handler)

    for event in events:
        _subscribe(event)
    return received


@pytest.mark.asyncio
async def test_offline_start_session_queues_without_network(storage, fake_transport):
    engine = _make_engine(storage, fake_transport, online=False)

    session_id = await engine.start_session(1000)

    assert session_id
    assert fake_transport.calls == []
    [op] = engine.pending_operations
    assert isinstance(op, StartSessionOperation)
    assert op.session_id == session_id
    assert op.data.start_time == 1000


@pytest.mark.asyncio
async def test_without_user_code_everything_queues(storage, fake_transport):
    engine = _make_engine(storage, fake_transport, user_code=None)

    await engine.start_session(1000)
    await engine.join()

    assert fake_transport.calls == []
    assert len(engine.pending_operations) == 1


@pytest.mark.asyncio
async def test_online_start_session_returns_server_id(storage, fake_transport):
    engine = _make_engine(storage, fake_transport)
    events = _record(engine, SyncEvent.SESSION_STARTED)

    session_id = await engine.start_session(1000)

    assert session_id == "server-1"
    assert engine.pending_operations == []
    assert events == [(SyncEvent.SESSION_STARTED, {"sessionId": "server-1", "startTime": 1000, "queued": False})]


@pytest.mark.asyncio
async def test_start_session_passes_local_id_to_server(storage, fake_transport):
    engine = _make_engine(storage, fake_transport)

    session_id = await engine.start_session(1000, session_id="local-1")

    assert session_id == "local-1"
    assert fake_transport.calls_to("create_session")[0][2] == {"session_id": "local-1"}


@pytest.mark.asyncio
async def test_failed_remote_call_falls_back_to_queue(storage, fake_transport):
    engine = _make_engine(storage, fake_transport)
    fake_transport.online = False
    events = _record(engine, SyncEvent.SESSION_ENDED, SyncEvent.SYNC_ERROR)

    await engine.end_session("s1", 2000)
    await engine.join()

    [op] = engine.pending_operations
    assert op.type == OperationType.END_SESSION.value
    assert op.data.end_time == 2000
    assert (SyncEvent.SESSION_ENDED, {"sessionId": "s1", "endTime": 2000, "queued": True}) in events
    # The immediate flush attempted after enqueueing failed as well
    assert any(event is SyncEvent.SYNC_ERROR for event, _ in events)
    assert engine.status is SyncStatus.ERROR
    await engine.stop()


@pytest.mark.asyncio
async def test_error_status_reverts_to_idle_after_cooldown(storage, fake_transport):
    engine = _make_engine(storage, fake_transport, error_cooldown=0.01)
    statuses = _record(engine, SyncEvent.SYNC_STATUS_CHANGED)
    fake_transport.online = False

    assert await engine.fetch_sessions() == []
    assert engine.status is SyncStatus.ERROR

    await asyncio.sleep(0.05)

    assert engine.status is SyncStatus.IDLE
    assert [data["status"] for _, data in statuses] == ["syncing", "error", "idle"]
    await engine.stop()


@pytest.mark.asyncio
async def test_update_and_delete_use_remote_when_online(storage, fake_transport):
    engine = _make_engine(storage, fake_transport)
    events = _record(engine, SyncEvent.SESSION_UPDATED, SyncEvent.SESSION_DELETED)

    await engine.update_session("s1", {"startTime": 10})
    await engine.delete_session("s1")

    assert engine.pending_operations == []
    assert fake_transport.calls_to("update_session")[0][1] == (CODE, "s1", {"startTime": 10})
    assert fake_transport.calls_to("delete_session")[0][1] == (CODE, "s1")
    assert [event for event, _ in events] == [SyncEvent.SESSION_UPDATED, SyncEvent.SESSION_DELETED]


@pytest.mark.asyncio
async def test_queued_update_keeps_only_given_fields(storage, fake_transport):
    engine = _make_engine(storage, fake_transport, online=False)

    await engine.update_session("s1", {"endTime": None})

    [op] = engine.pending_operations
    assert op.to_wire()["data"] == {"endTime": None}


@pytest.mark.asyncio
async def test_fetch_uses_server_timestamp_as_watermark(storage, fake_transport):
    engine = _make_engine(storage, fake_transport)
    received = _record(engine, SyncEvent.SESSIONS_RECEIVED)

    await engine.fetch_sessions()
    first_watermark = engine.last_sync_timestamp
    await engine.fetch_sessions()
    await engine.fetch_sessions(force_refresh=True)

    calls = fake_transport.calls_to("list_sessions")
    assert calls[0][2] == {"since": None, "include_deleted": True}
    assert calls[1][2]["since"] == first_watermark
    assert calls[2][2]["since"] is None
    assert storage.get(last_sync_key(CODE)) == engine.last_sync_timestamp
    assert len(received) == 3
    assert received[2][1]["forceRefresh"] is True


@pytest.mark.asyncio
async def test_watermark_is_restored_per_user_code(storage, fake_transport):
    engine = _make_engine(storage, fake_transport)
    await engine.fetch_sessions()

    restarted = _make_engine(storage, fake_transport)
    assert restarted.last_sync_timestamp == engine.last_sync_timestamp

    await restarted.set_user_code("other-code-1")
    assert restarted.last_sync_timestamp is None


@pytest.mark.asyncio
async def test_fetch_returns_nothing_while_offline(storage, fake_transport):
    engine = _make_engine(storage, fake_transport, online=False)

    assert await engine.fetch_sessions() == []
    assert fake_transport.calls == []


@pytest.mark.asyncio
async def test_dropped_operation_is_reported(storage, fake_transport):
    engine = _make_engine(storage, fake_transport, online=False)
    dropped = _record(engine, SyncEvent.OPERATION_DROPPED)
    await engine.delete_session("missing")
    fake_transport.op_succeeds = lambda op: False

    await engine.handle_online()  # first attempt
    for _ in range(4):
        await engine.flush()

    assert engine.pending_operations == []
    assert len(dropped) == 1
    assert dropped[0][1]["operation"]["sessionId"] == "missing"
    assert dropped[0][1]["retries"] == 5


@pytest.mark.asyncio
async def test_coming_online_drains_and_fetches(storage, fake_transport):
    engine = _make_engine(storage, fake_transport, online=False)
    events = _record(engine, SyncEvent.ONLINE, SyncEvent.SYNC_SUCCESS, SyncEvent.SESSIONS_RECEIVED)
    await engine.start_session(1000)
    await engine.end_session(engine.pending_operations[0].session_id, 2000)

    await engine.handle_online()

    assert engine.connectivity is Connectivity.ONLINE
    assert engine.pending_operations == []
    assert len(fake_transport.calls_to("sync_operations")) == 1
    assert len(fake_transport.calls_to("list_sessions")) == 1
    assert [event for event, _ in events] == [
        SyncEvent.ONLINE,
        SyncEvent.SYNC_SUCCESS,
        SyncEvent.SYNC_SUCCESS,
        SyncEvent.SESSIONS_RECEIVED,
    ]
    # Auto-sync is off by default: no timer
    assert not engine.timer_running


@pytest.mark.asyncio
async def test_going_offline_stops_timer_and_immediate_flush(storage, fake_transport):
    engine = _make_engine(storage, fake_transport, sync_interval=60)
    await engine.enable_auto_sync()
    assert engine.timer_running

    events = _record(engine, SyncEvent.OFFLINE)
    await engine.handle_offline()
    await engine.start_session(1000)
    await engine.join()

    assert not engine.timer_running
    assert events == [(SyncEvent.OFFLINE, {})]
    assert len(engine.pending_operations) == 1
    assert fake_transport.calls_to("create_session") == []

    await engine.handle_online()
    assert engine.timer_running
    assert engine.pending_operations == []
    await engine.stop()


@pytest.mark.asyncio
async def test_overlapping_flushes_are_serialised(storage, fake_transport):
    engine = _make_engine(storage, fake_transport, online=False)
    first = await engine.start_session(1000)
    # Flip the flag directly: handle_online would start a drain of its own
    engine.connectivity = Connectivity.ONLINE
    fake_transport.batch_gate = asyncio.Event()

    running = asyncio.create_task(engine.flush())
    await fake_transport.batch_entered.wait()

    second = engine.queue.enqueue(OperationType.END_SESSION, first, {"endTime": 2000})
    assert await engine.flush() is None  # marked pending, no second drain

    fake_transport.batch_gate.set()
    await running
    await engine.join()

    assert fake_transport.max_in_flight == 1
    batches = [[op.id for op in batch] for batch in fake_transport.batches]
    assert batches[-1] == [second]
    assert engine.pending_operations == []


@pytest.mark.asyncio
async def test_auto_sync_timer_runs_periodically(storage, fake_transport):
    engine = _make_engine(storage, fake_transport, sync_interval=0.01)

    await engine.enable_auto_sync()
    await asyncio.sleep(0.06)

    assert storage.get(AUTO_SYNC_KEY) is True
    assert len(fake_transport.calls_to("list_sessions")) >= 3

    await engine.disable_auto_sync()
    calls = len(fake_transport.calls_to("list_sessions"))
    await asyncio.sleep(0.03)

    assert not engine.timer_running
    assert len(fake_transport.calls_to("list_sessions")) == calls
    assert storage.get(AUTO_SYNC_KEY) is False
    await engine.stop()


@pytest.mark.asyncio
async def test_start_resumes_persisted_auto_sync(storage, fake_transport):
    storage.set(AUTO_SYNC_KEY, True)
    engine = _make_engine(storage, fake_transport, sync_interval=60)

    assert engine.auto_sync is AutoSync.ENABLED
    await engine.start()

    assert engine.timer_running
    assert len(fake_transport.calls_to("list_sessions")) == 1

    await engine.stop()
    assert not engine.timer_running
    assert fake_transport.closed


@pytest.mark.asyncio
async def test_new_user_code_activates_sync_only_with_auto_sync(storage, fake_transport):
    engine = _make_engine(storage, fake_transport, user_code=None, sync_interval=60)
    events = _record(engine, SyncEvent.USER_CODE_GENERATED)

    code = await engine.generate_user_code()

    assert code == fake_transport.next_code
    assert storage.get(USER_CODE_KEY) == code
    assert events == [(SyncEvent.USER_CODE_GENERATED, {"code": code})]
    assert fake_transport.calls_to("list_sessions") == []

    await engine.enable_auto_sync()
    await engine.set_user_code("blue-cat-1")

    assert engine.timer_running
    assert fake_transport.calls_to("list_sessions")[-1][1] == ("blue-cat-1",)
    await engine.stop()


@pytest.mark.asyncio
async def test_generate_user_code_failure_is_raised(storage, fake_transport):
    engine = _make_engine(storage, fake_transport, user_code=None)
    fake_transport.online = False

    with pytest.raises(TransportError):
        await engine.generate_user_code()
    assert engine.user_code is None


def test_device_id_is_generated_once(storage, fake_transport):
    first = SyncEngine(storage, transport=fake_transport)
    second = SyncEngine(storage, transport=fake_transport)

    assert first.device_id
    assert first.device_id == second.device_id


@pytest.mark.asyncio
async def test_status_changes_around_successful_cycle(storage, fake_transport):
    engine = _make_engine(storage, fake_transport)
    statuses = _record(engine, SyncEvent.SYNC_STATUS_CHANGED, SyncEvent.SYNC_START)

    await engine.fetch_sessions()

    assert [(event, data.get("status")) for event, data in statuses] == [
        (SyncEvent.SYNC_STATUS_CHANGED, "syncing"),
        (SyncEvent.SYNC_START, None),
        (SyncEvent.SYNC_STATUS_CHANGED, "idle"),
    ]
    assert engine.status is SyncStatus.IDLE


@pytest.mark.asyncio
async def test_plain_event_handler_does_not_break_queued_start(storage, fake_transport):
    engine = _make_engine(storage, fake_transport, online=False)
    seen = []
    engine.on(SyncEvent.SESSION_STARTED, seen.append)

    session_id = await engine.start_session(1000)

    assert [p["sessionId"] for p in seen] == [session_id]
    assert len(engine.pending_operations) == 1


@pytest.mark.asyncio
async def test_stopped_engine_cannot_be_restarted(storage, fake_transport):
    engine = _make_engine(storage, fake_transport)
    await engine.start()
    await engine.stop()

    with pytest.raises(RuntimeError):
        await engine.start()
