"""Tests for the session sync manager and its offline queue."""

from __future__ import annotations

import asyncio
import datetime

import pytest
from fakes import START, settle

from taskflow.errors import SyncError
from taskflow.tracking.models import SyncState, TimeSession
from taskflow.tracking.sync import PENDING_SESSIONS_KEY, SyncManager, SyncOptions


def _closed(session_id: str, duration: int = 60, task_id: str = "T1") -> TimeSession:
    return TimeSession(
        id=session_id,
        task_id=task_id,
        user_id="user-1",
        start_time=START,
        end_time=START + datetime.timedelta(seconds=duration),
        duration=duration,
    )


def _open(session_id: str, task_id: str = "T1") -> TimeSession:
    return TimeSession(id=session_id, task_id=task_id, user_id="user-1", start_time=START)


@pytest.fixture
async def make_manager(remote, storage, clock):
    managers: list[SyncManager] = []

    def _make(**options) -> SyncManager:
        defaults = {"sync_interval": 30, "retry_attempts": 2, "retry_delay": 5}
        defaults.update(options)
        manager = SyncManager(remote, storage, clock=clock, options=SyncOptions(**defaults))
        managers.append(manager)
        return manager

    yield _make

    for manager in managers:
        await manager.shutdown()


@pytest.fixture
async def manager(make_manager):
    sync = make_manager()
    await sync.initialize()
    try:
        yield sync
    finally:
        await sync.shutdown()


@pytest.mark.asyncio
async def test_bulk_sync_is_idempotent(manager, remote):
    sessions = [_closed("s1", 60), _closed("s2", 90)]

    assert await manager.bulk_sync_sessions(sessions) == 2
    assert await manager.bulk_sync_sessions(sessions) == 2

    assert set(remote.sessions) == {"s1", "s2"}
    assert remote.sessions["s2"]["duration"] == 90
    assert manager.pending == []
    assert manager.status.state is SyncState.SYNCED
    assert manager.last_sync_time == START


@pytest.mark.asyncio
async def test_bulk_sync_failure_keeps_sessions_queued(manager, remote, storage):
    remote.fail_next("upsert_sessions")

    with pytest.raises(SyncError) as excinfo:
        await manager.bulk_sync_sessions([_closed("s1")])

    assert excinfo.value.offline is False
    assert [item.id for item in manager.pending] == ["s1"]
    assert [row["id"] for row in storage.get(PENDING_SESSIONS_KEY)] == ["s1"]
    assert manager.status.state is SyncState.ERROR


@pytest.mark.asyncio
async def test_bulk_sync_while_offline_raises(manager, remote):
    manager.set_online(False)

    with pytest.raises(SyncError) as excinfo:
        await manager.bulk_sync_sessions([_closed("s1")])

    assert excinfo.value.offline is True
    assert remote.count("upsert_sessions") == 0
    assert [item.id for item in manager.pending] == ["s1"]


@pytest.mark.asyncio
async def test_initialize_flushes_persisted_queue(make_manager, remote, storage):
    storage.set(PENDING_SESSIONS_KEY, [_closed("s1").to_row(), _closed("s2").to_row()])

    sync = make_manager()
    await sync.initialize()

    assert set(remote.sessions) == {"s1", "s2"}
    assert sync.pending == []
    assert storage.get(PENDING_SESSIONS_KEY) is None


@pytest.mark.asyncio
async def test_malformed_queue_is_discarded(make_manager, remote, storage):
    storage.set(PENDING_SESSIONS_KEY, {"not": "a list"})

    sync = make_manager()
    await sync.initialize()

    assert sync.pending == []
    assert storage.get(PENDING_SESSIONS_KEY) is None
    assert remote.count("upsert_sessions") == 0


@pytest.mark.asyncio
async def test_unreadable_queue_entries_are_skipped(make_manager, remote, storage):
    storage.set(PENDING_SESSIONS_KEY, [{"id": "broken"}, _closed("s1").to_row()])

    sync = make_manager(auto_sync=False)
    await sync.initialize()

    assert [item.id for item in sync.pending] == ["s1"]


@pytest.mark.asyncio
async def test_failed_flush_retries_after_delay(manager, remote, clock):
    remote.fail_next("upsert_sessions", times=2)

    task = asyncio.create_task(manager.sync_session(_closed("s1")))
    await settle()
    assert remote.count("upsert_sessions") == 1

    await clock.advance(5)
    assert remote.count("upsert_sessions") == 2

    await clock.advance(5)
    assert await task is True
    assert remote.count("upsert_sessions") == 3
    assert "s1" in remote.sessions
    assert manager.status.state is SyncState.SYNCED


@pytest.mark.asyncio
async def test_exhausted_retries_keep_queue_until_next_tick(manager, remote, clock):
    remote.fail_next("upsert_sessions", times=3)

    task = asyncio.create_task(manager.sync_session(_closed("s1")))
    await clock.advance(10)

    assert await task is False
    status = manager.status
    assert status.state is SyncState.ERROR
    assert status.pending == 1
    assert status.last_error is not None
    assert "s1" not in remote.sessions

    await clock.advance(30)

    assert "s1" in remote.sessions
    assert manager.pending == []
    assert manager.status.state is SyncState.SYNCED


@pytest.mark.asyncio
async def test_concurrent_sync_requests_share_one_flush(manager, remote):
    remote.gate = asyncio.Event()
    manager.enqueue(_closed("s1"))
    await settle()

    second = asyncio.create_task(manager.sync_now())
    await settle()
    assert remote.count("upsert_sessions") == 1

    remote.gate.set()
    assert await second is True
    await settle()
    assert remote.count("upsert_sessions") == 1
    assert manager.pending == []


@pytest.mark.asyncio
async def test_session_queued_during_flush_is_sent_next(manager, remote):
    remote.gate = asyncio.Event()
    manager.enqueue(_closed("s1", 60))
    await settle()

    manager.enqueue(_closed("s1", 75))
    remote.gate.set()
    await settle()

    assert remote.count("upsert_sessions") == 2
    assert remote.sessions["s1"]["duration"] == 75
    assert manager.pending == []


@pytest.mark.asyncio
async def test_offline_queue_drains_when_probe_succeeds(manager, remote, clock):
    remote.offline = True
    manager.enqueue(_closed("s1"))
    await settle()

    assert manager.status.state is SyncState.OFFLINE
    assert manager.is_online is False
    assert [item.id for item in manager.pending] == ["s1"]

    remote.offline = False
    await clock.advance(30)

    assert manager.is_online is True
    assert "s1" in remote.sessions
    assert manager.pending == []
    assert remote.count("ping") == 1


@pytest.mark.asyncio
async def test_offline_mode_never_touches_remote(make_manager, remote, clock):
    sync = make_manager(offline_mode=True)
    await sync.initialize()

    assert await sync.sync_session(_closed("s1")) is False
    await settle()
    assert clock.waiting == 0
    sync.set_online(True)
    await clock.advance(60)

    assert sync.is_online is False
    assert sync.status.state is SyncState.OFFLINE
    assert remote.calls == []
    assert clock.waiting == 0


@pytest.mark.asyncio
async def test_listeners_receive_updates_until_unsubscribed(manager):
    seen: list[SyncState] = []
    unsubscribe = manager.add_listener(lambda status: seen.append(status.state))

    await manager.sync_session(_closed("s1"))
    assert SyncState.SYNCING in seen
    assert seen[-1] is SyncState.SYNCED

    unsubscribe()
    count = len(seen)
    await manager.sync_session(_closed("s2"))
    assert len(seen) == count


@pytest.mark.asyncio
async def test_failing_listener_does_not_break_sync(manager, remote):
    def _explode(status):
        raise ValueError("listener bug")

    manager.add_listener(_explode)

    assert await manager.sync_session(_closed("s1")) is True
    assert "s1" in remote.sessions


@pytest.mark.asyncio
async def test_paused_sync_holds_queue_until_resumed(manager, remote, clock):
    manager.pause_sync()
    manager.enqueue(_closed("s1"))
    await clock.advance(60)

    assert manager.is_paused is True
    assert remote.count("upsert_sessions") == 0

    manager.resume_sync()
    await settle()

    assert "s1" in remote.sessions
    assert manager.pending == []


@pytest.mark.asyncio
async def test_tracked_session_is_pushed_every_interval(manager, remote, clock):
    manager.track(_open("live"))

    await clock.advance(30)
    assert remote.sessions["live"]["duration"] == 30
    assert remote.sessions["live"]["end_time"] is None

    await clock.advance(30)
    assert remote.sessions["live"]["duration"] == 60


@pytest.mark.asyncio
async def test_untrack_stops_snapshots(manager, remote, clock):
    manager.track(_open("live"))
    await clock.advance(30)
    await manager.untrack()

    await clock.advance(90)

    assert remote.count("upsert_sessions") == 1
    assert remote.sessions["live"]["duration"] == 30


@pytest.mark.asyncio
async def test_auto_sync_disabled_leaves_queue_for_manual_flush(make_manager, remote, clock):
    sync = make_manager(auto_sync=False)
    await sync.initialize()
    sync.track(_open("live"))

    await clock.advance(120)
    assert remote.count("upsert_sessions") == 0

    assert await sync.sync_now() is True
    assert remote.sessions["live"]["duration"] == 120
