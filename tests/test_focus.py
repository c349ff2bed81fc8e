"""Tests for focus mode tracking."""

from __future__ import annotations

import pytest

from taskflow.tracking.focus import FOCUS_STATE_KEY, FocusTracker
from taskflow.tracking.models import TrackingState
from taskflow.tracking.sessions import TimeSessionStore
from taskflow.tracking.sync import SyncManager, SyncOptions


@pytest.fixture
async def sessions(remote, storage, clock):
    sync = SyncManager(remote, storage, clock=clock, options=SyncOptions(auto_sync=False))
    await sync.initialize()
    store = TimeSessionStore(remote, sync, storage, clock=clock)
    try:
        yield store
    finally:
        await store.shutdown()
        await sync.shutdown()


@pytest.fixture
def focus(sessions, storage, clock):
    return FocusTracker(sessions, storage, clock=clock)


@pytest.mark.asyncio
async def test_enter_starts_time_tracking(focus, sessions):
    entered = await focus.enter("T1")

    assert focus.current is entered
    assert entered.task_id == "T1"
    assert sessions.state is TrackingState.TRACKING
    assert sessions.active_task_id == "T1"


@pytest.mark.asyncio
async def test_enter_without_auto_start_leaves_tracking_idle(focus, sessions, remote):
    focus.update_settings({"auto_start_timer": False})

    await focus.enter("T1")

    assert sessions.state is TrackingState.IDLE
    assert remote.count("insert_session") == 0


@pytest.mark.asyncio
async def test_exit_records_duration_and_keeps_timer_running(focus, sessions, clock):
    await focus.enter("T1")
    await clock.advance(90)

    closed = focus.exit()

    assert closed is not None
    assert closed.duration == 90
    assert closed.end_time == clock.now()
    assert focus.current is None
    assert [item.task_id for item in focus.history] == ["T1"]
    assert sessions.state is TrackingState.TRACKING
    assert focus.exit() is None


@pytest.mark.asyncio
async def test_interruptions_count_against_open_session(focus):
    assert focus.add_interruption() is None

    await focus.enter("T1")
    focus.add_interruption()
    focus.add_interruption()
    closed = focus.exit()

    assert closed is not None and closed.interruptions == 2


@pytest.mark.asyncio
async def test_entering_another_task_closes_previous_focus(focus, sessions, clock):
    first = await focus.enter("T1")
    await clock.advance(15)

    second = await focus.enter("T2")

    assert first.end_time is not None
    assert first.duration == 15
    assert focus.current is second
    assert sessions.active_task_id == "T2"
    assert [item.task_id for item in sessions.sessions] == ["T1"]


@pytest.mark.asyncio
async def test_entering_same_task_keeps_open_session(focus, remote):
    first = await focus.enter("T1")
    again = await focus.enter("T1")

    assert again is first
    assert remote.count("insert_session") == 1


@pytest.mark.asyncio
async def test_tracking_failure_does_not_block_focus(focus, sessions, remote):
    remote.fail_next("insert_session")

    entered = await focus.enter("T1")

    assert focus.current is entered
    assert sessions.state is TrackingState.IDLE


@pytest.mark.asyncio
async def test_state_is_restored_from_storage(focus, sessions, storage, clock):
    focus.update_settings({"theme": "dark", "show_subtasks": False})
    await focus.enter("T1")
    focus.add_interruption()
    await clock.advance(10)
    focus.exit()
    await focus.enter("T2")

    revived = FocusTracker(sessions, storage, clock=clock)

    assert revived.settings.theme == "dark"
    assert revived.settings.show_subtasks is False
    assert revived.settings.auto_start_timer is True
    assert [(item.task_id, item.interruptions) for item in revived.history] == [("T1", 1)]
    assert revived.current is not None and revived.current.task_id == "T2"


@pytest.mark.asyncio
async def test_corrupt_settings_fall_back_to_defaults(sessions, storage, clock):
    storage.set(FOCUS_STATE_KEY, {"settings": {"theme": "neon"}, "sessions": [{"bad": 1}]})

    tracker = FocusTracker(sessions, storage, clock=clock)

    assert tracker.settings.theme == "light"
    assert tracker.history == []
