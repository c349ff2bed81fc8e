"""Tests for the remote-backed task store."""

from __future__ import annotations

import pytest

from taskflow.errors import (
    NotAuthenticatedError,
    NotFoundError,
    RemoteWriteError,
    TaskValidationError,
)
from taskflow.schemas.drafts import TaskDraft
from taskflow.tasks.models import Priority, TaskStatus
from taskflow.tasks.store import TaskStore


@pytest.fixture
async def store(remote, clock):
    task_store = TaskStore(remote, clock=clock, grace_seconds=10)
    try:
        yield task_store
    finally:
        await task_store.shutdown()


@pytest.mark.asyncio
async def test_add_then_load_round_trips_task_and_subtasks(store, remote, clock):
    created = await store.add(
        {
            "title": "Write quarterly report",
            "category": "work",
            "priority": "high",
            "subtasks": [
                "Outline",
                "Draft",
                {"title": "Review", "completed": True},
            ],
        }
    )

    fresh = TaskStore(remote, clock=clock)
    loaded = await fresh.load()

    assert len(loaded) == 1
    task = loaded[0]
    assert task.id == created.id
    assert task.title == "Write quarterly report"
    assert task.category == ["work"]
    assert task.priority is Priority.HIGH
    # Subtasks come back in insertion order
    assert [sub.title for sub in task.subtasks] == ["Outline", "Draft", "Review"]
    assert [sub.completed for sub in task.subtasks] == [False, False, True]
    assert [sub.id for sub in task.subtasks] == [sub.id for sub in created.subtasks]


@pytest.mark.asyncio
async def test_add_fills_defaults_and_inserts_newest_first(store, clock):
    first = await store.add({"title": "First"})
    await clock.advance(1)
    second = await store.add({"title": "Second"})

    assert first.status is TaskStatus.TODO
    assert first.time_spent == 0
    assert first.progress == 0
    assert first.category == ["general"]
    assert first.created_at == first.updated_at
    assert [task.id for task in store.tasks] == [second.id, first.id]


@pytest.mark.asyncio
async def test_add_requires_authenticated_user(store, remote):
    remote.user_id = None

    with pytest.raises(NotAuthenticatedError):
        await store.add({"title": "Anything"})

    assert remote.calls == ["get_user_id"]
    assert store.tasks == []


@pytest.mark.asyncio
async def test_invalid_input_is_rejected_before_remote_call(store, remote):
    with pytest.raises(TaskValidationError):
        await store.add({"title": "Too far", "progress": 150})
    with pytest.raises(TaskValidationError):
        await store.add({"title": "   "})
    with pytest.raises(TaskValidationError):
        await store.add({"title": "Odd", "priority": "urgent"})
    with pytest.raises(TaskValidationError):
        await store.add({"title": "Odd", "time_spent": "abc"})

    assert remote.calls == []


@pytest.mark.asyncio
async def test_failed_insert_leaves_collection_unchanged(store, remote):
    remote.fail_next("insert_task")

    with pytest.raises(RemoteWriteError):
        await store.add({"title": "Lost"})

    assert store.tasks == []
    assert remote.tasks == {}


@pytest.mark.asyncio
async def test_subtask_insert_failure_removes_task_row(store, remote):
    remote.fail_next("insert_subtasks")

    with pytest.raises(RemoteWriteError):
        await store.add({"title": "Parent", "subtasks": ["Child"]})

    assert store.tasks == []
    assert remote.tasks == {}
    assert remote.count("delete_task") == 1


@pytest.mark.asyncio
async def test_failed_update_keeps_local_state(store, remote):
    task = await store.add({"title": "Original"})
    remote.fail_next("update_task")

    with pytest.raises(RemoteWriteError):
        await store.update(task.id, {"title": "Renamed"})

    assert store.require(task.id).title == "Original"
    assert remote.tasks[task.id]["title"] == "Original"


@pytest.mark.asyncio
async def test_update_bumps_updated_at(store, remote, clock):
    task = await store.add({"title": "Tune"})
    await clock.advance(30)

    updated = await store.update(task.id, {"description": "with notes", "tags": ["a", "a", "b"]})

    assert updated is not None
    assert updated.description == "with notes"
    assert updated.tags == ["a", "b"]
    assert updated.updated_at == clock.now()
    assert remote.tasks[task.id]["updated_at"] == clock.now().isoformat()


@pytest.mark.asyncio
async def test_complete_task_marks_task_and_every_subtask(store, remote, clock):
    task = await store.add({"title": "Ship", "subtasks": ["Build", "Test"]})

    completed = await store.complete_task(task.id)

    assert completed is not None
    assert completed.status is TaskStatus.COMPLETED
    assert completed.progress == 100
    assert completed.completed_at == clock.now()
    assert all(sub.completed for sub in completed.subtasks)
    assert remote.tasks[task.id]["status"] == "completed"
    assert remote.tasks[task.id]["progress"] == 100
    assert all(sub["completed"] for sub in remote.subtasks.values())


@pytest.mark.asyncio
async def test_update_rejects_non_numeric_time_spent(store, remote):
    task = await store.add({"title": "Timed", "time_spent": "120"})
    assert task.time_spent == 120
    calls = len(remote.calls)

    with pytest.raises(TaskValidationError):
        await store.update(task.id, {"time_spent": "abc"})

    assert len(remote.calls) == calls
    assert store.require(task.id).time_spent == 120


@pytest.mark.asyncio
async def test_failed_subtask_completion_reverts_task_row(store, remote):
    task = await store.add({"title": "Ship", "subtasks": ["Build", "Test"]})
    remote.fail_next("update_subtasks")

    with pytest.raises(RemoteWriteError):
        await store.complete_task(task.id)

    row = remote.tasks[task.id]
    assert row["status"] == "todo"
    assert row["progress"] == 0
    assert row["completed_at"] is None
    assert not any(sub["completed"] for sub in remote.subtasks.values())
    local = store.require(task.id)
    assert local.status is TaskStatus.TODO
    assert not any(sub.completed for sub in local.subtasks)

@pytest.mark.asyncio
async def test_reopening_clears_completion_timestamp(store):
    task = await store.add({"title": "Again"})
    await store.complete_task(task.id)

    reopened = await store.update(task.id, {"status": "in_progress"})

    assert reopened is not None
    assert reopened.status is TaskStatus.IN_PROGRESS
    assert reopened.completed_at is None


@pytest.mark.asyncio
async def test_update_category_adds_and_removes(store, remote):
    task = await store.add({"title": "Tagged", "category": ["work"]})

    await store.update_category(task.id, "urgent", True)
    assert store.require(task.id).category == ["work", "urgent"]

    await store.update_category(task.id, "work", False)
    assert store.require(task.id).category == ["urgent"]
    assert remote.tasks[task.id]["category"] == ["urgent"]


@pytest.mark.asyncio
async def test_update_progress_validates_range(store, remote):
    task = await store.add({"title": "Halfway"})
    calls_before = len(remote.calls)

    with pytest.raises(TaskValidationError):
        await store.update_progress(task.id, -1)
    assert len(remote.calls) == calls_before

    await store.update_progress(task.id, 50)
    assert store.require(task.id).progress == 50


@pytest.mark.asyncio
async def test_subtasks_with_same_title_are_addressed_independently(store, remote):
    task = await store.add({"title": "Errands", "subtasks": ["Call", "Call"]})
    first, second = task.subtasks

    toggled = await store.toggle_subtask(task.id, 1)

    assert toggled is second
    assert second.completed is True
    assert first.completed is False
    assert remote.subtasks[second.id]["completed"] is True
    assert remote.subtasks[first.id]["completed"] is False

    removed = await store.delete_subtask(task.id, first.id)
    assert removed is first
    assert [sub.id for sub in store.require(task.id).subtasks] == [second.id]
    assert set(remote.subtasks) == {second.id}


@pytest.mark.asyncio
async def test_add_subtask_appends_after_existing(store, remote, clock):
    task = await store.add({"title": "List", "subtasks": ["One"]})

    added = await store.add_subtask(task.id, "Two", "second item", {"value": 1, "unit": "hours"})

    assert added is not None
    assert [sub.title for sub in store.require(task.id).subtasks] == ["One", "Two"]
    assert remote.subtasks[added.id]["position"] == 1
    assert remote.subtasks[added.id]["time_estimate"] == 60

    reloaded = await TaskStore(remote, clock=clock).load()
    assert [sub.title for sub in reloaded[0].subtasks] == ["One", "Two"]


@pytest.mark.asyncio
async def test_toggle_subtask_out_of_range_is_noop(store, remote):
    task = await store.add({"title": "Empty"})
    calls_before = len(remote.calls)

    assert await store.toggle_subtask(task.id, 3) is None
    assert len(remote.calls) == calls_before


@pytest.mark.asyncio
async def test_unknown_task_id_is_noop(store, remote):
    assert await store.update("missing", {"title": "x"}) is None
    assert await store.complete_task("missing") is None
    assert await store.delete("missing") is None
    assert await store.add_subtask("missing", "x") is None
    assert remote.calls == []

    with pytest.raises(NotFoundError):
        store.require("missing")


@pytest.mark.asyncio
async def test_dependencies_are_validated_and_persisted(store, remote):
    blocked = await store.add({"title": "Deploy"})
    blocker = await store.add({"title": "Review"})

    await store.add_dependency(blocked.id, blocker.id)
    assert store.require(blocked.id).dependencies == [blocker.id]
    assert remote.tasks[blocked.id]["dependencies"] == [blocker.id]

    with pytest.raises(TaskValidationError):
        await store.add_dependency(blocked.id, blocked.id)
    with pytest.raises(TaskValidationError):
        await store.add_dependency(blocked.id, "ghost")

    await store.remove_dependency(blocked.id, blocker.id)
    assert store.require(blocked.id).dependencies == []


@pytest.mark.asyncio
async def test_restore_within_grace_window_cancels_hard_delete(store, remote, clock):
    task = await store.add({"title": "Oops"})

    await store.delete(task.id)
    assert store.get(task.id) is None
    assert [item.id for item in store.deleted_tasks] == [task.id]
    assert remote.tasks[task.id]["deleted_at"] is not None

    await clock.advance(5)
    restored = await store.restore(task.id)

    assert restored is not None
    assert store.get(task.id) is restored
    assert store.deleted_tasks == []
    assert remote.tasks[task.id]["deleted_at"] is None

    await clock.advance(30)
    assert task.id in remote.tasks
    assert remote.count("delete_task") == 0


@pytest.mark.asyncio
async def test_restore_after_grace_window_is_noop(store, remote, clock):
    task = await store.add({"title": "Gone"})
    await store.delete(task.id)

    await clock.advance(11)

    assert task.id not in remote.tasks
    assert store.deleted_tasks == []
    assert await store.restore(task.id) is None
    assert store.get(task.id) is None


@pytest.mark.asyncio
async def test_failed_restore_keeps_hard_delete_scheduled(store, remote, clock):
    task = await store.add({"title": "Sticky"})
    await store.delete(task.id)
    remote.fail_next("update_task")

    with pytest.raises(RemoteWriteError):
        await store.restore(task.id)

    assert [item.id for item in store.deleted_tasks] == [task.id]
    await clock.advance(11)
    assert task.id not in remote.tasks


@pytest.mark.asyncio
async def test_restored_task_returns_to_creation_order(store, clock):
    oldest = await store.add({"title": "A"})
    await clock.advance(1)
    middle = await store.add({"title": "B"})
    await clock.advance(1)
    newest = await store.add({"title": "C"})

    await store.delete(middle.id)
    await store.restore(middle.id)

    assert [task.id for task in store.tasks] == [newest.id, middle.id, oldest.id]


@pytest.mark.asyncio
async def test_load_failure_keeps_current_collection(store, remote):
    task = await store.add({"title": "Cached"})
    remote.offline = True

    result = await store.load()

    assert [item.id for item in result] == [task.id]


@pytest.mark.asyncio
async def test_load_skips_tasks_awaiting_hard_delete(store, remote):
    keep = await store.add({"title": "Keep"})
    drop = await store.add({"title": "Drop"})
    await store.delete(drop.id)
    # Simulate a remote that has not applied the soft delete yet
    remote.tasks[drop.id]["deleted_at"] = None

    loaded = await store.load()

    assert [task.id for task in loaded] == [keep.id]


@pytest.mark.asyncio
async def test_add_from_degraded_draft_uses_raw_text(store):
    draft = TaskDraft.degraded("buy oat milk", "API key not configured")

    task = await store.add_from_draft(draft)

    assert task.title == "buy oat milk"
    assert task.category == ["general"]


@pytest.mark.asyncio
async def test_add_from_draft_converts_estimates(store, remote):
    draft = TaskDraft.model_validate(
        {
            "title": "Plan trip",
            "category": "personal",
            "priority": "low",
            "timeEstimate": {"value": 2, "unit": "hours"},
            "subtasks": [
                {"title": "Book flights", "timeEstimate": {"value": 30, "unit": "minutes"}},
                {"title": ""},
            ],
        }
    )

    task = await store.add_from_draft(draft)

    assert task.time_estimate is not None
    assert task.time_estimate.to_minutes() == 120
    assert [sub.title for sub in task.subtasks] == ["Book flights"]
    assert remote.tasks[task.id]["time_estimate"] == 120
