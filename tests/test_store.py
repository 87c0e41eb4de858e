"""Tests for the JSON task store."""

import json
import os

import pytest

from hlsconvert.errors import TaskStoreError
from hlsconvert.store import JsonTaskStore
from hlsconvert.task import ConversionTask, TaskStatus


@pytest.fixture
def store(tmp_path):
    return JsonTaskStore(str(tmp_path / "data" / "tasks.json"))


def test_create_starts_pending(store):
    task_id = store.create({"assetId": "1/2"})
    task = store.get(task_id)

    assert task.status == TaskStatus.PENDING
    assert task.data == {"assetId": "1/2"}
    assert task.created_at and task.updated_at


def test_ids_are_strictly_increasing(store):
    ids = [int(store.create({})) for _ in range(20)]

    assert ids == sorted(ids)
    assert len(set(ids)) == len(ids)


def test_lifecycle_merges_data_and_error(store):
    task_id = store.create({"originalWidth": 1920})

    assert store.set_status(task_id, TaskStatus.PROCESSING, data={"targetResolutions": ["1080p"]})
    assert store.set_status(task_id, TaskStatus.FAILED, error="HLS conversion failed for 1 resolution(s).")

    task = store.get(task_id)
    assert task.status == TaskStatus.FAILED
    assert task.data == {"originalWidth": 1920, "targetResolutions": ["1080p"]}
    assert task.error == "HLS conversion failed for 1 resolution(s)."


@pytest.mark.parametrize("path", [
    [TaskStatus.COMPLETED],
    [TaskStatus.PROCESSING, TaskStatus.PENDING],
    [TaskStatus.PROCESSING, TaskStatus.COMPLETED, TaskStatus.FAILED],
    [TaskStatus.FAILED, TaskStatus.PROCESSING],
])
def test_invalid_transitions_are_rejected(store, path):
    task_id = store.create({})
    *valid, invalid = path
    for status in valid:
        assert store.set_status(task_id, status)
    before = store.get(task_id)

    assert not store.set_status(task_id, invalid)
    assert store.get(task_id).status == before.status


def test_unknown_task(store):
    assert store.get("missing") is None
    assert not store.set_status("missing", TaskStatus.PROCESSING)


def test_list_by_status(store):
    pending = store.create({})
    processing = store.create({})
    store.set_status(processing, TaskStatus.PROCESSING)

    assert [t.id for t in store.list_by_status(TaskStatus.PENDING)] == [pending]
    assert [t.id for t in store.list_by_status(TaskStatus.PROCESSING)] == [processing]
    assert len(store.list_all()) == 2


def test_returned_tasks_are_copies(store):
    task_id = store.create({"a": 1})

    store.get(task_id).data["a"] = 2

    assert store.get(task_id).data == {"a": 1}


def test_file_mirrors_every_mutation(store):
    task_id = store.create({"assetId": "1/2"})
    store.set_status(task_id, TaskStatus.PROCESSING)

    with open(store.file_path, encoding="utf-8") as f:
        raw = json.load(f)

    assert raw[task_id]["status"] == "processing"
    assert set(raw[task_id]) == {"id", "status", "createdAt", "updatedAt", "data"}
    assert not os.path.exists(store.file_path + ".tmp")


def test_reload_keeps_tasks_and_id_order(store):
    task_id = store.create({"assetId": "1/2"})
    store.set_status(task_id, TaskStatus.PROCESSING)

    reloaded = JsonTaskStore(store.file_path)

    assert reloaded.get(task_id).status == TaskStatus.PROCESSING
    assert int(reloaded.create({})) > int(task_id)


def test_corrupt_file_starts_empty(tmp_path):
    path = tmp_path / "tasks.json"
    path.write_text("{not json")

    store = JsonTaskStore(str(path))

    assert store.list_all() == []
    task_id = store.create({})
    assert json.loads(path.read_text())[task_id]["status"] == "pending"


def test_flush_failure_raises_with_task_id(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    store = JsonTaskStore(str(blocker / "tasks.json"))

    with pytest.raises(TaskStoreError) as excinfo:
        store.create({})

    assert excinfo.value.task_id is not None
    assert store.get(excinfo.value.task_id).status == TaskStatus.PENDING


def test_task_round_trip_through_dict():
    task = ConversionTask(id="1", status=TaskStatus.COMPLETED, data={"x": 1}, error=None)

    assert ConversionTask.from_dict(task.to_dict()) == task
    assert TaskStatus.COMPLETED.is_terminal
    assert not TaskStatus.PROCESSING.is_terminal
