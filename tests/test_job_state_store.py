from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from jobs.models import InvalidJobStateError, JobState, JobStatus, summarize_state  # noqa: E402
from jobs.store import (  # noqa: E402
    JobStateCorruptError,
    JobStateStore,
    MemoryJobStateStore,
    PersistenceError,
)


@pytest.fixture
def state_path(tmp_path) -> Path:
    return tmp_path / "state" / "animation_job.json"


def test_get_returns_none_when_nothing_saved(state_path):
    assert JobStateStore(state_path).get() is None


def test_save_and_get_round_trip(state_path):
    store = JobStateStore(state_path)
    state = JobState(subject_id="moon-rabbit", variant="bn", total_items=4, cursor=3, completed_items=[1, 2])

    store.save(state)
    loaded = store.get()

    assert loaded.subject_id == "moon-rabbit"
    assert loaded.variant == "bn"
    assert loaded.cursor == 3
    assert loaded.total_items == 4
    assert loaded.completed_items == [1, 2]
    assert loaded.status == JobStatus.RUNNING
    assert loaded.started_at.tzinfo is not None
    assert json.loads(state_path.read_text(encoding="utf-8"))["cursor"] == 3


def test_clear_removes_checkpoint(state_path):
    store = JobStateStore(state_path)
    store.save(JobState(subject_id="owl", variant="en", total_items=2))

    store.clear()
    store.clear()

    assert store.get() is None
    assert not state_path.exists()


def test_failed_replace_keeps_previous_checkpoint(state_path, monkeypatch):
    store = JobStateStore(state_path)
    store.save(JobState(subject_id="owl", variant="en", total_items=3, cursor=2))

    def _broken_replace(src, dst):
        raise OSError("read-only file system")

    with monkeypatch.context() as patched:
        patched.setattr(os, "replace", _broken_replace)
        with pytest.raises(PersistenceError):
            store.save(JobState(subject_id="owl", variant="en", total_items=3, cursor=3))

    assert store.get().cursor == 2
    assert [p.name for p in state_path.parent.iterdir()] == [state_path.name]


def test_corrupt_json_raises_unrecoverable_error(state_path):
    state_path.parent.mkdir(parents=True)
    state_path.write_text("{not json", encoding="utf-8")

    with pytest.raises(JobStateCorruptError) as excinfo:
        JobStateStore(state_path).get()

    assert excinfo.value.recoverable is False


def test_invariant_violation_is_reported_as_corrupt(state_path):
    state_path.parent.mkdir(parents=True)
    payload = JobState(subject_id="owl", variant="en", total_items=2).to_dict()
    payload["cursor"] = 7
    state_path.write_text(json.dumps(payload), encoding="utf-8")

    with pytest.raises(JobStateCorruptError):
        JobStateStore(state_path).get()


@pytest.mark.parametrize(
    "payload",
    [
        {"subject_id": "owl", "variant": "en", "total_items": "three"},
        {"subject_id": "owl", "variant": "en", "total_items": 2, "status": "paused"},
        {"subject_id": "", "variant": "en", "total_items": 2},
        ["owl", "en", 2],
    ],
)
def test_schema_violations_are_rejected(payload):
    with pytest.raises(InvalidJobStateError):
        JobState.from_dict(payload)


def test_memory_store_returns_copies():
    store = MemoryJobStateStore()
    state = JobState(subject_id="owl", variant="en", total_items=3)
    store.save(state)

    loaded = store.get()
    loaded.cursor = 3
    loaded.completed_items.append(1)

    again = store.get()
    assert again.cursor == 1
    assert again.completed_items == []


@pytest.mark.parametrize(
    "overrides",
    [
        {"cursor": 0},
        {"cursor": 5},
        {"completed_items": [4]},
        {"status": JobStatus.DONE, "cursor": 2},
        {"failure_policy": "retry"},
    ],
)
def test_validate_rejects_broken_states(overrides):
    state = JobState(subject_id="owl", variant="en", total_items=3)
    for key, value in overrides.items():
        setattr(state, key, value)

    with pytest.raises(InvalidJobStateError):
        state.validate()


def test_marks_are_duplicate_free():
    state = JobState(subject_id="owl", variant="en", total_items=3)
    state.mark_completed(1)
    state.mark_completed(1)
    state.mark_failed(2, "boom")
    state.mark_failed(2, "boom again")

    assert state.completed_items == [1]
    assert state.failed_items == [2]
    assert state.last_error == "boom again"


def test_advance_never_passes_total_plus_one():
    state = JobState(subject_id="owl", variant="en", total_items=1)
    state.advance()
    state.advance()

    assert state.cursor == 2
    assert state.exhausted is True


def test_summarize_idle_and_running():
    idle = summarize_state(None)
    assert idle["status"] == "idle"
    assert idle["cursor"] is None

    state = JobState(subject_id="owl", variant="en", total_items=4, cursor=3, completed_items=[1, 2])
    snapshot = summarize_state(state, scheduler_installed=True)
    assert snapshot["status"] == "running"
    assert snapshot["current_item"] == 3
    assert snapshot["progress"] == 0.5
    assert snapshot["message"] == "Animating scene 3 of 4"
    assert snapshot["scheduler_installed"] is True
    assert set(snapshot) >= {"subject_id", "variant", "cursor", "total_items", "status", "last_error"}
