import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

import run_animation  # noqa: E402
from assets_store import ClipArtifact, FileAssetLocator  # noqa: E402
from jobs import ContinuationScheduler, JobState, JobStateStore, StepProcessor  # noqa: E402


class StubClient:
    def __init__(self):
        self.calls = []

    def generate(self, scene, prompt_hint=None):
        self.calls.append(scene.index)
        return ClipArtifact(url=f"https://cdn.test/{scene.index}.mp4")


class ClipWritingLocator(FileAssetLocator):
    def store(self, subject_id, variant, index, artifact):
        target = self.clip_path(subject_id, variant, index)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(b"clip")
        return target.relative_to(self.base_dir).as_posix()


@pytest.fixture()
def workspace(tmp_path):
    images = tmp_path / "stories" / "moon-rabbit" / "images"
    images.mkdir(parents=True)
    for index in (1, 2, 3):
        (images / f"scene_{index}.png").write_bytes(b"img")
    return tmp_path


def _processor(workspace, client):
    return StepProcessor(
        JobStateStore(workspace / "state" / "job.json"),
        ClipWritingLocator(workspace / "stories"),
        client,
        ContinuationScheduler(),
        interval_minutes=5,
    )


def test_start_then_cron_ticks_finish_the_job(workspace, capsys):
    client = StubClient()

    assert run_animation.main(["start", "moon-rabbit", "en"], processor=_processor(workspace, client)) == 0
    assert '"cursor": 2' in capsys.readouterr().out

    # Every cron tick is a brand new process.
    for _ in range(3):
        fresh = _processor(workspace, client)
        assert run_animation.main(["tick"], processor=fresh) == 0
        assert fresh.scheduler.is_installed() is False

    assert client.calls == [1, 2, 3]
    assert not (workspace / "state" / "job.json").exists()
    assert (workspace / "stories" / "moon-rabbit" / "en" / "clips" / "scene_3.mp4").exists()


def test_start_without_follow_leaves_no_timer(workspace):
    processor = _processor(workspace, StubClient())

    run_animation.main(["start", "moon-rabbit", "en"], processor=processor)

    assert processor.scheduler.is_installed() is False


def test_start_conflict_exit_code(workspace, capsys):
    store = JobStateStore(workspace / "state" / "job.json")
    store.save(JobState(subject_id="owl", variant="bn", total_items=2))

    code = run_animation.main(["start", "moon-rabbit", "en"], processor=_processor(workspace, StubClient()))

    assert code == 2
    assert "owl/bn" in capsys.readouterr().out


def test_start_missing_story_exit_code(workspace):
    code = run_animation.main(["start", "ghost", "en"], processor=_processor(workspace, StubClient()))

    assert code == 1


def test_corrupt_checkpoint_exit_code(workspace):
    state_path = workspace / "state" / "job.json"
    state_path.parent.mkdir(parents=True)
    state_path.write_text("not json", encoding="utf-8")

    assert run_animation.main(["tick"], processor=_processor(workspace, StubClient())) == 3


def test_status_and_abort(workspace, capsys):
    processor = _processor(workspace, StubClient())
    run_animation.main(["start", "moon-rabbit", "en"], processor=processor)
    capsys.readouterr()

    assert run_animation.main(["status"], processor=processor) == 0
    assert "Animating scene 2 of 3" in capsys.readouterr().out

    assert run_animation.main(["abort"], processor=processor) == 0
    assert '"aborted": true' in capsys.readouterr().out
    assert processor.status()["status"] == "idle"


@pytest.mark.parametrize("subject", ["a/b", ".."])
def test_start_rejects_unsafe_story_name(workspace, capsys, subject):
    code = run_animation.main(["start", subject, "en"], processor=_processor(workspace, StubClient()))

    assert code == 1
    assert "invalid subject_id" in capsys.readouterr().out
    assert not (workspace / "state" / "job.json").exists()


def test_abort_while_step_running_exit_code(workspace, monkeypatch):
    processor = _processor(workspace, StubClient())
    monkeypatch.setattr("jobs.runner.ABORT_WAIT_S", 0.01)

    processor._step_lock.acquire()
    try:
        assert run_animation.main(["abort"], processor=processor) == 2
    finally:
        processor._step_lock.release()
