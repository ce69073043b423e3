from pathlib import Path

import pytest

import sys

sys.path.append(str(Path(__file__).resolve().parents[1]))

import orchestrate
from jobs import JobStateStore
from services.kling_client import KlingClient


class DummyProcessor:
    def __init__(self, status):
        self._status = status

    def status(self):
        return {"status": self._status, "message": f"job is {self._status}"}


def _client(**overrides):
    params = dict(access_key="ak-test", secret_key="sk-test", max_attempts=3, poll_intervals=(10.0,))
    params.update(overrides)
    return KlingClient(**params)


def test_health_ok_when_everything_is_configured(tmp_path):
    result = orchestrate.gather_health_status(
        assets_dir=tmp_path,
        client=_client(),
        processor=DummyProcessor("running"),
        interval_minutes=5,
    )

    assert result["ok"] is True
    assert result["checks"]["poll_budget"]["ok"] is True
    assert "30s" in result["checks"]["poll_budget"]["message"]


def test_health_flags_missing_assets_and_credentials(tmp_path):
    result = orchestrate.gather_health_status(
        assets_dir=tmp_path / "missing",
        client=_client(access_key="", secret_key=""),
        interval_minutes=5,
    )

    assert result["ok"] is False
    assert result["checks"]["assets_dir"]["ok"] is False
    assert result["checks"]["kling_credentials"]["ok"] is False
    assert "job_state" not in result["checks"]


def test_health_flags_poll_budget_exceeding_tick(tmp_path):
    result = orchestrate.gather_health_status(
        assets_dir=tmp_path,
        client=_client(max_attempts=40, poll_intervals=(10.0,)),
        interval_minutes=5,
    )

    assert result["checks"]["poll_budget"]["ok"] is False
    assert result["ok"] is False


def test_health_flags_job_in_error(tmp_path):
    result = orchestrate.gather_health_status(
        assets_dir=tmp_path,
        client=_client(),
        processor=DummyProcessor("error"),
    )

    assert result["checks"]["job_state"]["ok"] is False


def test_mask_key():
    assert orchestrate._mask_key("") == "****"
    assert orchestrate._mask_key("abc") == "***"
    assert orchestrate._mask_key("AKabcdef12") == "AK***12"


@pytest.mark.parametrize("policy", ["continue", "halt"])
def test_build_processor_uses_file_store(tmp_path, policy):
    processor = orchestrate.build_processor(
        state_path=tmp_path / "job.json",
        assets_dir=tmp_path,
        client=_client(),
        failure_policy=policy,
    )

    assert isinstance(processor._store, JobStateStore)
    assert processor._failure_policy == policy
    assert processor.status()["status"] == "idle"


def test_resume_active_job_swallows_corrupt_checkpoint(tmp_path):
    state_path = tmp_path / "job.json"
    state_path.write_text("{", encoding="utf-8")
    processor = orchestrate.build_processor(state_path=state_path, assets_dir=tmp_path, client=_client())

    assert orchestrate.resume_active_job(processor) is False
    assert processor.scheduler.is_installed() is False


def test_health_masks_the_injected_client_key(tmp_path):
    result = orchestrate.gather_health_status(
        assets_dir=tmp_path,
        client=_client(access_key="ZZinjected77"),
        interval_minutes=5,
    )

    assert "ZZ***77" in result["checks"]["kling_credentials"]["message"]
