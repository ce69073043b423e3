"""Wiring of the animation pipeline and its health checks."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

from assets_store import FileAssetLocator
from config import (
    ANIMATION_FAILURE_POLICY,
    ANIMATION_TICK_MINUTES,
    ASSETS_DIR,
    JOB_STATE_PATH,
)
from jobs import ContinuationScheduler, JobStateStore, PersistenceError, StepProcessor
from observability.logger import get_logger
from services.kling_client import KlingClient

LOGGER = get_logger("animation.orchestrate")


def build_processor(
    *,
    state_path: Optional[str | Path] = None,
    assets_dir: Optional[str | Path] = None,
    client: Optional[KlingClient] = None,
    interval_minutes: float = ANIMATION_TICK_MINUTES,
    failure_policy: str = ANIMATION_FAILURE_POLICY,
) -> StepProcessor:
    """Assemble a processor backed by the JSON checkpoint and the story folders."""

    return StepProcessor(
        JobStateStore(state_path or JOB_STATE_PATH),
        FileAssetLocator(assets_dir or ASSETS_DIR),
        client or KlingClient(),
        ContinuationScheduler(),
        interval_minutes=interval_minutes,
        failure_policy=failure_policy,
    )


def gather_health_status(
    *,
    assets_dir: Optional[str | Path] = None,
    client: Optional[KlingClient] = None,
    processor: Optional[StepProcessor] = None,
    interval_minutes: float = ANIMATION_TICK_MINUTES,
) -> Dict[str, Any]:
    checks: Dict[str, Dict[str, object]] = {}

    base_dir = Path(assets_dir or ASSETS_DIR).resolve()
    checks["assets_dir"] = {
        "ok": base_dir.is_dir(),
        "message": f"Story folders: {base_dir}" if base_dir.is_dir() else f"Missing story folder root: {base_dir}",
    }

    kling = client or KlingClient()
    if kling.has_credentials():
        checks["kling_credentials"] = {
            "ok": True,
            "message": f"Access key configured ({_mask_key(kling.access_key)})",
        }
    else:
        checks["kling_credentials"] = {
            "ok": False,
            "message": "KLING_ACCESS_KEY / KLING_SECRET_KEY are not set",
        }

    budget_s = kling.poll_budget_seconds()
    tick_s = interval_minutes * 60.0
    checks["poll_budget"] = {
        "ok": budget_s < tick_s,
        "message": (
            f"{kling.max_attempts} polls, {budget_s:.0f}s worst case per scene; "
            f"tick every {tick_s:.0f}s"
        ),
    }

    if processor is not None:
        snapshot = processor.status()
        checks["job_state"] = {
            "ok": snapshot.get("status") != "error",
            "message": snapshot.get("message"),
        }

    ok = all(check.get("ok") is True for check in checks.values())
    return {"ok": ok, "checks": checks}


def resume_active_job(processor: StepProcessor) -> bool:
    try:
        return processor.resume_if_active()
    except PersistenceError as exc:
        LOGGER.error("job_resume_failed", extra={"error": str(exc)})
        return False


def _mask_key(raw_key: str) -> str:
    key = (raw_key or "").strip()
    if not key:
        return "****"
    if len(key) <= 4:
        return "*" * len(key)
    return f"{key[:2]}***{key[-2:]}"


__all__ = ["build_processor", "gather_health_status", "resume_active_job"]
