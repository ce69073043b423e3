"""Step-at-a-time execution engine for the resumable animation job."""
from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional, Protocol

from assets_store import AssetLocator, ClipArtifact, InputMissingError, SceneInput
from config import (
    ANIMATION_ABORT_WAIT_S,
    ANIMATION_FAILURE_POLICY,
    ANIMATION_TICK_MINUTES,
    FAILURE_POLICIES,
    FAILURE_POLICY_HALT,
)
from observability.logger import bind_job, clear_job, get_logger, log_item
from observability.metrics import get_registry

from .models import ItemOutcome, JobState, JobStatus, summarize_state
from .scheduler import ContinuationScheduler
from .store import JobStateCorruptError, JobStateStore, MemoryJobStateStore, PersistenceError

LOGGER = get_logger("animation.jobs.runner")
ABORT_WAIT_S = ANIMATION_ABORT_WAIT_S
REGISTRY = get_registry()
CURSOR_GAUGE = REGISTRY.gauge("animation.cursor")
GENERATE_SECONDS = REGISTRY.summary("animation.generate_seconds")
JOBS_FINISHED = REGISTRY.counter("animation.jobs_finished")
OUTCOME_COUNTERS = {
    ItemOutcome.GENERATED: REGISTRY.counter("animation.items_generated"),
    ItemOutcome.ALREADY_DONE: REGISTRY.counter("animation.items_already_done"),
    ItemOutcome.SKIPPED_MISSING: REGISTRY.counter("animation.items_skipped"),
    ItemOutcome.FAILED: REGISTRY.counter("animation.items_failed"),
}


class ConflictError(RuntimeError):
    """Another job already owns the single job slot."""

    def __init__(self, active: JobState) -> None:
        super().__init__(f"job already active for {active.subject_id}/{active.variant}")
        self.active = active


class StepInProgressError(RuntimeError):
    """The step lock stayed busy longer than the caller was willing to wait."""


class TaskClient(Protocol):
    def generate(self, scene: SceneInput, prompt_hint: Optional[str] = None) -> ClipArtifact:
        ...


class StepProcessor:
    """Processes exactly one scene per call and checkpoints after each one."""

    def __init__(
        self,
        store: JobStateStore | MemoryJobStateStore,
        locator: AssetLocator,
        client: TaskClient,
        scheduler: Optional[ContinuationScheduler] = None,
        *,
        interval_minutes: float = ANIMATION_TICK_MINUTES,
        failure_policy: str = ANIMATION_FAILURE_POLICY,
    ) -> None:
        if failure_policy not in FAILURE_POLICIES:
            raise ValueError(f"unknown failure policy {failure_policy!r}")
        self._store = store
        self._locator = locator
        self._client = client
        self._scheduler = scheduler or ContinuationScheduler()
        self._scheduler.bind(self.run_next)
        self._interval_minutes = interval_minutes
        self._failure_policy = failure_policy
        self._step_lock = threading.Lock()

    @property
    def scheduler(self) -> ContinuationScheduler:
        return self._scheduler

    def start(self, subject_id: str, variant: str) -> Dict[str, Any]:
        subject_id = str(subject_id or "").strip()
        variant = str(variant or "").strip()
        if not subject_id or not variant:
            raise ValueError("subject_id and variant are required")

        with self._step_lock:
            active = self._store.get()
            if active is not None:
                LOGGER.warning(
                    "job_start_conflict",
                    extra={"active": f"{active.subject_id}/{active.variant}", "cursor": active.cursor},
                )
                raise ConflictError(active)

            total = int(self._locator.count_inputs(subject_id, variant))
            state = JobState(
                subject_id=subject_id,
                variant=variant,
                total_items=max(0, total),
                failure_policy=self._failure_policy,
            )
            self._store.save(state)
            LOGGER.info(
                "job_started",
                extra={"subject_id": subject_id, "variant": variant, "total_items": state.total_items},
            )
            try:
                state = self._step(state)
            except PersistenceError as exc:
                # The job is already persisted; a later tick has to be able to pick it up.
                if exc.recoverable:
                    self._scheduler.install(self._interval_minutes)
                raise

        if state.status == JobStatus.RUNNING and state.total_items > 1:
            self._scheduler.install(self._interval_minutes)
        return summarize_state(state, scheduler_installed=self._scheduler.is_installed())

    def run_next(self) -> Optional[Dict[str, Any]]:
        if not self._step_lock.acquire(blocking=False):
            LOGGER.info("tick_skipped_busy")
            return None
        try:
            try:
                state = self._store.get()
            except PersistenceError as exc:
                self._handle_job_level_failure(exc)
                raise
            if state is None:
                self._scheduler.remove()
                return None
            state = self._step(state)
        finally:
            self._step_lock.release()
        return summarize_state(state, scheduler_installed=self._scheduler.is_installed())

    def status(self) -> Dict[str, Any]:
        installed = self._scheduler.is_installed()
        try:
            state = self._store.get()
        except PersistenceError as exc:
            snapshot = summarize_state(None, scheduler_installed=installed)
            snapshot.update(status="error", last_error=str(exc), message="Checkpoint unavailable")
            return snapshot
        return summarize_state(state, scheduler_installed=installed)

    def abort(self, *, wait_s: Optional[float] = None) -> bool:
        """Drop the active job; raises ``StepInProgressError`` if a step holds the lock past ``wait_s``."""

        if not self._step_lock.acquire(timeout=ABORT_WAIT_S if wait_s is None else wait_s):
            raise StepInProgressError("a step is in progress; retry the abort once it finishes")
        try:
            self._scheduler.remove()
            try:
                state = self._store.get()
                present = state is not None
            except JobStateCorruptError:
                state, present = None, True
            self._store.clear()
        finally:
            self._step_lock.release()
        if present:
            LOGGER.warning(
                "job_aborted",
                extra={
                    "subject_id": state.subject_id if state else None,
                    "variant": state.variant if state else None,
                    "cursor": state.cursor if state else None,
                },
            )
        return present

    def resume_if_active(self) -> bool:
        """Re-install the timer for a job left running by a previous process."""

        state = self._store.get()
        if state is None or state.status != JobStatus.RUNNING:
            return False
        self._scheduler.install(self._interval_minutes)
        LOGGER.info(
            "job_resumed",
            extra={"subject_id": state.subject_id, "variant": state.variant, "cursor": state.cursor},
        )
        return True

    def _step(self, state: JobState) -> JobState:
        bind_job(state.subject_id, state.variant)
        try:
            if state.status == JobStatus.ERROR:
                self._scheduler.remove()
                return state
            if state.status == JobStatus.DONE or state.exhausted:
                return self._finish(state)

            index = state.cursor
            outcome = self._process_item(state, index)
            if outcome == ItemOutcome.FAILED and state.failure_policy == FAILURE_POLICY_HALT:
                state.mark_error(state.last_error or f"scene {index} failed")
                self._save(state)
                self._scheduler.remove()
                LOGGER.error("job_halted", extra={"item_index": index, "error": state.last_error})
                return state

            state.advance()
            CURSOR_GAUGE.set(state.cursor)
            self._save(state)
            if state.exhausted:
                return self._finish(state)
            return state
        finally:
            clear_job()

    def _process_item(self, state: JobState, index: int) -> ItemOutcome:
        subject_id, variant, total = state.subject_id, state.variant, state.total_items
        try:
            scene = self._locator.get_input(subject_id, variant, index)
        except InputMissingError as exc:
            LOGGER.info("scene_input_missing", extra={"item_index": index, "error": str(exc)})
            scene = None
        if scene is None:
            state.mark_skipped(index)
            return self._record(ItemOutcome.SKIPPED_MISSING, index, total)

        if self._locator.output_exists(subject_id, variant, index):
            state.mark_completed(index)
            return self._record(ItemOutcome.ALREADY_DONE, index, total)

        try:
            with GENERATE_SECONDS.time():
                artifact = self._client.generate(scene, scene.prompt)
            stored_at = self._locator.store(subject_id, variant, index, artifact)
        except Exception as exc:  # noqa: BLE001
            reason = f"scene {index}: {exc}"
            state.mark_failed(index, reason)
            return self._record(
                ItemOutcome.FAILED,
                index,
                total,
                level=logging.WARNING,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
        state.mark_completed(index)
        return self._record(ItemOutcome.GENERATED, index, total, path=stored_at, task_id=artifact.task_id)

    def _record(self, outcome: ItemOutcome, index: int, total: int, *, level: int = logging.INFO, **details: Any) -> ItemOutcome:
        OUTCOME_COUNTERS[outcome].inc()
        log_item(LOGGER, index=index, total=total, outcome=outcome.value, level=level, **details)
        return outcome

    def _finish(self, state: JobState) -> JobState:
        state.mark_done()
        try:
            self._store.clear()
        except PersistenceError as exc:
            self._handle_job_level_failure(exc)
            raise
        self._scheduler.remove()
        JOBS_FINISHED.inc()
        LOGGER.info(
            "job_done",
            extra={
                "total_items": state.total_items,
                "completed": len(state.completed_items),
                "skipped": len(state.skipped_items),
                "failed": len(state.failed_items),
            },
        )
        return state

    def _save(self, state: JobState) -> None:
        try:
            self._store.save(state)
        except PersistenceError as exc:
            self._handle_job_level_failure(exc)
            raise

    def _handle_job_level_failure(self, exc: PersistenceError) -> None:
        if getattr(exc, "recoverable", True):
            LOGGER.error("job_step_aborted", extra={"error": str(exc), "retry": "next_tick"})
            return
        LOGGER.error("job_unrecoverable", extra={"error": str(exc)})
        self._scheduler.remove()


__all__ = ["ConflictError", "StepInProgressError", "StepProcessor", "TaskClient"]
