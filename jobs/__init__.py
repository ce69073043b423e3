"""Resumable, checkpointed scene-animation job primitives."""

from .models import ItemOutcome, JobState, JobStatus, summarize_state  # noqa: F401
from .store import JobStateCorruptError, JobStateStore, MemoryJobStateStore, PersistenceError  # noqa: F401
from .scheduler import ContinuationScheduler  # noqa: F401
from .runner import ConflictError, StepInProgressError, StepProcessor  # noqa: F401

__all__ = [
    "ConflictError",
    "ContinuationScheduler",
    "ItemOutcome",
    "JobState",
    "JobStateCorruptError",
    "JobStateStore",
    "JobStatus",
    "MemoryJobStateStore",
    "PersistenceError",
    "StepInProgressError",
    "StepProcessor",
    "summarize_state",
]
