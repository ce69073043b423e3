"""Data models describing the resumable scene-animation job."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from jsonschema import Draft7Validator
from jsonschema.exceptions import ValidationError as JSONSchemaValidationError

from config import FAILURE_POLICIES, FAILURE_POLICY_CONTINUE

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

_INDEX_LIST = {"type": "array", "items": {"type": "integer"}}

JOB_STATE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["subject_id", "variant", "total_items"],
    "properties": {
        "subject_id": {"type": "string", "minLength": 1},
        "variant": {"type": "string", "minLength": 1},
        "total_items": {"type": "integer", "minimum": 0},
        "cursor": {"type": "integer", "minimum": 1},
        "completed_items": _INDEX_LIST,
        "skipped_items": _INDEX_LIST,
        "failed_items": _INDEX_LIST,
        "status": {"enum": ["running", "done", "error"]},
        "last_error": {"type": ["string", "null"]},
        "failure_policy": {"enum": list(FAILURE_POLICIES)},
        "started_at": {"type": ["string", "null"]},
        "updated_at": {"type": ["string", "null"]},
    },
}
_JOB_STATE_VALIDATOR = Draft7Validator(JOB_STATE_SCHEMA)


def utcnow() -> datetime:
    """Return a timezone-aware UTC datetime."""

    return datetime.now(timezone.utc)


def _format_ts(value: Optional[datetime]) -> Optional[str]:
    return value.strftime(ISO_FORMAT) if value else None


def _parse_ts(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.strptime(str(value), ISO_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError as exc:
        raise InvalidJobStateError(f"bad timestamp: {value!r}") from exc


class InvalidJobStateError(ValueError):
    """Raised when a serialized job state violates its invariants."""


class JobStatus(str, Enum):
    """Lifecycle states for the animation job."""

    RUNNING = "running"
    DONE = "done"
    ERROR = "error"


class ItemOutcome(str, Enum):
    """What happened to a single scene during a step."""

    GENERATED = "generated"
    ALREADY_DONE = "already_done"
    SKIPPED_MISSING = "skipped_missing"
    FAILED = "failed"


@dataclass
class JobState:
    """Persisted checkpoint of the one active animation job."""

    subject_id: str
    variant: str
    total_items: int
    cursor: int = 1
    completed_items: List[int] = field(default_factory=list)
    skipped_items: List[int] = field(default_factory=list)
    failed_items: List[int] = field(default_factory=list)
    status: JobStatus = JobStatus.RUNNING
    last_error: Optional[str] = None
    failure_policy: str = FAILURE_POLICY_CONTINUE
    started_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def exhausted(self) -> bool:
        return self.cursor > self.total_items

    def advance(self) -> None:
        if self.cursor <= self.total_items:
            self.cursor += 1
        self.updated_at = utcnow()

    def mark_completed(self, index: int) -> None:
        if index not in self.completed_items:
            self.completed_items.append(index)

    def mark_skipped(self, index: int) -> None:
        if index not in self.skipped_items:
            self.skipped_items.append(index)

    def mark_failed(self, index: int, reason: str) -> None:
        if index not in self.failed_items:
            self.failed_items.append(index)
        self.last_error = reason

    def mark_done(self) -> None:
        self.cursor = self.total_items + 1
        self.status = JobStatus.DONE
        self.updated_at = utcnow()

    def mark_error(self, reason: str) -> None:
        self.status = JobStatus.ERROR
        self.last_error = reason
        self.updated_at = utcnow()

    def validate(self) -> None:
        if not self.subject_id or not self.variant:
            raise InvalidJobStateError("subject_id and variant are required")
        if self.total_items < 0:
            raise InvalidJobStateError("total_items must be non-negative")
        if not 1 <= self.cursor <= self.total_items + 1:
            raise InvalidJobStateError(
                f"cursor {self.cursor} outside [1, {self.total_items + 1}]"
            )
        for name in ("completed_items", "skipped_items", "failed_items"):
            outside = [i for i in getattr(self, name) if not 1 <= i <= self.total_items]
            if outside:
                raise InvalidJobStateError(f"{name} out of range: {outside}")
        if self.status == JobStatus.DONE and self.cursor != self.total_items + 1:
            raise InvalidJobStateError("done job must have cursor = total_items + 1")
        if self.failure_policy not in FAILURE_POLICIES:
            raise InvalidJobStateError(f"unknown failure policy {self.failure_policy!r}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject_id": self.subject_id,
            "variant": self.variant,
            "cursor": self.cursor,
            "total_items": self.total_items,
            "completed_items": list(self.completed_items),
            "skipped_items": list(self.skipped_items),
            "failed_items": list(self.failed_items),
            "status": self.status.value,
            "last_error": self.last_error,
            "failure_policy": self.failure_policy,
            "started_at": _format_ts(self.started_at),
            "updated_at": _format_ts(self.updated_at),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "JobState":
        if not isinstance(payload, dict):
            raise InvalidJobStateError("job state must be a JSON object")
        try:
            _JOB_STATE_VALIDATOR.validate(payload)
        except JSONSchemaValidationError as exc:
            raise InvalidJobStateError(f"job state schema violation: {exc.message}") from exc
        try:
            state = cls(
                subject_id=str(payload["subject_id"]),
                variant=str(payload["variant"]),
                total_items=int(payload["total_items"]),
                cursor=int(payload.get("cursor", 1)),
                completed_items=[int(i) for i in payload.get("completed_items") or []],
                skipped_items=[int(i) for i in payload.get("skipped_items") or []],
                failed_items=[int(i) for i in payload.get("failed_items") or []],
                status=JobStatus(payload.get("status", JobStatus.RUNNING.value)),
                last_error=payload.get("last_error"),
                failure_policy=str(payload.get("failure_policy") or FAILURE_POLICY_CONTINUE),
                started_at=_parse_ts(payload.get("started_at")) or utcnow(),
                updated_at=_parse_ts(payload.get("updated_at")) or utcnow(),
            )
        except InvalidJobStateError:
            raise
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidJobStateError(f"malformed job state: {exc}") from exc
        state.validate()
        return state


def summarize_state(state: Optional[JobState], *, scheduler_installed: bool = False) -> Dict[str, Any]:
    """Build the read-only status snapshot shown to operators."""

    if state is None:
        return {
            "subject_id": None,
            "variant": None,
            "cursor": None,
            "total_items": None,
            "current_item": None,
            "status": "idle",
            "last_error": None,
            "progress": 0.0,
            "message": "No animation in progress",
            "scheduler_installed": scheduler_installed,
        }

    processed = max(0, min(state.cursor - 1, state.total_items))
    progress = processed / state.total_items if state.total_items else 1.0
    if state.status == JobStatus.DONE:
        progress = 1.0
        message = "Done"
    elif state.status == JobStatus.ERROR:
        message = state.last_error or "Stopped with an error"
    elif state.exhausted:
        message = "Finishing"
    else:
        message = f"Animating scene {state.cursor} of {state.total_items}"

    return {
        "subject_id": state.subject_id,
        "variant": state.variant,
        "cursor": state.cursor,
        "total_items": state.total_items,
        "current_item": None if state.exhausted else state.cursor,
        "status": state.status.value,
        "last_error": state.last_error,
        "completed": list(state.completed_items),
        "skipped": list(state.skipped_items),
        "failed": list(state.failed_items),
        "failure_policy": state.failure_policy,
        "progress": round(progress, 4),
        "message": message,
        "started_at": _format_ts(state.started_at),
        "updated_at": _format_ts(state.updated_at),
        "scheduler_installed": scheduler_installed,
    }
