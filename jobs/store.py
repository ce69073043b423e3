"""Single-slot durable storage for the active job checkpoint."""
from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from typing import Optional

from observability.logger import get_logger

from .models import InvalidJobStateError, JobState

LOGGER = get_logger("animation.jobs.store")


class PersistenceError(RuntimeError):
    """The checkpoint store could not be read or written."""

    recoverable = True


class JobStateCorruptError(PersistenceError):
    """The stored checkpoint exists but cannot be trusted."""

    recoverable = False


class JobStateStore:
    """Keeps the one JobState under a well-known JSON file.

    ``save`` writes to a sibling temp file and renames it over the key, so a
    reader sees either the previous checkpoint or the new one, never a mix.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    def get(self) -> Optional[JobState]:
        with self._lock:
            try:
                raw = self._path.read_text(encoding="utf-8")
            except FileNotFoundError:
                return None
            except OSError as exc:
                raise PersistenceError(f"cannot read {self._path}: {exc}") from exc
            try:
                return JobState.from_dict(json.loads(raw))
            except (json.JSONDecodeError, InvalidJobStateError) as exc:
                LOGGER.error("job_state_corrupt", extra={"path": str(self._path), "error": str(exc)})
                raise JobStateCorruptError(f"corrupt job state in {self._path}: {exc}") from exc

    def save(self, state: JobState) -> None:
        state.validate()
        body = json.dumps(state.to_dict(), ensure_ascii=False, indent=2, sort_keys=True)
        with self._lock:
            tmp_path = self._path.with_name(f".{self._path.name}.tmp.{os.getpid()}")
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with tmp_path.open("w", encoding="utf-8") as handle:
                    handle.write(body)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(tmp_path, self._path)
            except OSError as exc:
                raise PersistenceError(f"cannot write {self._path}: {exc}") from exc
            finally:
                if tmp_path.exists():
                    try:
                        tmp_path.unlink()
                    except OSError:
                        LOGGER.warning("job_state_tmp_cleanup_failed", extra={"path": str(tmp_path)})

    def clear(self) -> None:
        with self._lock:
            try:
                self._path.unlink()
            except FileNotFoundError:
                return
            except OSError as exc:
                raise PersistenceError(f"cannot remove {self._path}: {exc}") from exc


class MemoryJobStateStore:
    """In-process store with the same contract; keeps a serialized copy."""

    def __init__(self) -> None:
        self._payload: Optional[dict] = None
        self._lock = threading.RLock()

    def get(self) -> Optional[JobState]:
        with self._lock:
            if self._payload is None:
                return None
            return JobState.from_dict(json.loads(json.dumps(self._payload)))

    def save(self, state: JobState) -> None:
        state.validate()
        with self._lock:
            self._payload = state.to_dict()

    def clear(self) -> None:
        with self._lock:
            self._payload = None


__all__ = ["JobStateStore", "JobStateCorruptError", "MemoryJobStateStore", "PersistenceError"]
