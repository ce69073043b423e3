"""Recurring in-process timer that re-enters the step processor."""
from __future__ import annotations

import threading
from typing import Callable, Optional

from observability.logger import get_logger

LOGGER = get_logger("animation.jobs.scheduler")


class ContinuationScheduler:
    """Owns at most one daemon thread calling ``callback`` every interval."""

    def __init__(self, callback: Optional[Callable[[], object]] = None, *, name: str = "animation-tick") -> None:
        self._callback = callback
        self._name = name
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop: Optional[threading.Event] = None
        self._interval_s: Optional[float] = None

    def bind(self, callback: Callable[[], object]) -> None:
        self._callback = callback

    def install(self, interval_minutes: float) -> None:
        if self._callback is None:
            raise RuntimeError("scheduler has no callback bound")
        interval_s = float(interval_minutes) * 60.0
        if interval_s <= 0:
            raise ValueError("interval must be positive")
        self.remove()
        stop = threading.Event()
        thread = threading.Thread(target=self._loop, args=(stop, interval_s), name=self._name, daemon=True)
        with self._lock:
            self._stop = stop
            self._thread = thread
            self._interval_s = interval_s
        thread.start()
        LOGGER.info("continuation_installed", extra={"interval_s": interval_s})

    def remove(self) -> None:
        with self._lock:
            stop, thread = self._stop, self._thread
            self._stop = None
            self._thread = None
            self._interval_s = None
        if stop is None:
            return
        stop.set()
        # remove() may run inside the tick itself, which must not join its own thread.
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5.0)
        LOGGER.info("continuation_removed")

    def is_installed(self) -> bool:
        with self._lock:
            return self._thread is not None

    def interval_seconds(self) -> Optional[float]:
        with self._lock:
            return self._interval_s

    def _loop(self, stop: threading.Event, interval_s: float) -> None:
        while not stop.wait(interval_s):
            callback = self._callback
            if callback is None:
                continue
            try:
                callback()
            except Exception as exc:  # noqa: BLE001
                LOGGER.exception("continuation_tick_failed", extra={"error": str(exc)})


__all__ = ["ContinuationScheduler"]
