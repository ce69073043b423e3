"""In-process counters, gauges and duration summaries for the animation worker."""
from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Dict, Iterator, Optional, Union


class Counter:
    """Monotonically increasing counter."""

    kind = "counter"

    def __init__(self, name: str) -> None:
        self.name = name
        self._value = 0.0
        self._lock = threading.Lock()

    def inc(self, amount: float = 1.0) -> None:
        if amount < 0:
            raise ValueError("counter increments must be non-negative")
        with self._lock:
            self._value += amount

    def snapshot(self) -> float:
        with self._lock:
            return self._value


class Gauge:
    """Last-value gauge."""

    kind = "gauge"

    def __init__(self, name: str) -> None:
        self.name = name
        self._value = 0.0
        self._lock = threading.Lock()

    def set(self, value: float) -> None:
        with self._lock:
            self._value = float(value)

    def snapshot(self) -> float:
        with self._lock:
            return self._value


class Summary:
    """Count, total and max of observed durations in seconds."""

    kind = "summary"

    def __init__(self, name: str) -> None:
        self.name = name
        self._count = 0
        self._total = 0.0
        self._max = 0.0
        self._lock = threading.Lock()

    def observe(self, value: float) -> None:
        with self._lock:
            self._count += 1
            self._total += value
            self._max = max(self._max, value)

    @contextmanager
    def time(self) -> Iterator[None]:
        started = time.perf_counter()
        try:
            yield
        finally:
            self.observe(time.perf_counter() - started)

    def snapshot(self) -> Dict[str, float]:
        with self._lock:
            mean = self._total / self._count if self._count else 0.0
            return {
                "count": float(self._count),
                "total": round(self._total, 3),
                "mean": round(mean, 3),
                "max": round(self._max, 3),
            }


Metric = Union[Counter, Gauge, Summary]


class MetricsRegistry:
    """Registry keyed by metric name; a name is bound to one metric kind."""

    def __init__(self) -> None:
        self._metrics: Dict[str, Metric] = {}
        self._lock = threading.Lock()

    def _get_or_create(self, name: str, factory: type) -> Metric:
        with self._lock:
            metric = self._metrics.get(name)
            if metric is None:
                metric = factory(name)
                self._metrics[name] = metric
            elif not isinstance(metric, factory):
                raise TypeError(f"metric {name!r} is already registered as a {metric.kind}")
            return metric

    def counter(self, name: str) -> Counter:
        return self._get_or_create(name, Counter)  # type: ignore[return-value]

    def gauge(self, name: str) -> Gauge:
        return self._get_or_create(name, Gauge)  # type: ignore[return-value]

    def summary(self, name: str) -> Summary:
        return self._get_or_create(name, Summary)  # type: ignore[return-value]

    def get(self, name: str) -> Optional[Metric]:
        with self._lock:
            return self._metrics.get(name)

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            metrics = list(self._metrics.values())
        return {metric.name: metric.snapshot() for metric in metrics}


_DEFAULT_REGISTRY = MetricsRegistry()


def get_registry() -> MetricsRegistry:
    return _DEFAULT_REGISTRY


__all__ = [
    "Counter",
    "Gauge",
    "MetricsRegistry",
    "Summary",
    "get_registry",
]
