from __future__ import annotations
import time
from collections import defaultdict
from contextlib import contextmanager
from threading import Lock
from typing import Dict, Iterator
from dataclasses import dataclass, field
from articlerelay.infra.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class Counter:
    """Simple counter metric"""
    value: int = 0

    def inc(self, amount: int = 1) -> None:
        self.value += amount


@dataclass
class Histogram:
    """Track distribution of values (e.g., flush durations)"""
    values: list[float] = field(default_factory=list)

    def observe(self, value: float) -> None:
        self.values.append(value)

    def get_stats(self) -> dict:
        if not self.values:
            return {"count": 0, "min": 0, "max": 0, "avg": 0, "p95": 0}

        sorted_values = sorted(self.values)
        count = len(sorted_values)
        p95 = sorted_values[min(int(count * 0.95), count - 1)]

        return {
            "count": count,
            "min": sorted_values[0],
            "max": sorted_values[-1],
            "avg": sum(sorted_values) / count,
            "p95": p95,
        }


class MetricsCollector:
    """
    In-process dispatch metrics.

    Counters are keyed by name plus sorted labels, e.g.
    ``role_toggles{state=on}``.
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self._counters: Dict[str, Counter] = defaultdict(Counter)
        self._histograms: Dict[str, Histogram] = defaultdict(Histogram)
        self._lock = Lock()

    def inc_counter(self, name: str, amount: int = 1, labels: dict | None = None) -> None:
        if not self.enabled:
            return
        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key].inc(amount)

    def observe_histogram(self, name: str, value: float, labels: dict | None = None) -> None:
        if not self.enabled:
            return
        key = self._make_key(name, labels)
        with self._lock:
            self._histograms[key].observe(value)

    def counter_value(self, name: str, **labels) -> int:
        """Current value of a single counter (0 if never incremented)."""
        key = self._make_key(name, labels or None)
        with self._lock:
            counter = self._counters.get(key)
            return counter.value if counter else 0

    def get_metrics(self) -> dict:
        """Snapshot of all counters and histogram stats"""
        with self._lock:
            counters = {k: v.value for k, v in self._counters.items()}
            histograms = {k: v.get_stats() for k, v in self._histograms.items()}

        return {
            "counters": counters,
            "histograms": histograms,
        }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._histograms.clear()
        logger.debug("Metrics reset")

    @staticmethod
    def _make_key(name: str, labels: dict | None) -> str:
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"


def _build_collector() -> MetricsCollector:
    from articlerelay.config import settings
    return MetricsCollector(enabled=settings.enable_metrics)


_metrics = _build_collector()


def get_metrics_collector() -> MetricsCollector:
    """Get the process-wide metrics collector"""
    return _metrics


def inc_counter(name: str, amount: int = 1, **labels) -> None:
    _metrics.inc_counter(name, amount, labels or None)


def observe_histogram(name: str, value: float, **labels) -> None:
    _metrics.observe_histogram(name, value, labels or None)


@contextmanager
def timed(name: str, **labels) -> Iterator[None]:
    """Record the wall time of the wrapped block into a histogram."""
    started = time.monotonic()
    try:
        yield
    finally:
        observe_histogram(name, time.monotonic() - started, **labels)
