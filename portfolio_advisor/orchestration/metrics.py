"""Lightweight metrics registry for plan execution."""

from __future__ import annotations

import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, MutableMapping, Optional, Tuple

LabelKey = Tuple[str, Tuple[Tuple[str, str], ...]]


@dataclass
class HistogramSummary:
    """Running count, sum and extremes of one labelled series."""

    count: int = 0
    total: float = 0.0
    minimum: Optional[float] = None
    maximum: Optional[float] = None

    def add(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.minimum = value if self.minimum is None else min(self.minimum, value)
        self.maximum = value if self.maximum is None else max(self.maximum, value)

    @property
    def mean(self) -> float:
        return self.total / self.count if self.count else 0.0


@dataclass
class MetricRegistry:
    """A minimal Prometheus-style collector used for in-process accounting.

    Observations are folded into a :class:`HistogramSummary` per series, so
    memory stays constant however long the process runs.  Concurrent steps
    of one plan may record into the same registry, so updates are serialised
    with a lock.
    """

    counters: MutableMapping[LabelKey, float] = field(default_factory=lambda: defaultdict(float))
    histograms: MutableMapping[LabelKey, HistogramSummary] = field(
        default_factory=lambda: defaultdict(HistogramSummary)
    )
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def inc(self, name: str, *, labels: Mapping[str, str] | None = None, amount: float = 1.0) -> None:
        key = self._key(name, labels)
        with self._lock:
            self.counters[key] += amount

    def observe(self, name: str, value: float, *, labels: Mapping[str, str] | None = None) -> None:
        key = self._key(name, labels)
        with self._lock:
            self.histograms[key].add(value)

    def counter(self, name: str, *, labels: Mapping[str, str] | None = None) -> float:
        with self._lock:
            return self.counters.get(self._key(name, labels), 0.0)

    def histogram(self, name: str, *, labels: Mapping[str, str] | None = None) -> HistogramSummary:
        with self._lock:
            summary = self.histograms.get(self._key(name, labels))
            if summary is None:
                return HistogramSummary()
            return HistogramSummary(summary.count, summary.total, summary.minimum, summary.maximum)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "counters": [
                    {"name": name, "labels": dict(labels), "value": value}
                    for (name, labels), value in self.counters.items()
                ],
                "histograms": [
                    {
                        "name": name,
                        "labels": dict(labels),
                        "count": summary.count,
                        "sum": summary.total,
                        "min": summary.minimum,
                        "max": summary.maximum,
                    }
                    for (name, labels), summary in self.histograms.items()
                ],
            }

    def _key(self, name: str, labels: Mapping[str, str] | None) -> LabelKey:
        sorted_labels = tuple(sorted((labels or {}).items()))
        return name, sorted_labels


class Timer:
    """Context manager to record elapsed time into a histogram."""

    def __init__(self, registry: MetricRegistry, name: str, *, labels: Mapping[str, str] | None = None) -> None:
        self._registry = registry
        self._name = name
        self._labels = labels
        self._start: float | None = None
        self.elapsed: float | None = None

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._start is None:
            return
        self.elapsed = time.perf_counter() - self._start
        self._registry.observe(self._name, self.elapsed, labels=self._labels)
