"""In-process metrics with Prometheus text export."""

from __future__ import annotations

import threading
import time
from bisect import bisect_left
from collections import defaultdict
from itertools import accumulate
from typing import Any


DEFAULT_BUCKETS_MS = [1, 5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000]

LabelKey = tuple[tuple[str, str], ...]


def _label_key(labels: dict[str, str]) -> LabelKey:
    return tuple(sorted((k, str(v)) for k, v in labels.items()))


def _format_labels(label_key: LabelKey, extra: dict[str, str] | None = None) -> str:
    pairs = list(label_key) + list((extra or {}).items())
    if not pairs:
        return ""
    return "{" + ",".join(f'{k}="{v}"' for k, v in pairs) + "}"


class _HistogramSeries:
    """Bucket counts, count and sum for one label set."""

    __slots__ = ("bucket_counts", "count", "total")

    def __init__(self, size: int) -> None:
        self.bucket_counts = [0] * size
        self.count = 0
        self.total = 0.0

    def observe(self, bounds: list[float], value: float) -> None:
        index = bisect_left(bounds, value)
        if index < len(bounds):
            self.bucket_counts[index] += 1
        self.count += 1
        self.total += value

    def cumulative(self) -> list[int]:
        return list(accumulate(self.bucket_counts))


class MetricsCollector:
    """
    Counters, gauges and histograms for the gateway.

    Example:
        ```python
        metrics = MetricsCollector()

        metrics.counter("verifications_total", labels={"outcome": "valid"}).inc()
        metrics.gauge("challenges_pending").set(12)
        metrics.histogram("verification_duration_ms").observe(4.2)

        text = metrics.export_prometheus()
        ```
    """

    def __init__(self, namespace: str = "trust_gateway") -> None:
        self.namespace = namespace
        self._counters: dict[str, dict[LabelKey, float]] = defaultdict(lambda: defaultdict(float))
        self._gauges: dict[str, dict[LabelKey, float]] = defaultdict(dict)
        self._histograms: dict[str, dict[LabelKey, _HistogramSeries]] = defaultdict(dict)
        self._buckets: dict[str, list[float]] = {}
        self._descriptions: dict[str, str] = {}

        self._lock = threading.Lock()
        self._start_time = time.time()

    def _name(self, name: str) -> str:
        return f"{self.namespace}_{name}" if self.namespace else name

    def counter(
        self,
        name: str,
        labels: dict[str, str] | None = None,
        description: str = "",
    ) -> Counter:
        """Get a handle on a counter metric."""
        full = self._name(name)
        if description:
            self._descriptions.setdefault(full, description)
        return Counter(full, labels or {}, self)

    def gauge(
        self,
        name: str,
        labels: dict[str, str] | None = None,
        description: str = "",
    ) -> Gauge:
        """Get a handle on a gauge metric."""
        full = self._name(name)
        if description:
            self._descriptions.setdefault(full, description)
        return Gauge(full, labels or {}, self)

    def histogram(
        self,
        name: str,
        labels: dict[str, str] | None = None,
        buckets: list[float] | None = None,
        description: str = "",
    ) -> Histogram:
        """Get a handle on a histogram metric."""
        full = self._name(name)
        if description:
            self._descriptions.setdefault(full, description)
        with self._lock:
            self._buckets.setdefault(full, sorted(buckets or DEFAULT_BUCKETS_MS))
        return Histogram(full, labels or {}, self)

    def _inc_counter(self, name: str, labels: dict[str, str], value: float) -> None:
        if value < 0:
            raise ValueError("counters can only increase")
        with self._lock:
            self._counters[name][_label_key(labels)] += value

    def _set_gauge(self, name: str, labels: dict[str, str], value: float) -> None:
        with self._lock:
            self._gauges[name][_label_key(labels)] = value

    def _add_gauge(self, name: str, labels: dict[str, str], delta: float) -> None:
        key = _label_key(labels)
        with self._lock:
            self._gauges[name][key] = self._gauges[name].get(key, 0.0) + delta

    def _observe_histogram(self, name: str, labels: dict[str, str], value: float) -> None:
        key = _label_key(labels)
        with self._lock:
            bounds = self._buckets.setdefault(name, list(DEFAULT_BUCKETS_MS))
            series = self._histograms[name].get(key)
            if series is None:
                series = self._histograms[name][key] = _HistogramSeries(len(bounds))
            series.observe(bounds, value)

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> float:
        """Current value of a counter, 0 if never incremented."""
        with self._lock:
            return self._counters.get(self._name(name), {}).get(_label_key(labels or {}), 0.0)

    def get_gauge(self, name: str, labels: dict[str, str] | None = None) -> float | None:
        with self._lock:
            return self._gauges.get(self._name(name), {}).get(_label_key(labels or {}))

    def export_prometheus(self) -> str:
        """Export metrics in the Prometheus text exposition format."""
        lines: list[str] = []

        with self._lock:
            for name, values in self._counters.items():
                self._header(lines, name, "counter")
                for key, value in values.items():
                    lines.append(f"{name}{_format_labels(key)} {value}")

            for name, values in self._gauges.items():
                self._header(lines, name, "gauge")
                for key, value in values.items():
                    lines.append(f"{name}{_format_labels(key)} {value}")

            for name, values in self._histograms.items():
                self._header(lines, name, "histogram")
                bounds = self._buckets[name]
                for key, series in values.items():
                    for bound, count in zip(bounds, series.cumulative()):
                        lines.append(f"{name}_bucket{_format_labels(key, {'le': str(bound)})} {count}")
                    lines.append(f"{name}_bucket{_format_labels(key, {'le': '+Inf'})} {series.count}")
                    lines.append(f"{name}_count{_format_labels(key)} {series.count}")
                    lines.append(f"{name}_sum{_format_labels(key)} {series.total}")

        return "\n".join(lines) + "\n"

    def _header(self, lines: list[str], name: str, kind: str) -> None:
        if name in self._descriptions:
            lines.append(f"# HELP {name} {self._descriptions[name]}")
        lines.append(f"# TYPE {name} {kind}")

    def get_stats(self) -> dict[str, Any]:
        """Get collector statistics."""
        with self._lock:
            return {
                "counters": len(self._counters),
                "gauges": len(self._gauges),
                "histograms": len(self._histograms),
                "uptime_seconds": time.time() - self._start_time,
            }


class _Metric:
    """Handle bound to one metric name and label set."""

    def __init__(self, name: str, labels: dict[str, str], collector: MetricsCollector) -> None:
        self.name = name
        self.labels = labels
        self._collector = collector


class Counter(_Metric):
    def inc(self, value: float = 1) -> None:
        self._collector._inc_counter(self.name, self.labels, value)


class Gauge(_Metric):
    def set(self, value: float) -> None:
        self._collector._set_gauge(self.name, self.labels, value)

    def inc(self, value: float = 1) -> None:
        self._collector._add_gauge(self.name, self.labels, value)

    def dec(self, value: float = 1) -> None:
        self._collector._add_gauge(self.name, self.labels, -value)


class Histogram(_Metric):
    def observe(self, value: float) -> None:
        self._collector._observe_histogram(self.name, self.labels, value)
