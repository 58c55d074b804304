"""
Metrics collection for CryptoEscrow.

Thread-safe counters, gauges and histograms with optional labels, exported
either as a JSON-friendly dict or in Prometheus text format.

Metrics recorded by the core:
    escrow_operations_total{operation,outcome}   counter
    escrow_operation_duration_ms{operation}      histogram
    disputes_raised_total                        counter
    arbitrator_selection_failures_total          counter
    escrows_by_status{status}                    gauge (refreshed on scrape)
    http_requests_total{method,endpoint,status}  counter
    http_request_duration_ms{method,endpoint}    histogram
"""

import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

DEFAULT_NAMESPACE = "escrow"

# Latency buckets in milliseconds
DEFAULT_BUCKETS = (1, 5, 10, 25, 50, 100, 250, 500, 1000, 2500)


@dataclass
class Histogram:
    """Cumulative histogram of observed values."""

    bounds: tuple[float, ...] = DEFAULT_BUCKETS
    counts: list[int] = field(default_factory=list)
    sum: float = 0.0
    count: int = 0

    def __post_init__(self):
        if not self.counts:
            self.counts = [0] * (len(self.bounds) + 1)  # last slot is +Inf

    def observe(self, value: float) -> None:
        self.sum += value
        self.count += 1
        for i, bound in enumerate(self.bounds):
            if value <= bound:
                self.counts[i] += 1
        self.counts[-1] += 1

    def buckets(self) -> list[tuple[str, int]]:
        labels = [str(b) for b in self.bounds] + ["+Inf"]
        return list(zip(labels, self.counts, strict=True))


class MetricsCollector:
    """Thread-safe metrics registry."""

    def __init__(self, namespace: str = DEFAULT_NAMESPACE):
        self.namespace = namespace
        self._lock = threading.RLock()
        self._counters: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._gauges: dict[str, dict[str, float]] = defaultdict(lambda: defaultdict(float))
        self._histograms: dict[str, dict[str, Histogram]] = defaultdict(dict)
        self._start_time = time.time()

    @staticmethod
    def _labels_key(labels: dict[str, str] | None) -> str:
        if not labels:
            return ""
        return ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))

    # Counters

    def increment(self, name: str, value: int = 1, labels: dict[str, str] | None = None) -> None:
        with self._lock:
            self._counters[name][self._labels_key(labels)] += value

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> int:
        with self._lock:
            return self._counters[name].get(self._labels_key(labels), 0)

    # Gauges

    def set_gauge(self, name: str, value: float, labels: dict[str, str] | None = None) -> None:
        with self._lock:
            self._gauges[name][self._labels_key(labels)] = value

    def get_gauge(self, name: str, labels: dict[str, str] | None = None) -> float:
        with self._lock:
            return self._gauges[name].get(self._labels_key(labels), 0.0)

    # Histograms

    def timing(self, name: str, value_ms: float, labels: dict[str, str] | None = None) -> None:
        """Record a timing observation in milliseconds."""
        with self._lock:
            key = self._labels_key(labels)
            hist = self._histograms[name].get(key)
            if hist is None:
                hist = self._histograms[name][key] = Histogram()
            hist.observe(value_ms)

    @contextmanager
    def timer(self, name: str, labels: dict[str, str] | None = None):
        start = time.perf_counter()
        try:
            yield
        finally:
            self.timing(name, (time.perf_counter() - start) * 1000, labels)

    # Export

    def get_all(self) -> dict[str, Any]:
        """All metrics as a dictionary; unlabeled series collapse to a scalar."""

        def collapse(values: dict[str, Any]) -> Any:
            if len(values) == 1 and "" in values:
                return values[""]
            return dict(values)

        with self._lock:
            return {
                "uptime_seconds": time.time() - self._start_time,
                "counters": {name: collapse(v) for name, v in self._counters.items()},
                "gauges": {name: collapse(v) for name, v in self._gauges.items()},
                "histograms": {
                    name: {
                        (key or "_total"): {
                            "count": hist.count,
                            "sum": hist.sum,
                            "avg": hist.sum / hist.count if hist.count else 0,
                            "buckets": dict(hist.buckets()),
                        }
                        for key, hist in series.items()
                    }
                    for name, series in self._histograms.items()
                },
            }

    def to_prometheus(self) -> str:
        """Prometheus text exposition format."""
        prefix = f"{self.namespace}_" if self.namespace else ""
        lines = [
            f"# HELP {prefix}uptime_seconds Time since application start",
            f"# TYPE {prefix}uptime_seconds gauge",
            f"{prefix}uptime_seconds {time.time() - self._start_time:.2f}",
            "",
        ]

        def series(metric: str, key: str, value: Any, extra: str = "") -> str:
            labels = ",".join(part for part in (key, extra) if part)
            return f"{metric}{{{labels}}} {value}" if labels else f"{metric} {value}"

        with self._lock:
            for kind, store in (("counter", self._counters), ("gauge", self._gauges)):
                for name, values in store.items():
                    metric = prefix + name
                    lines.append(f"# TYPE {metric} {kind}")
                    lines.extend(series(metric, key, value) for key, value in values.items())
                    lines.append("")

            for name, histograms in self._histograms.items():
                metric = prefix + name
                lines.append(f"# TYPE {metric} histogram")
                for key, hist in histograms.items():
                    for le, count in hist.buckets():
                        lines.append(series(f"{metric}_bucket", key, count, f'le="{le}"'))
                    lines.append(series(f"{metric}_sum", key, f"{hist.sum:.2f}"))
                    lines.append(series(f"{metric}_count", key, hist.count))
                lines.append("")

        return "\n".join(lines)

    def reset(self) -> None:
        """Drop every series (used between tests)."""
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
            self._start_time = time.time()


# Global metrics instance
metrics = MetricsCollector()
