"""Thread-safe in-process metrics registry with Prometheus text export."""

from __future__ import annotations

import math
import re
import threading
from collections import defaultdict, deque
from statistics import mean
from typing import Deque, Dict, Iterable, MutableMapping

_METRIC_SANITIZE_RE = re.compile(r"[^a-zA-Z0-9_:]")


def _sanitize_metric_name(name: str) -> str:
    """Return a Prometheus-safe metric name."""

    sanitized = _METRIC_SANITIZE_RE.sub("_", name)
    if not sanitized:
        return "_"
    if sanitized[0].isdigit():
        sanitized = f"_{sanitized}"
    return sanitized


class MetricsRegistry:
    """Counters, gauges, and bounded histograms for the trading loop."""

    def __init__(self, *, max_hist_samples: int = 1024, prefix: str = "memebot") -> None:
        self._lock = threading.RLock()
        self._prefix = prefix
        self._counters: MutableMapping[str, float] = defaultdict(float)
        self._gauges: MutableMapping[str, float] = {}
        self._histograms: MutableMapping[str, Deque[float]] = defaultdict(
            lambda: deque(maxlen=max_hist_samples)
        )

    def increment(self, name: str, amount: float = 1.0) -> None:
        with self._lock:
            self._counters[name] += amount

    def get(self, name: str) -> float:
        with self._lock:
            return self._counters.get(name, 0.0)

    def gauge(self, name: str, value: float) -> None:
        with self._lock:
            self._gauges[name] = float(value)

    def get_gauge(self, name: str) -> float:
        with self._lock:
            return self._gauges.get(name, 0.0)

    def observe(self, name: str, value: float) -> None:
        with self._lock:
            self._histograms[name].append(float(value))

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            counters = dict(self._counters)
            gauges = dict(self._gauges)
            histograms = {key: self._histogram_stats(values) for key, values in self._histograms.items()}
        return {"counters": counters, "gauges": gauges, "histograms": histograms}

    def export_prometheus(self) -> str:
        snap = self.snapshot()
        lines = []
        for name, value in snap["counters"].items():
            sanitized = self._qualified(name)
            lines.append(f"# TYPE {sanitized} counter")
            lines.append(f"{sanitized} {value}")
        for name, value in snap["gauges"].items():
            sanitized = self._qualified(name)
            lines.append(f"# TYPE {sanitized} gauge")
            lines.append(f"{sanitized} {value}")
        for name, stats in snap["histograms"].items():
            if not stats:
                continue
            base = self._qualified(name)
            lines.append(f"# TYPE {base} summary")
            for quantile, key in (("0.5", "p50"), ("0.9", "p90"), ("0.99", "p99")):
                lines.append(f"{base}{{quantile=\"{quantile}\"}} {stats[key]}")
            lines.append(f"{base}_count {stats['count']}")
            lines.append(f"{base}_avg {stats['avg']}")
        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()

    def _qualified(self, name: str) -> str:
        return _sanitize_metric_name(f"{self._prefix}_{name}" if self._prefix else name)

    def _histogram_stats(self, values: Iterable[float]) -> Dict[str, float]:
        data = sorted(values)
        if not data:
            return {}
        return {
            "count": float(len(data)),
            "avg": mean(data),
            "p50": self._percentile(data, 0.5),
            "p90": self._percentile(data, 0.9),
            "p99": self._percentile(data, 0.99),
        }

    @staticmethod
    def _percentile(data: list, percentile: float) -> float:
        if not data:
            return 0.0
        index = max(int(math.ceil(percentile * len(data))) - 1, 0)
        return float(data[min(index, len(data) - 1)])


METRICS = MetricsRegistry()


__all__ = ["METRICS", "MetricsRegistry"]
