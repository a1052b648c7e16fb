from __future__ import annotations

import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional, Tuple

from storefront.config import Config

MetricKey = Tuple[str, Tuple[Tuple[str, str], ...]]


def _labels_tuple(labels: Optional[Dict[str, str]]) -> Tuple[Tuple[str, str], ...]:
    if not labels:
        return ()
    return tuple(sorted((key, str(value)) for key, value in labels.items()))


@dataclass
class Histogram:
    count: int = 0
    total: float = 0.0
    min_value: float = field(default=float("inf"))
    max_value: float = field(default=float("-inf"))

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.min_value = min(self.min_value, value)
        self.max_value = max(self.max_value, value)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "avg": self.total / self.count if self.count else 0.0,
            "min": None if self.count == 0 else self.min_value,
            "max": None if self.count == 0 else self.max_value,
        }


class MetricsRegistry:
    """Process-local counters, histograms and a bounded log of business events."""

    def __init__(self, max_events: int = 100) -> None:
        self._lock = threading.Lock()
        self._counters: Dict[MetricKey, float] = defaultdict(float)
        self._histograms: Dict[MetricKey, Histogram] = {}
        self._events: Deque[Dict[str, Any]] = deque(maxlen=max_events)

    def increment(self, name: str, amount: float = 1.0, labels: Optional[Dict[str, str]] = None) -> None:
        with self._lock:
            self._counters[(name, _labels_tuple(labels))] += amount

    def observe(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        with self._lock:
            key = (name, _labels_tuple(labels))
            self._histograms.setdefault(key, Histogram()).observe(value)

    def event(self, name: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self._events.append({"name": name, "timestamp": time.time(), "payload": payload})

    def counter_value(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        with self._lock:
            return self._counters.get((name, _labels_tuple(labels)), 0.0)

    def snapshot(self) -> Dict[str, Any]:
        snapshot: Dict[str, Any] = {"counters": {}, "histograms": {}}
        with self._lock:
            for (name, labels), value in self._counters.items():
                snapshot["counters"].setdefault(name, []).append(
                    {"labels": dict(labels), "value": value}
                )
            for (name, labels), histogram in self._histograms.items():
                snapshot["histograms"].setdefault(name, []).append(
                    {"labels": dict(labels), "stats": histogram.snapshot()}
                )
            snapshot["events"] = list(self._events)
        return snapshot

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._histograms.clear()
            self._events.clear()


registry = MetricsRegistry(max_events=Config.METRICS_MAX_EVENTS)


def increment_counter(name: str, amount: float = 1.0, labels: Optional[Dict[str, str]] = None) -> None:
    registry.increment(name, amount, labels)


def observe_latency(name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
    registry.observe(name, value, labels)


def record_event(name: str, payload: Dict[str, Any]) -> None:
    registry.event(name, payload)


def get_metrics_snapshot() -> Dict[str, Any]:
    return registry.snapshot()


def reset_metrics() -> None:
    """Testing helper."""
    registry.reset()
