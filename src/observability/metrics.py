from __future__ import annotations

import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Tuple, Any, Optional

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
    """Process-local counters for pricing lookups, cart sweeps and checkouts."""

    def __init__(self, max_events: int = 100) -> None:
        self._lock = threading.Lock()
        self._counters: Dict[MetricKey, float] = defaultdict(float)
        self._gauges: Dict[MetricKey, float] = {}
        self._histograms: Dict[MetricKey, Histogram] = {}
        self._events: list[Dict[str, Any]] = []
        self._max_events = max_events

    def increment(self, name: str, amount: float = 1.0, labels: Optional[Dict[str, str]] = None) -> None:
        with self._lock:
            self._counters[(name, _labels_tuple(labels))] += amount

    def set_gauge(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        with self._lock:
            self._gauges[(name, _labels_tuple(labels))] = value

    def observe(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        with self._lock:
            self._histograms.setdefault((name, _labels_tuple(labels)), Histogram()).observe(value)

    def record_event(self, name: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self._events.append({"name": name, "timestamp": time.time(), "payload": payload})
            if len(self._events) > self._max_events:
                self._events.pop(0)

    def counter_value(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        with self._lock:
            return self._counters.get((name, _labels_tuple(labels)), 0.0)

    def snapshot(self) -> Dict[str, Any]:
        snapshot: Dict[str, Any] = {"counters": {}, "gauges": {}, "histograms": {}}
        with self._lock:
            snapshot["events"] = list(self._events)
            for (name, labels), value in self._counters.items():
                snapshot["counters"].setdefault(name, []).append({"labels": dict(labels), "value": value})
            for (name, labels), value in self._gauges.items():
                snapshot["gauges"].setdefault(name, []).append({"labels": dict(labels), "value": value})
            for (name, labels), histogram in self._histograms.items():
                snapshot["histograms"].setdefault(name, []).append(
                    {"labels": dict(labels), "stats": histogram.snapshot()}
                )
        return snapshot

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
            self._events.clear()


_registry = MetricsRegistry()


def increment_counter(name: str, amount: float = 1.0, labels: Optional[Dict[str, str]] = None) -> None:
    _registry.increment(name, amount, labels)


def set_gauge(name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
    _registry.set_gauge(name, value, labels)


def observe_latency(name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
    _registry.observe(name, value, labels)


def record_event(name: str, payload: Dict[str, Any]) -> None:
    _registry.record_event(name, payload)


def get_counter_value(name: str, labels: Optional[Dict[str, str]] = None) -> float:
    return _registry.counter_value(name, labels)


def get_metrics_snapshot() -> Dict[str, Any]:
    return _registry.snapshot()


def reset_metrics() -> None:
    """Testing helper."""
    _registry.reset()
