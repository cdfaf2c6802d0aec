"""
In-process counters for the user service, exported as Prometheus text.

Only counters are needed: request totals from the HTTP middleware and
operation outcomes from the user-entity service. Export order is sorted so
scrapes (and tests) see a stable body.
"""

from __future__ import annotations

import re
import threading
from typing import Dict, Iterable, List, Optional, Tuple


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\"", "\\\"").replace("\n", "\\n")


class Counter:
    def __init__(self, name: str, label_names: Optional[Iterable[str]] = None, help: str = ""):
        self.name = name
        self.label_names = tuple(label_names or ())
        self.help = help
        self._values: Dict[Tuple[str, ...], float] = {}
        self._lock = threading.Lock()

    def inc(self, labels: Optional[Dict[str, str]] = None, amount: float = 1.0) -> None:
        if amount < 0:
            raise ValueError("counters can only increase")
        key = self._key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + float(amount)

    def value(self, labels: Optional[Dict[str, str]] = None) -> float:
        key = self._key(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def _key(self, labels: Optional[Dict[str, str]]) -> Tuple[str, ...]:
        labels = labels or {}
        unknown = set(labels) - set(self.label_names)
        if unknown:
            raise ValueError(f"unknown labels for {self.name}: {sorted(unknown)}")
        return tuple(str(labels.get(name, "")) for name in self.label_names)

    def export(self) -> List[str]:
        lines = []
        if self.help:
            lines.append(f"# HELP {self.name} {self.help}")
        lines.append(f"# TYPE {self.name} counter")
        with self._lock:
            samples = sorted(self._values.items())
        for label_values, value in samples:
            labels = ""
            if self.label_names:
                labels = "{" + ",".join(
                    f'{name}="{_escape(val)}"' for name, val in zip(self.label_names, label_values)
                ) + "}"
            lines.append(f"{self.name}{labels} {value}")
        return lines

    def reset(self) -> None:
        with self._lock:
            self._values.clear()


class MetricsRegistry:
    def __init__(self):
        self.counters: Dict[str, Counter] = {}
        self._lock = threading.Lock()

    def counter(self, name: str, label_names: Optional[Iterable[str]] = None, help: str = "") -> Counter:
        with self._lock:
            if name not in self.counters:
                self.counters[name] = Counter(name, label_names, help)
            return self.counters[name]

    def export_prometheus(self) -> str:
        lines: List[str] = []
        for name in sorted(self.counters):
            lines.extend(self.counters[name].export())
        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        for metric in self.counters.values():
            metric.reset()


METRICS = MetricsRegistry()

http_requests_total = METRICS.counter(
    "http_requests_total",
    ["method", "path", "status"],
    help="HTTP requests by method, route and response status.",
)
user_entity_ops_total = METRICS.counter(
    "user_entity_ops_total",
    ["op", "outcome"],
    help="User-entity operations by outcome.",
)


def record_op(op: str, outcome: str) -> None:
    user_entity_ops_total.inc(labels={"op": op, "outcome": outcome})


_ID_SEGMENT_RE = re.compile(r"^(\d+|[0-9a-fA-F-]{8,})$")


def normalize_path(path: str) -> str:
    """Collapse numeric and UUID-like path segments to :id."""
    segments = [s for s in path.split("/") if s]
    return "/" + "/".join(":id" if _ID_SEGMENT_RE.match(s) else s for s in segments)
