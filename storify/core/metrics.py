"""In-process counters rendered in Prometheus text format at /metrics."""

from __future__ import annotations

import re
import threading
from typing import Dict, Iterable, List, Optional, Tuple


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\"", "\\\"").replace("\n", "\\n")


class Counter:
    """Monotonic counter keyed by a fixed set of label names."""

    def __init__(self, name: str, help_text: str, label_names: Optional[Iterable[str]] = None):
        self.name = name
        self.help_text = help_text
        self.label_names = tuple(label_names or ())
        self._values: Dict[Tuple[str, ...], float] = {}
        self._lock = threading.Lock()

    def inc(self, labels: Optional[Dict[str, str]] = None, amount: float = 1.0):
        labels = labels or {}
        unknown = set(labels) - set(self.label_names)
        if unknown:
            raise ValueError(f"{self.name}: unknown labels {sorted(unknown)}")
        key = tuple(str(labels.get(name, "")) for name in self.label_names)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + float(amount)

    def samples(self) -> List[str]:
        with self._lock:
            items = sorted(self._values.items())
        lines = []
        for key, value in items:
            if self.label_names:
                pairs = ",".join(f'{name}="{_escape(val)}"' for name, val in zip(self.label_names, key))
                lines.append(f"{self.name}{{{pairs}}} {value}")
            else:
                lines.append(f"{self.name} {value}")
        return lines

    def reset(self):
        with self._lock:
            self._values.clear()


class MetricsRegistry:
    def __init__(self):
        self.counters: Dict[str, Counter] = {}
        self._lock = threading.Lock()

    def counter(self, name: str, help_text: str, label_names: Optional[Iterable[str]] = None) -> Counter:
        with self._lock:
            if name not in self.counters:
                self.counters[name] = Counter(name, help_text, label_names)
            return self.counters[name]

    def export_prometheus(self) -> str:
        lines: List[str] = []
        for metric in list(self.counters.values()):
            lines.append(f"# HELP {metric.name} {metric.help_text}")
            lines.append(f"# TYPE {metric.name} counter")
            lines.extend(metric.samples())
        return "\n".join(lines) + "\n"

    def reset(self):
        for metric in self.counters.values():
            metric.reset()


METRICS = MetricsRegistry()

http_requests_total = METRICS.counter(
    "http_requests_total", "HTTP requests by method, route and status", ["method", "path", "status"]
)
listening_records_total = METRICS.counter(
    "listening_records_total", "Consumption events written or found existing", ["identity_kind", "outcome"]
)
listening_denied_total = METRICS.counter(
    "listening_denied_total", "Plays refused by the listening limit", ["reason"]
)
payment_transitions_total = METRICS.counter(
    "payment_transitions_total", "Payment transactions leaving pending", ["gateway", "status", "source"]
)
webhook_notifications_total = METRICS.counter(
    "webhook_notifications_total", "Gateway notifications by outcome", ["gateway", "outcome"]
)
subscriptions_activated_total = METRICS.counter(
    "subscriptions_activated_total", "Subscriptions created from paid transactions"
)


# Numeric ids and UUIDs collapse to :id to bound label cardinality
_ID_SEGMENT = re.compile(r"^(\d+|[0-9a-fA-F]{8}-[0-9a-fA-F-]{27,})$")


def normalize_path(path: str) -> str:
    segments = [":id" if _ID_SEGMENT.match(s) else s for s in path.split("/") if s]
    return "/" + "/".join(segments)
