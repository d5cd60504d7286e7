"""
Prometheus Metrics

Provides application metrics in Prometheus text format:
- HTTP request metrics (count, duration, status codes)
- Booking write outcomes per brand
- Webhook state transitions and worker queue depth
"""

from typing import Dict, List, Union
import time
from collections import defaultdict
from threading import Lock


class Counter:
    """Simple counter metric."""

    metric_type = "counter"

    def __init__(self, name: str, description: str, labels: tuple = ()):
        self.name = name
        self.description = description
        self.labels = labels
        self._values: Dict[tuple, float] = defaultdict(float)
        self._lock = Lock()

    def _key(self, label_values: dict) -> tuple:
        return tuple(str(label_values.get(l, '')) for l in self.labels)

    def inc(self, value: float = 1, **label_values):
        with self._lock:
            self._values[self._key(label_values)] += value

    def get(self, **label_values) -> float:
        with self._lock:
            return self._values.get(self._key(label_values), 0.0)

    def get_all(self) -> Dict[tuple, float]:
        with self._lock:
            return dict(self._values)

    def reset(self):
        with self._lock:
            self._values.clear()


class Gauge(Counter):
    """Simple gauge metric (can go up and down)."""

    metric_type = "gauge"

    def set(self, value: float, **label_values):
        with self._lock:
            self._values[self._key(label_values)] = value


class Histogram:
    """Simple histogram metric (sum and count only)."""

    metric_type = "histogram"

    def __init__(self, name: str, description: str, labels: tuple = ()):
        self.name = name
        self.description = description
        self.labels = labels
        self._sums: Dict[tuple, float] = defaultdict(float)
        self._totals: Dict[tuple, int] = defaultdict(int)
        self._lock = Lock()

    def observe(self, value: float, **label_values):
        key = tuple(str(label_values.get(l, '')) for l in self.labels)
        with self._lock:
            self._sums[key] += value
            self._totals[key] += 1

    def get_all(self) -> Dict:
        with self._lock:
            return {'sums': dict(self._sums), 'totals': dict(self._totals)}

    def reset(self):
        with self._lock:
            self._sums.clear()
            self._totals.clear()


# ================================
# APPLICATION METRICS
# ================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labels=("method", "path", "status_code")
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    labels=("method", "path")
)

# outcome: created, replayed, writer_lock, conflict, rejected
bookings_total = Counter(
    "bookings_total",
    "Booking create attempts by outcome",
    labels=("brand", "outcome")
)

channel_forward_total = Counter(
    "channel_forward_total",
    "Pushes of local bookings to the channel manager",
    labels=("status",)
)

webhook_events_total = Counter(
    "webhook_events_total",
    "Webhook state transitions",
    labels=("event_type", "status")
)

webhook_queue_size = Gauge(
    "webhook_queue_size",
    "Jobs waiting in the webhook worker queue"
)

ALL_METRICS: List[Union[Counter, Histogram]] = [
    http_requests_total,
    http_request_duration_seconds,
    bookings_total,
    channel_forward_total,
    webhook_events_total,
    webhook_queue_size,
]


def _label_str(labels: tuple, key: tuple) -> str:
    if not labels:
        return ""
    pairs = ",".join(f'{k}="{v}"' for k, v in zip(labels, key))
    return f"{{{pairs}}}"


def format_prometheus_metrics() -> str:
    """Format all metrics in Prometheus text format."""
    lines = []
    for metric in ALL_METRICS:
        lines.append(f"# HELP {metric.name} {metric.description}")
        lines.append(f"# TYPE {metric.name} {metric.metric_type}")
        if isinstance(metric, Histogram):
            data = metric.get_all()
            for key, total in data['sums'].items():
                labels = _label_str(metric.labels, key)
                lines.append(f"{metric.name}_sum{labels} {total}")
                lines.append(f"{metric.name}_count{labels} {data['totals'][key]}")
        else:
            for key, value in metric.get_all().items():
                lines.append(f"{metric.name}{_label_str(metric.labels, key)} {value}")
    return "\n".join(lines) + "\n"


def reset_all():
    for metric in ALL_METRICS:
        metric.reset()


# ================================
# CONVENIENCE FUNCTIONS
# ================================

def record_http_request(method: str, path: str, status_code: int, duration: float):
    http_requests_total.inc(method=method, path=path, status_code=status_code)
    http_request_duration_seconds.observe(duration, method=method, path=path)


def record_booking_outcome(brand: str, outcome: str):
    bookings_total.inc(brand=brand, outcome=outcome)


def record_channel_forward(success: bool):
    channel_forward_total.inc(status="success" if success else "error")


def record_webhook_transition(event_type: str, status: str):
    webhook_events_total.inc(event_type=event_type, status=status)


class Timer:
    """Context manager measuring elapsed milliseconds."""

    def __enter__(self):
        self.start = time.perf_counter()
        self.elapsed_ms = 0.0
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed_ms = (time.perf_counter() - self.start) * 1000
