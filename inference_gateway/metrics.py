"""Gate and relay metrics in Prometheus text format.

The gateway records two things: how each request left the gate, and how each
accepted stream ended. Both live in a small in-process registry rendered on
``/metrics``.
"""

import threading
from dataclasses import dataclass, field

from fastapi import APIRouter, Response

DURATION_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)

Series = tuple[str, tuple[tuple[str, str], ...]]


@dataclass
class _Histogram:
    counts: list[int] = field(default_factory=lambda: [0] * len(DURATION_BUCKETS))
    total: float = 0.0
    observations: int = 0

    def observe(self, value: float) -> None:
        self.total += value
        self.observations += 1
        for i, bound in enumerate(DURATION_BUCKETS):
            if value <= bound:
                self.counts[i] += 1
                break


_lock = threading.Lock()
_counters: dict[Series, float] = {}
_histograms: dict[Series, _Histogram] = {}


def _series(name: str, labels: dict[str, str]) -> Series:
    return name, tuple(sorted(labels.items()))


def _labels(pairs: tuple[tuple[str, str], ...]) -> str:
    if not pairs:
        return ""
    return "{" + ",".join(f'{key}="{value}"' for key, value in pairs) + "}"


def record_gate_outcome(outcome: str, status_code: int, latency_s: float) -> None:
    """Count a gate decision: ``accepted`` or the error code of the pre-stream failure."""
    requests = _series(
        "igw_requests_total", {"outcome": outcome, "status_code": str(status_code)}
    )
    latency = _series("igw_gate_latency_seconds", {"outcome": outcome})
    with _lock:
        _counters[requests] = _counters.get(requests, 0.0) + 1
        _histograms.setdefault(latency, _Histogram()).observe(latency_s)


def record_stream_terminal(terminal: str, delta_count: int, duration_s: float) -> None:
    ended = _series("igw_stream_terminal_total", {"terminal": terminal})
    deltas = _series("igw_stream_deltas_total", {})
    duration = _series("igw_stream_duration_seconds", {"terminal": terminal})
    with _lock:
        _counters[ended] = _counters.get(ended, 0.0) + 1
        _counters[deltas] = _counters.get(deltas, 0.0) + delta_count
        _histograms.setdefault(duration, _Histogram()).observe(duration_s)


def counter_value(name: str, labels: dict[str, str]) -> float:
    with _lock:
        return _counters.get(_series(name, labels), 0.0)


def reset_metrics() -> None:
    with _lock:
        _counters.clear()
        _histograms.clear()


def render_metrics() -> str:
    lines: list[str] = []
    with _lock:
        typed: set[str] = set()
        for (name, pairs), value in sorted(_counters.items()):
            if name not in typed:
                typed.add(name)
                lines.append(f"# TYPE {name} counter")
            lines.append(f"{name}{_labels(pairs)} {value}")

        for (name, pairs), histogram in sorted(_histograms.items()):
            if name not in typed:
                typed.add(name)
                lines.append(f"# TYPE {name} histogram")
            cumulative = 0
            for bound, count in zip(DURATION_BUCKETS, histogram.counts):
                cumulative += count
                bucket = _labels(pairs + (("le", str(bound)),))
                lines.append(f"{name}_bucket{bucket} {cumulative}")
            bucket = _labels(pairs + (("le", "+Inf"),))
            lines.append(f"{name}_bucket{bucket} {histogram.observations}")
            lines.append(f"{name}_sum{_labels(pairs)} {histogram.total}")
            lines.append(f"{name}_count{_labels(pairs)} {histogram.observations}")

    lines.append("")
    return "\n".join(lines)


metrics_router = APIRouter()


@metrics_router.get("/metrics")
def metrics_endpoint() -> Response:
    return Response(
        content=render_metrics(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
