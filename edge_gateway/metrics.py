"""Prometheus text exposition for the edge gateway.

In-process counters and a latency histogram keyed by route and upstream,
rendered in the Prometheus text format at /metrics. Label values are escaped
on output. Callers pass bounded names only; unknown services and actions are
recorded as ``"unknown"``.
"""

import threading
from collections import defaultdict

from fastapi import APIRouter, Response

_lock = threading.Lock()

# Label key type: tuple of (key, value) pairs
LabelKey = tuple[tuple[str, str], ...]

_counters: dict[str, dict[LabelKey, float]] = defaultdict(
    lambda: defaultdict(float),
)

_histogram_sums: dict[str, dict[LabelKey, float]] = defaultdict(
    lambda: defaultdict(float),
)
_histogram_counts: dict[str, dict[LabelKey, int]] = defaultdict(
    lambda: defaultdict(int),
)

LATENCY_BUCKETS = [0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
_histogram_buckets: dict[str, dict[LabelKey, list[int]]] = defaultdict(
    lambda: defaultdict(lambda: [0] * len(LATENCY_BUCKETS)),
)


def inc_counter(name: str, labels: dict[str, str], value: float = 1.0) -> None:
    key: LabelKey = tuple(sorted(labels.items()))
    with _lock:
        _counters[name][key] += value


def observe_histogram(name: str, labels: dict[str, str], value: float) -> None:
    key: LabelKey = tuple(sorted(labels.items()))
    with _lock:
        _histogram_sums[name][key] += value
        _histogram_counts[name][key] += 1
        buckets = _histogram_buckets[name][key]
        for i, bound in enumerate(LATENCY_BUCKETS):
            if value <= bound:
                buckets[i] += 1
                break


def _escape_label_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _format_labels(label_pairs: LabelKey) -> str:
    if not label_pairs:
        return ""
    parts = [f'{k}="{_escape_label_value(v)}"' for k, v in label_pairs]
    return "{" + ",".join(parts) + "}"


def render_metrics() -> str:
    lines: list[str] = []
    with _lock:
        for name, label_map in sorted(_counters.items()):
            lines.append(f"# TYPE {name} counter")
            for label_pairs, value in sorted(label_map.items()):
                lines.append(f"{name}{_format_labels(label_pairs)} {value}")

        for name in sorted(_histogram_sums.keys()):
            lines.append(f"# TYPE {name} histogram")
            for label_pairs in sorted(_histogram_sums[name].keys()):
                base_lbl = _format_labels(label_pairs)
                buckets = _histogram_buckets[name][label_pairs]
                cumulative = 0
                for i, bound in enumerate(LATENCY_BUCKETS):
                    cumulative += buckets[i]
                    bl: LabelKey = tuple(sorted({**dict(label_pairs), "le": str(bound)}.items()))
                    lines.append(f"{name}_bucket{_format_labels(bl)} {cumulative}")
                il: LabelKey = tuple(sorted({**dict(label_pairs), "le": "+Inf"}.items()))
                count = _histogram_counts[name][label_pairs]
                lines.append(f"{name}_bucket{_format_labels(il)} {count}")
                lines.append(f"{name}_sum{base_lbl} {_histogram_sums[name][label_pairs]}")
                lines.append(f"{name}_count{base_lbl} {count}")

    lines.append("")
    return "\n".join(lines)


def reset_metrics() -> None:
    with _lock:
        _counters.clear()
        _histogram_sums.clear()
        _histogram_counts.clear()
        _histogram_buckets.clear()


# -- Convenience helpers for gateway metrics --


def record_request(
    route: str,
    upstream: str,
    status_code: int,
    latency_s: float,
    attempts: int = 1,
    error_kind: str | None = None,
) -> None:
    """Record all metrics for a completed request."""
    base_labels = {"route": route, "upstream": upstream}
    inc_counter("edge_requests_total", {**base_labels, "status": str(status_code)})
    observe_histogram("edge_request_duration_seconds", base_labels, latency_s)
    if attempts > 0:
        inc_counter("edge_upstream_attempts_total", base_labels, float(attempts))
    if error_kind:
        inc_counter("edge_errors_total", {"route": route, "kind": error_kind})


def record_rate_limited(scope: str) -> None:
    inc_counter("edge_rate_limited_total", {"scope": scope})


# -- FastAPI router --


metrics_router = APIRouter()


@metrics_router.get("/metrics")
def prometheus_metrics() -> Response:
    return Response(
        content=render_metrics(),
        media_type="text/plain; charset=utf-8",
    )
