from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

_REQ_COUNT = Counter(
    "lockergate_http_requests_total",
    "Total HTTP requests",
    labelnames=("method", "path", "status"),
)
_REQ_LATENCY = Histogram(
    "lockergate_http_request_duration_seconds",
    "HTTP request latency seconds",
    labelnames=("method", "path"),
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.3, 0.5, 1.0, 2.5, 5.0),
)
_SESSIONS_ISSUED = Counter(
    "lockergate_sessions_issued_total",
    "QR sessions issued",
    labelnames=("payload",),
)
_SCANS = Counter(
    "lockergate_scans_total",
    "QR scan attempts by outcome",
    labelnames=("result",),
)
_COMMANDS_ENQUEUED = Counter(
    "lockergate_commands_enqueued_total",
    "Commands queued for devices",
    labelnames=("source", "action"),
)
_ACKS = Counter(
    "lockergate_command_acks_total",
    "Command acknowledgements by reported outcome",
    labelnames=("result",),
)


def observe_http_request(*, method: str, path: str, status: int, duration_seconds: float) -> None:
    _REQ_COUNT.labels(method=method, path=path, status=str(status)).inc()
    _REQ_LATENCY.labels(method=method, path=path).observe(duration_seconds)


def record_session_issued(*, as_url: bool) -> None:
    _SESSIONS_ISSUED.labels(payload="url" if as_url else "code").inc()


def record_scan(*, result: str) -> None:
    _SCANS.labels(result=result).inc()


def record_command_enqueued(*, source: str, action: str) -> None:
    _COMMANDS_ENQUEUED.labels(source=source, action=action).inc()


def record_ack(*, success: bool, duplicate: bool) -> None:
    if duplicate:
        result = "duplicate"
    else:
        result = "success" if success else "failure"
    _ACKS.labels(result=result).inc()


def render_metrics() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
