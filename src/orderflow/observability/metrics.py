"""Prometheus metrics endpoint.

Exposes order pipeline metrics for monitoring via Grafana.
"""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    start_http_server,
)

# ---------------------------------------------------------------------------
# System metrics
# ---------------------------------------------------------------------------

SYSTEM_INFO = Info("orderflow_system", "Order pipeline information")

# ---------------------------------------------------------------------------
# Sequencing metrics
# ---------------------------------------------------------------------------

EVENTS_ADMITTED = Counter(
    "orderflow_events_admitted_total",
    "Events admitted by the sequencer",
    ["outcome"],
)

DUPLICATE_EVENTS = Counter(
    "orderflow_duplicate_events_total",
    "Already-applied events received again",
)

EVENTS_APPLIED = Counter(
    "orderflow_events_applied_total",
    "Transitions accepted by the transition engine",
    ["status"],
)

REJECTIONS = Counter(
    "orderflow_rejections_total",
    "Events or intents rejected, by reason",
    ["reason"],
)

BUFFERED_EVENTS = Gauge(
    "orderflow_buffered_events",
    "Early-arriving events waiting in a lane's sequencer",
    ["lane"],
)

LANE_QUEUE_DEPTH = Gauge(
    "orderflow_lane_queue_depth",
    "Items queued per processing lane",
    ["lane"],
)

# ---------------------------------------------------------------------------
# Dispatch / publish metrics
# ---------------------------------------------------------------------------

INTENTS_DISPATCHED = Counter(
    "orderflow_intents_dispatched_total",
    "Side-effect intents dispatched",
    ["kind", "result"],
)

PUBLISH_TOTAL = Counter(
    "orderflow_publish_total",
    "Order events published",
    ["status", "result"],
)

PUBLISH_LATENCY = Histogram(
    "orderflow_publish_latency_seconds",
    "Time from publish call to broker ack, including retries",
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0],
)

OPERATOR_ALERTS = Counter(
    "orderflow_operator_alerts_total",
    "Failures surfaced to operators",
    ["reason", "severity"],
)


# ---------------------------------------------------------------------------
# Convenience helpers
# ---------------------------------------------------------------------------

def start_metrics_server(port: int = 9090, backend: str = "memory") -> None:
    """Start the Prometheus metrics HTTP server."""
    SYSTEM_INFO.info({"broker_backend": backend})
    start_http_server(port)


def record_admission(outcome: str, duplicate: bool = False) -> None:
    EVENTS_ADMITTED.labels(outcome=outcome).inc()
    if duplicate:
        DUPLICATE_EVENTS.inc()


def record_applied(status: str) -> None:
    EVENTS_APPLIED.labels(status=status).inc()


def record_rejection(reason: str) -> None:
    REJECTIONS.labels(reason=reason).inc()


def record_dispatch(kind: str, ok: bool) -> None:
    INTENTS_DISPATCHED.labels(kind=kind, result="ok" if ok else "failed").inc()


def record_publish(status: str, ok: bool, latency_s: float | None = None) -> None:
    PUBLISH_TOTAL.labels(status=status, result="ok" if ok else "failed").inc()
    if latency_s is not None:
        PUBLISH_LATENCY.observe(latency_s)


def record_alert(reason: str, severity: str) -> None:
    OPERATOR_ALERTS.labels(reason=reason, severity=severity).inc()


def update_lane_gauges(lane: int, buffered: int, queue_depth: int) -> None:
    BUFFERED_EVENTS.labels(lane=str(lane)).set(buffered)
    LANE_QUEUE_DEPTH.labels(lane=str(lane)).set(queue_depth)
