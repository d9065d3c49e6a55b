"""Prometheus metrics for dispatch outcomes.

Counters are incremented from after-commit callbacks, so rolled-back work
is never counted.
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

# Use a separate registry to avoid default Python metrics
REGISTRY = CollectorRegistry()

# --- Counters (cumulative values) ---

dispatch_offers_total = Counter(
    "dispatch_offers_total",
    "Offers by final response status (sent, accepted, declined, expired)",
    ["status"],
    registry=REGISTRY,
)

dispatch_reassignments_total = Counter(
    "dispatch_reassignments_total",
    "Reassignment cycles by reason",
    ["reason"],
    registry=REGISTRY,
)

dispatch_rides_cancelled_total = Counter(
    "dispatch_rides_cancelled_total",
    "Cancelled rides by actor",
    ["cancelled_by"],
    registry=REGISTRY,
)

dispatch_rides_completed_total = Counter(
    "dispatch_rides_completed_total",
    "Total number of completed rides",
    registry=REGISTRY,
)

dispatch_no_candidates_total = Counter(
    "dispatch_no_candidates_total",
    "Dispatch attempts that found no eligible captain",
    registry=REGISTRY,
)

dispatch_errors_total = Counter(
    "dispatch_errors_total",
    "Total errors by component and type",
    ["component", "error_type"],
    registry=REGISTRY,
)

# --- Gauges (point-in-time values) ---

dispatch_tasks_due = Gauge(
    "dispatch_tasks_due",
    "Deferred dispatch tasks claimed in the last maintenance pass",
    registry=REGISTRY,
)

# --- Histograms (latency distributions) ---

OSRM_LATENCY_BUCKETS = (0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, float("inf"))
REDIS_LATENCY_BUCKETS = (0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, float("inf"))

dispatch_osrm_latency_seconds = Histogram(
    "dispatch_osrm_latency_seconds",
    "Directions provider request latency in seconds",
    buckets=OSRM_LATENCY_BUCKETS,
    registry=REGISTRY,
)

dispatch_redis_latency_seconds = Histogram(
    "dispatch_redis_latency_seconds",
    "Redis publish latency in seconds",
    buckets=REDIS_LATENCY_BUCKETS,
    registry=REGISTRY,
)


def record_offer(status: str) -> None:
    dispatch_offers_total.labels(status=status).inc()


def record_reassignment(reason: str) -> None:
    dispatch_reassignments_total.labels(reason=reason).inc()


def record_cancellation(cancelled_by: str) -> None:
    dispatch_rides_cancelled_total.labels(cancelled_by=cancelled_by).inc()


def record_completion() -> None:
    dispatch_rides_completed_total.inc()


def record_no_candidates() -> None:
    dispatch_no_candidates_total.inc()


def record_error(component: str, error_type: str) -> None:
    dispatch_errors_total.labels(component=component, error_type=error_type).inc()


def set_tasks_due(count: int) -> None:
    dispatch_tasks_due.set(count)


def observe_latency(component: str, latency_ms: float) -> None:
    """Observe a latency sample for histogram tracking.

    Args:
        component: One of "osrm", "redis"
        latency_ms: Latency in milliseconds
    """
    latency_seconds = latency_ms / 1000.0

    if component == "osrm":
        dispatch_osrm_latency_seconds.observe(latency_seconds)
    elif component == "redis":
        dispatch_redis_latency_seconds.observe(latency_seconds)


def generate_prometheus_metrics() -> bytes:
    """Generate Prometheus format metrics output."""
    result: bytes = generate_latest(REGISTRY)
    return result
