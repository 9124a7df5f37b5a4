"""Prometheus metrics definitions for spxhub.

Tracks:
- Workload driver calls (Docker API latency and errors)
- Lifecycle transitions (start/stop/restart/delete outcomes)
- Health reconciliation (pass duration, drift)
"""

from prometheus_client import Counter, Gauge, Histogram

# =============================================================================
# Histogram Buckets
# =============================================================================
# Docker operations are typically slow (100ms ~ 180s)
_BUCKETS_SLOW = (
    0.1, 0.2, 0.4, 0.8, 1.5,
    3, 6, 12, 24, 48,
    96, 180,
)

_BUCKETS_FAST = (
    0.005, 0.01, 0.025, 0.05, 0.1,
    0.25, 0.5, 1, 2.5, 5,
    10,
)

# =============================================================================
# Driver Operation Metrics
# =============================================================================

DRIVER_DURATION = Histogram(
    "spxhub_driver_duration_seconds",
    "Duration of workload driver operations",
    ["operation"],  # create, start, stop, remove, inspect, stats, update, list, logs, job
    buckets=_BUCKETS_SLOW,
)

DRIVER_ERRORS = Counter(
    "spxhub_driver_errors_total",
    "Total workload driver errors",
    ["operation", "error_type"],  # error_type: api_error, timeout, connection
)

# =============================================================================
# Lifecycle Metrics
# =============================================================================

LIFECYCLE_TRANSITIONS = Counter(
    "spxhub_lifecycle_transitions_total",
    "Lifecycle operations by outcome",
    ["operation", "result"],  # result: success, failure, rejected
)

LIFECYCLE_DURATION = Histogram(
    "spxhub_lifecycle_duration_seconds",
    "Duration of lifecycle operations including lock wait",
    ["operation"],
    buckets=_BUCKETS_SLOW,
)

# =============================================================================
# Reconciler Metrics
# =============================================================================

RECONCILE_DURATION = Histogram(
    "spxhub_reconcile_duration_seconds",
    "Duration of one health reconcile pass",
    buckets=_BUCKETS_FAST,
)

RECONCILE_DRIFT = Counter(
    "spxhub_reconcile_drift_total",
    "Instances recorded RUNNING but observed down",
)

RECONCILE_FAILURES = Counter(
    "spxhub_reconcile_failures_total",
    "Per-instance reconcile failures",
)

INSTANCES_RUNNING = Gauge(
    "spxhub_instances_running",
    "Instances recorded RUNNING at the last reconcile pass",
)

SWEEP_REMOVED = Counter(
    "spxhub_sweep_removed_total",
    "Exited workloads removed by the stale workload sweep",
)


# =============================================================================
# Metric Initialization
# =============================================================================

def _init_metrics() -> None:
    """Initialize labeled metrics with zero values."""
    for op in ["create", "start", "stop", "remove", "inspect", "stats", "update", "list", "logs", "job"]:
        DRIVER_DURATION.labels(operation=op)
        DRIVER_ERRORS.labels(operation=op, error_type="api_error")
        DRIVER_ERRORS.labels(operation=op, error_type="timeout")
        DRIVER_ERRORS.labels(operation=op, error_type="connection")

    for op in ["create", "start", "stop", "restart", "delete", "backup"]:
        LIFECYCLE_DURATION.labels(operation=op)
        for result in ["success", "failure", "rejected"]:
            LIFECYCLE_TRANSITIONS.labels(operation=op, result=result)


_init_metrics()
