"""Instance domain enums.

InstanceStatus is the recorded (desired / last known) state owned by the
lifecycle manager. WorkloadState is what the container runtime reports.
"""

from enum import StrEnum


class InstanceStatus(StrEnum):
    """Recorded instance status."""

    STOPPED = "STOPPED"
    STARTING = "STARTING"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"
    ERROR = "ERROR"


class WorkloadState(StrEnum):
    """Runtime-observed workload state (closed set)."""

    RUNNING = "running"
    CREATED = "created"
    RESTARTING = "restarting"
    PAUSED = "paused"
    EXITED = "exited"
    DEAD = "dead"
    REMOVING = "removing"
    STOPPED = "stopped"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"

    @classmethod
    def from_runtime(cls, raw: str | None) -> "WorkloadState":
        """Map a raw runtime state string onto the enum."""
        if not raw:
            return cls.UNKNOWN
        try:
            return cls(raw.lower())
        except ValueError:
            return cls.UNKNOWN


# Statuses that imply a running workload should exist
ACTIVE_STATUSES = frozenset({InstanceStatus.RUNNING, InstanceStatus.STARTING})

# Runtime states eligible for the stale workload sweep
RECLAIMABLE_STATES = frozenset({WorkloadState.EXITED, WorkloadState.DEAD})
