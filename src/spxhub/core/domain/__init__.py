"""Domain models and enums."""

from spxhub.core.domain.instance import (
    ACTIVE_STATUSES,
    RECLAIMABLE_STATES,
    InstanceStatus,
    WorkloadState,
)

__all__ = [
    "InstanceStatus",
    "WorkloadState",
    "ACTIVE_STATUSES",
    "RECLAIMABLE_STATES",
]
