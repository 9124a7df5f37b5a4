"""Services module."""

from spxhub.services.instance_service import InstanceLifecycleManager
from spxhub.services.metrics_service import (
    BackupResult,
    InstanceMetrics,
    MetricsBackupAdapter,
)

__all__ = [
    "InstanceLifecycleManager",
    "MetricsBackupAdapter",
    "InstanceMetrics",
    "BackupResult",
]
