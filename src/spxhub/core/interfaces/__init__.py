"""Core interfaces for the control plane."""

from spxhub.core.interfaces.driver import (
    ResourceLimits,
    VolumeBinding,
    WorkloadDriver,
    WorkloadInfo,
    WorkloadSpec,
    WorkloadStats,
)
from spxhub.core.interfaces.store import InstanceStore

__all__ = [
    # WorkloadDriver interface
    "WorkloadDriver",
    "WorkloadSpec",
    "WorkloadStats",
    "WorkloadInfo",
    "ResourceLimits",
    "VolumeBinding",
    # Record store
    "InstanceStore",
]
