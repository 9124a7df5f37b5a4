"""Workload driver adapters."""

from spxhub.adapters.driver.docker import DockerWorkloadDriver, compute_stats

__all__ = ["DockerWorkloadDriver", "compute_stats"]
