"""Adapters implementing core interfaces."""

from spxhub.adapters.driver import DockerWorkloadDriver
from spxhub.adapters.store import SqlInstanceStore

__all__ = ["DockerWorkloadDriver", "SqlInstanceStore"]
