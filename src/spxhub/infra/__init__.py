"""Infrastructure layer."""

from spxhub.infra.docker import (
    ContainerAPI,
    ContainerConfig,
    ContainerExistsError,
    DockerClient,
    HostConfig,
    ImageAPI,
    demux_logs,
)
from spxhub.infra.postgresql import Database

__all__ = [
    # Docker
    "ContainerAPI",
    "ContainerConfig",
    "ContainerExistsError",
    "DockerClient",
    "HostConfig",
    "ImageAPI",
    "demux_logs",
    # Database
    "Database",
]
