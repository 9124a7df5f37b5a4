"""Workload driver interface.

This is the capability seam between the lifecycle manager and the
container runtime. The manager only knows about named workloads; the
driver handles runtime details (Docker API, image pulls, port bindings).

Design principles:
- Workload identity is a deterministic name derived from the instance id
- Runtime state strings are mapped once into WorkloadState
- Runtime errors surface as DriverFailureError, never as transport errors
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel, Field

from spxhub.core.domain import WorkloadState

# =============================================================================
# Models
# =============================================================================


class ResourceLimits(BaseModel):
    """Resource ceiling for a workload."""

    memory_bytes: int = Field(gt=0)
    cpu_shares: int = Field(gt=0)
    memory_swap: int = -1

    model_config = {"frozen": True}


class VolumeBinding(BaseModel):
    """Named volume mounted into a workload."""

    volume: str
    target: str
    read_only: bool = False

    model_config = {"frozen": True}

    def to_bind(self) -> str:
        """Docker bind string (``volume:/target[:ro]``)."""
        bind = f"{self.volume}:{self.target}"
        return f"{bind}:ro" if self.read_only else bind


class WorkloadSpec(BaseModel):
    """Everything needed to create one workload."""

    name: str
    image: str
    port: int | None = None
    env: dict[str, str] = {}
    volumes: list[VolumeBinding] = []
    resources: ResourceLimits | None = None
    labels: dict[str, str] = {}
    cmd: list[str] = []
    restart_policy: str | None = None

    model_config = {"frozen": True}


class WorkloadStats(BaseModel):
    """Point-in-time resource utilization."""

    cpu_percent: float = 0.0
    memory_percent: float = 0.0
    network_rx_bytes: int = 0
    network_tx_bytes: int = 0

    model_config = {"frozen": True}


class WorkloadInfo(BaseModel):
    """Workload discovered by label."""

    id: str
    name: str
    labels: dict[str, str]
    state: WorkloadState
    ports: list[dict] = []

    model_config = {"frozen": True}


# =============================================================================
# WorkloadDriver Interface
# =============================================================================


class WorkloadDriver(ABC):
    """Narrow interface over a container runtime.

    Implementations: DockerWorkloadDriver
    """

    @abstractmethod
    async def create(self, spec: WorkloadSpec) -> None:
        """Create a workload.

        Raises:
            WorkloadAlreadyExistsError: A workload with spec.name exists
            DriverFailureError: Runtime failure
        """
        ...

    @abstractmethod
    async def start(self, name: str) -> None:
        """Start a created workload."""
        ...

    @abstractmethod
    async def stop(self, name: str, grace_period: int) -> None:
        """Stop a workload, killing it after grace_period seconds.

        A missing workload is not an error.
        """
        ...

    @abstractmethod
    async def remove(self, name: str) -> None:
        """Force-remove a workload. A missing workload is not an error."""
        ...

    @abstractmethod
    async def inspect(self, name: str) -> WorkloadState:
        """Observe the workload state.

        Errors reported by the runtime while locating the workload are
        returned as NOT_FOUND, never raised.

        Raises:
            DriverFailureError: the runtime itself could not be reached
        """
        ...

    @abstractmethod
    async def stats(self, name: str) -> WorkloadStats:
        """Sample utilization. Returns zeroed stats on any failure."""
        ...

    @abstractmethod
    async def update_resources(self, name: str, resources: ResourceLimits) -> None:
        """Adjust resource limits of a live workload without restart."""
        ...

    @abstractmethod
    async def list_by_label(self, label: str) -> list[WorkloadInfo]:
        """List workloads (any state) carrying the given label key."""
        ...

    @abstractmethod
    async def remove_if_exited(
        self, label: str, keep: frozenset[str] = frozenset()
    ) -> list[str]:
        """Remove exited/dead workloads carrying the label.

        Args:
            label: Label key to filter by
            keep: Workload names that must not be removed

        Returns:
            Names of removed workloads
        """
        ...

    @abstractmethod
    async def logs(self, name: str, tail: int = 100) -> str:
        """Last ``tail`` lines of workload output. Empty on failure."""
        ...

    @abstractmethod
    async def run_to_completion(self, spec: WorkloadSpec, timeout: int) -> int:
        """Run a short-lived job workload and remove it.

        Returns:
            Exit code of the job
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release runtime client resources."""
        ...
