"""Docker workload driver implementation."""

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx

from spxhub.core.domain import RECLAIMABLE_STATES, WorkloadState
from spxhub.core.errors import (
    DriverFailureError,
    WorkloadAlreadyExistsError,
    WorkloadNotFoundError,
)
from spxhub.core.interfaces import (
    ResourceLimits,
    WorkloadDriver,
    WorkloadInfo,
    WorkloadSpec,
    WorkloadStats,
)
from spxhub.core.logging_schema import LogEvent
from spxhub.infra.docker import (
    ContainerAPI,
    ContainerConfig,
    ContainerExistsError,
    DockerClient,
    HostConfig,
    ImageAPI,
)
from spxhub.metrics import DRIVER_DURATION, DRIVER_ERRORS

logger = logging.getLogger(__name__)


def _error_message(exc: httpx.HTTPStatusError) -> str:
    """Docker puts the reason in {"message": ...}."""
    try:
        return exc.response.json().get("message", "") or exc.response.text
    except ValueError:
        return exc.response.text


def compute_stats(raw: dict) -> WorkloadStats:
    """Derive utilization from a Docker stats sample.

    cpu% = cpu_delta / system_delta * online_cpus * 100
    mem% = usage / limit * 100
    """
    cpu_stats = raw.get("cpu_stats") or {}
    precpu_stats = raw.get("precpu_stats") or {}

    cpu_usage = cpu_stats.get("cpu_usage") or {}
    precpu_usage = precpu_stats.get("cpu_usage") or {}
    cpu_delta = cpu_usage.get("total_usage", 0) - precpu_usage.get("total_usage", 0)
    system_delta = cpu_stats.get("system_cpu_usage", 0) - precpu_stats.get("system_cpu_usage", 0)
    online_cpus = cpu_stats.get("online_cpus") or len(cpu_usage.get("percpu_usage") or []) or 1

    cpu_percent = 0.0
    if system_delta > 0 and cpu_delta > 0:
        cpu_percent = cpu_delta / system_delta * online_cpus * 100

    memory_stats = raw.get("memory_stats") or {}
    limit = memory_stats.get("limit", 0)
    memory_percent = memory_stats.get("usage", 0) / limit * 100 if limit else 0.0

    networks = raw.get("networks") or {}
    rx = sum(n.get("rx_bytes", 0) for n in networks.values())
    tx = sum(n.get("tx_bytes", 0) for n in networks.values())

    return WorkloadStats(
        cpu_percent=round(cpu_percent, 2),
        memory_percent=round(memory_percent, 2),
        network_rx_bytes=rx,
        network_tx_bytes=tx,
    )


class DockerWorkloadDriver(WorkloadDriver):
    """Docker-based workload driver using ContainerAPI.

    Owns the DockerClient it is given and closes it in close().
    """

    def __init__(
        self,
        client: DockerClient,
        containers: ContainerAPI | None = None,
        images: ImageAPI | None = None,
    ) -> None:
        self._client = client
        self._containers = containers if containers is not None else ContainerAPI(client)
        self._images = images if images is not None else ImageAPI(client)

    @asynccontextmanager
    async def _call(self, operation: str, name: str) -> AsyncIterator[None]:
        """Time a Docker call and translate transport errors."""
        start = time.monotonic()
        try:
            yield
        except ContainerExistsError as e:
            raise WorkloadAlreadyExistsError(f"Workload {e.name} already exists") from e
        except httpx.TimeoutException as e:
            DRIVER_ERRORS.labels(operation=operation, error_type="timeout").inc()
            raise DriverFailureError(f"Docker {operation} timed out for {name}") from e
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                raise WorkloadNotFoundError(f"Workload {name} not found") from e
            DRIVER_ERRORS.labels(operation=operation, error_type="api_error").inc()
            raise DriverFailureError(
                f"Docker {operation} failed for {name}: "
                f"{e.response.status_code} {_error_message(e)}"
            ) from e
        except httpx.TransportError as e:
            DRIVER_ERRORS.labels(operation=operation, error_type="connection").inc()
            raise DriverFailureError(f"Docker unreachable during {operation} of {name}: {e}") from e
        finally:
            DRIVER_DURATION.labels(operation=operation).observe(time.monotonic() - start)

    def _container_config(self, spec: WorkloadSpec) -> ContainerConfig:
        exposed: dict[str, dict] = {}
        bindings: dict[str, list[dict[str, str]]] = {}
        if spec.port is not None:
            key = f"{spec.port}/tcp"
            exposed[key] = {}
            bindings[key] = [{"HostPort": str(spec.port)}]

        resources = spec.resources
        return ContainerConfig(
            image=spec.image,
            name=spec.name,
            cmd=spec.cmd,
            env=[f"{k}={v}" for k, v in spec.env.items()],
            labels=spec.labels,
            exposed_ports=exposed,
            host_config=HostConfig(
                binds=[v.to_bind() for v in spec.volumes],
                port_bindings=bindings,
                memory=resources.memory_bytes if resources else None,
                memory_swap=resources.memory_swap if resources else None,
                cpu_shares=resources.cpu_shares if resources else None,
                restart_policy=spec.restart_policy,
            ),
        )

    async def create(self, spec: WorkloadSpec) -> None:
        async with self._call("create", spec.name):
            await self._images.ensure(spec.image)
            await self._containers.create(self._container_config(spec))
        logger.info(
            "Workload created",
            extra={"event": LogEvent.WORKLOAD_CREATED, "workload": spec.name, "image": spec.image},
        )

    async def start(self, name: str) -> None:
        async with self._call("start", name):
            await self._containers.start(name)
        logger.info("Workload started", extra={"event": LogEvent.WORKLOAD_STARTED, "workload": name})

    async def stop(self, name: str, grace_period: int) -> None:
        async with self._call("stop", name):
            await self._containers.stop(name, timeout=grace_period)
        logger.info(
            "Workload stopped",
            extra={"event": LogEvent.WORKLOAD_STOPPED, "workload": name, "grace_period": grace_period},
        )

    async def remove(self, name: str) -> None:
        async with self._call("remove", name):
            await self._containers.remove(name, force=True)
        logger.info("Workload removed", extra={"event": LogEvent.WORKLOAD_REMOVED, "workload": name})

    async def inspect(self, name: str) -> WorkloadState:
        try:
            async with self._call("inspect", name):
                data = await self._containers.inspect(name)
        except (WorkloadNotFoundError, WorkloadAlreadyExistsError):
            return WorkloadState.NOT_FOUND
        except DriverFailureError as e:
            if isinstance(e.__cause__, httpx.HTTPStatusError):
                logger.debug("Inspect failed, treating as not found: %s", e.message)
                return WorkloadState.NOT_FOUND
            raise

        if not data:
            return WorkloadState.NOT_FOUND
        return WorkloadState.from_runtime((data.get("State") or {}).get("Status"))

    async def stats(self, name: str) -> WorkloadStats:
        try:
            async with self._call("stats", name):
                raw = await self._containers.stats(name)
            return compute_stats(raw)
        except Exception as e:
            logger.warning(
                "Stats unavailable, returning zeroed metrics",
                extra={"event": LogEvent.DRIVER_ERROR, "workload": name, "error": str(e)},
            )
            return WorkloadStats()

    async def update_resources(self, name: str, resources: ResourceLimits) -> None:
        async with self._call("update", name):
            await self._containers.update(
                name,
                memory=resources.memory_bytes,
                cpu_shares=resources.cpu_shares,
                memory_swap=resources.memory_swap,
            )
        logger.info(
            "Workload resources updated",
            extra={
                "event": LogEvent.WORKLOAD_UPDATED,
                "workload": name,
                "memory_bytes": resources.memory_bytes,
                "cpu_shares": resources.cpu_shares,
            },
        )

    async def list_by_label(self, label: str) -> list[WorkloadInfo]:
        async with self._call("list", label):
            containers = await self._containers.list(filters={"label": [label]})
        return [self._to_info(c) for c in containers]

    async def remove_if_exited(
        self, label: str, keep: frozenset[str] = frozenset()
    ) -> list[str]:
        async with self._call("list", label):
            containers = await self._containers.list(
                filters={"label": [label], "status": ["exited", "dead"]}
            )

        removed: list[str] = []
        for container in containers:
            info = self._to_info(container)
            if info.name in keep or info.state not in RECLAIMABLE_STATES:
                continue
            try:
                async with self._call("remove", info.name):
                    await self._containers.remove(info.id, force=True)
            except DriverFailureError as e:
                logger.warning(
                    "Failed to remove exited workload",
                    extra={"event": LogEvent.DRIVER_ERROR, "workload": info.name, "error": e.message},
                )
                continue
            removed.append(info.name)
            logger.info(
                "Removed exited workload",
                extra={"event": LogEvent.WORKLOAD_REMOVED, "workload": info.name, "state": info.state},
            )
        return removed

    async def logs(self, name: str, tail: int = 100) -> str:
        try:
            async with self._call("logs", name):
                return await self._containers.logs(name, tail=tail)
        except Exception as e:
            logger.warning(
                "Logs unavailable",
                extra={"event": LogEvent.DRIVER_ERROR, "workload": name, "error": str(e)},
            )
            return ""

    async def _force_cleanup(self, name: str) -> None:
        try:
            await self._containers.stop(name, timeout=5)
        except Exception as e:
            logger.debug("Force stop failed for %s: %s", name, e)
        try:
            await self._containers.remove(name, force=True)
        except Exception as e:
            logger.warning(
                "Force cleanup failed",
                extra={"event": LogEvent.DRIVER_ERROR, "workload": name, "error": str(e)},
            )

    async def run_to_completion(self, spec: WorkloadSpec, timeout: int) -> int:
        try:
            async with self._call("job", spec.name):
                await self._images.ensure(spec.image)
                await self._containers.create(self._container_config(spec))
                await self._containers.start(spec.name)
                exit_code = await self._containers.wait(spec.name, timeout=timeout)
            if exit_code != 0:
                output = await self.logs(spec.name, tail=20)
                logger.warning(
                    "Job exited with non-zero code",
                    extra={
                        "event": LogEvent.DRIVER_ERROR,
                        "workload": spec.name,
                        "exit_code": exit_code,
                        "output": output,
                    },
                )
            return exit_code
        except asyncio.CancelledError:
            await self._force_cleanup(spec.name)
            raise
        finally:
            try:
                await self._containers.remove(spec.name, force=True)
            except Exception as e:
                logger.error(
                    "Failed to cleanup job workload",
                    extra={"event": LogEvent.DRIVER_ERROR, "workload": spec.name, "error": str(e)},
                )

    async def close(self) -> None:
        await self._client.close()

    @staticmethod
    def _to_info(container: dict) -> WorkloadInfo:
        names = container.get("Names") or []
        return WorkloadInfo(
            id=container.get("Id", ""),
            name=names[0].lstrip("/") if names else "",
            labels=container.get("Labels") or {},
            state=WorkloadState.from_runtime(container.get("State")),
            ports=container.get("Ports") or [],
        )
