"""Instance lifecycle manager.

Owns every write of ``Instance.status``:

    STOPPED --start--> STARTING --ok--> RUNNING
    RUNNING --stop---> STOPPING --ok--> STOPPED
    STARTING/STOPPING --driver failure or timeout--> ERROR

ERROR is only left through an explicit start or stop. The health
reconciler goes through mark_error() so its writes are serialized with
user operations by the same per-instance lock.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from spxhub.config import DockerConfig, LifecycleConfig, PortConfig, RuntimeConfig
from spxhub.core.domain import InstanceStatus, WorkloadState
from spxhub.core.errors import (
    DriverFailureError,
    InstanceNotFoundError,
    InvalidStateTransitionError,
    LimitExceededError,
    PortConflictError,
    SpxHubError,
    WorkloadAlreadyExistsError,
    WorkloadNotFoundError,
)
from spxhub.core.interfaces import (
    InstanceStore,
    ResourceLimits,
    VolumeBinding,
    WorkloadDriver,
    WorkloadSpec,
)
from spxhub.core.locks import InstanceLocks
from spxhub.core.logging_schema import LogEvent
from spxhub.core.models import Instance, InstanceView
from spxhub.core.naming import ResourceNaming
from spxhub.core.ports import PortAllocator
from spxhub.metrics import LIFECYCLE_DURATION, LIFECYCLE_TRANSITIONS

logger = logging.getLogger(__name__)

_REJECTIONS = (InstanceNotFoundError, InvalidStateTransitionError, LimitExceededError)


class InstanceLifecycleManager:
    """Orchestrates instance transitions over the store and the driver."""

    def __init__(
        self,
        store: InstanceStore,
        driver: WorkloadDriver,
        locks: InstanceLocks,
        allocator: PortAllocator,
        naming: ResourceNaming,
        runtime: RuntimeConfig,
        lifecycle: LifecycleConfig,
        docker: DockerConfig,
        ports: PortConfig,
    ) -> None:
        self._store = store
        self._driver = driver
        self._locks = locks
        self._allocator = allocator
        self._naming = naming
        self._runtime = runtime
        self._operation_timeout = lifecycle.operation_timeout
        self._grace_period = docker.stop_grace_period
        self._allocation_attempts = ports.allocation_attempts
        # Driver sequences outliving a cancelled caller
        self._inflight: set[asyncio.Task] = set()

    @property
    def locks(self) -> InstanceLocks:
        return self._locks

    # =========================================================================
    # Queries
    # =========================================================================

    async def get(self, instance_id: str) -> Instance:
        """Get an instance record.

        Raises:
            InstanceNotFoundError: record does not exist
        """
        instance = await self._store.get(instance_id)
        if instance is None:
            raise InstanceNotFoundError()
        return instance

    async def list_for_owner(self, owner_user_id: str) -> list[Instance]:
        return await self._store.list_by_owner(owner_user_id)

    async def describe(self, instance_id: str) -> InstanceView:
        """Instance record plus the state the runtime currently reports."""
        instance = await self.get(instance_id)
        try:
            state = await self._driver.inspect(self._naming.container_name(instance_id))
        except DriverFailureError as e:
            logger.warning(
                "Runtime state unavailable",
                extra={"event": LogEvent.DRIVER_ERROR, "instance_id": instance_id, "error": e.message},
            )
            state = WorkloadState.UNKNOWN
        return InstanceView.from_record(instance, state)

    async def logs(self, instance_id: str, tail: int = 100) -> str:
        await self.get(instance_id)
        return await self._driver.logs(self._naming.container_name(instance_id), tail=tail)

    # =========================================================================
    # Record operations
    # =========================================================================

    async def create(
        self,
        name: str,
        description: str | None,
        config: dict | None,
        owner_user_id: str,
        organization_id: str | None,
        *,
        instance_limit: int | None = None,
    ) -> Instance:
        """Create a STOPPED instance with a freshly allocated port.

        No workload is created until start().

        Args:
            instance_limit: Plan quota for the owner, None for unlimited

        Raises:
            LimitExceededError: owner already has instance_limit instances
            AllocationExhaustedError: no free port left
            PortConflictError: store kept rejecting allocated ports
        """
        async with self._measure("create"):
            if instance_limit is not None:
                count = await self._store.count_by_owner(owner_user_id)
                if count >= instance_limit:
                    raise LimitExceededError(
                        f"Instance limit reached ({count}/{instance_limit})"
                    )

            async with self._locks.allocation:
                instance = await self._insert_with_port(
                    name=name,
                    description=description,
                    config=dict(config or {}),
                    owner_user_id=owner_user_id,
                    organization_id=organization_id,
                )

        logger.info(
            "Instance created",
            extra={
                "event": LogEvent.INSTANCE_CREATED,
                "instance_id": instance.id,
                "user_id": owner_user_id,
                "organization_id": organization_id,
                "port": instance.port,
            },
        )
        return instance

    async def _insert_with_port(self, **fields: Any) -> Instance:
        for attempt in range(1, self._allocation_attempts + 1):
            port = self._allocator.allocate(await self._store.list_ports())
            now = datetime.now(UTC)
            record = Instance(
                id=str(uuid4()),
                port=port,
                status=InstanceStatus.STOPPED,
                created_at=now,
                updated_at=now,
                **fields,
            )
            try:
                instance = await self._store.add(record)
            except PortConflictError:
                if attempt == self._allocation_attempts:
                    raise
                logger.warning(
                    "Port taken concurrently, retrying",
                    extra={"event": LogEvent.PORT_CONFLICT, "port": port, "attempt": attempt},
                )
                continue
            logger.debug(
                "Port allocated",
                extra={"event": LogEvent.PORT_ALLOCATED, "instance_id": instance.id, "port": port},
            )
            return instance
        raise PortConflictError(port)

    async def update_config(self, instance_id: str, patch: dict) -> Instance:
        """Shallow-merge ``patch`` into the stored config.

        Neither status nor the workload is touched; a running workload picks
        the change up on its next start.
        """
        instance = await self.get(instance_id)
        merged = {**(instance.config or {}), **patch}
        updated = await self._store.update(instance_id, config=merged)
        logger.info(
            "Instance config updated",
            extra={"event": LogEvent.INSTANCE_UPDATED, "instance_id": instance_id, "keys": sorted(patch)},
        )
        return updated

    async def update(
        self,
        instance_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
        config: dict | None = None,
    ) -> Instance:
        """Update instance metadata.

        Args:
            name: New name, kept when None
            description: New description, kept when None
            config: Patch merged into the stored config
        """
        instance = await self.get(instance_id)
        fields: dict[str, Any] = {}
        if name is not None:
            fields["name"] = name
        if description is not None:
            fields["description"] = description
        if config is not None:
            fields["config"] = {**(instance.config or {}), **config}
        if not fields:
            return instance

        updated = await self._store.update(instance_id, **fields)
        logger.info(
            "Instance updated",
            extra={"event": LogEvent.INSTANCE_UPDATED, "instance_id": instance_id, "keys": sorted(fields)},
        )
        return updated

    # =========================================================================
    # Transitions
    # =========================================================================

    async def start(self, instance_id: str) -> Instance:
        """Provision and start the workload.

        Raises:
            InstanceNotFoundError: record does not exist
            InvalidStateTransitionError: instance is already RUNNING
            DriverFailureError: runtime failure or timeout (status is ERROR)
        """
        async with self._measure("start"), self._locks.for_instance(instance_id):
            return await self._start_locked(instance_id)

    async def stop(self, instance_id: str) -> Instance:
        """Stop and remove the workload.

        Raises:
            InstanceNotFoundError: record does not exist
            InvalidStateTransitionError: instance is already STOPPED
            DriverFailureError: runtime failure or timeout (status is ERROR)
        """
        async with self._measure("stop"), self._locks.for_instance(instance_id):
            return await self._stop_locked(instance_id)

    async def restart(self, instance_id: str) -> Instance:
        """Stop (unless STOPPED) then start.

        Two independent transitions under one lock hold. A crash between
        them leaves the status written by the first one.
        """
        async with self._measure("restart"), self._locks.for_instance(instance_id):
            instance = await self.get(instance_id)
            if instance.status != InstanceStatus.STOPPED:
                await self._stop_locked(instance_id)
            return await self._start_locked(instance_id)

    async def delete(self, instance_id: str) -> None:
        """Delete the record, tearing down the workload on a best-effort basis."""
        async with self._measure("delete"):
            async with self._locks.for_instance(instance_id):
                instance = await self.get(instance_id)
                if instance.status != InstanceStatus.STOPPED:
                    await self._teardown_best_effort(instance_id)
                await self._store.delete(instance_id)
            self._locks.discard(instance_id)

        logger.info(
            "Instance deleted",
            extra={"event": LogEvent.INSTANCE_DELETED, "instance_id": instance_id},
        )

    async def scale(self, instance_id: str, resources: ResourceLimits) -> None:
        """Adjust resource limits of the running workload in place.

        Status is never changed, including on failure.
        """
        instance = await self.get(instance_id)
        if instance.status != InstanceStatus.RUNNING:
            raise InvalidStateTransitionError(
                f"Cannot scale instance in status {instance.status}"
            )
        name = self._naming.container_name(instance_id)
        try:
            await self._driver.update_resources(name, resources)
        except WorkloadNotFoundError as e:
            raise DriverFailureError(f"Workload {name} is missing") from e

        logger.info(
            "Instance scaled",
            extra={
                "event": LogEvent.INSTANCE_SCALED,
                "instance_id": instance_id,
                "memory_bytes": resources.memory_bytes,
                "cpu_shares": resources.cpu_shares,
            },
        )

    async def mark_error(
        self, instance_id: str, expected: InstanceStatus = InstanceStatus.RUNNING
    ) -> bool:
        """Write ERROR if the status still equals ``expected`` and the
        workload is still not running.

        The workload is inspected again under the instance lock: a restart
        that completed after the caller's observation leaves a running
        workload, and the stale observation must not demote it.

        Returns:
            True if ERROR was written

        Raises:
            DriverFailureError: runtime unreachable while re-checking
        """
        async with self._locks.for_instance(instance_id):
            instance = await self._store.get(instance_id)
            if instance is None or instance.status != expected:
                return False
            state = await self._driver.inspect(self._naming.container_name(instance_id))
            if state == WorkloadState.RUNNING:
                logger.info(
                    "Workload running again, keeping status",
                    extra={"event": LogEvent.STATE_CHANGED, "instance_id": instance_id, "status": instance.status},
                )
                return False
            await self._store.update(instance_id, status=InstanceStatus.ERROR)

        logger.warning(
            "Instance marked as error",
            extra={
                "event": LogEvent.STATE_CHANGED,
                "instance_id": instance_id,
                "from": expected,
                "to": InstanceStatus.ERROR,
            },
        )
        return True

    # =========================================================================
    # Internals (instance lock held)
    # =========================================================================

    async def _start_locked(self, instance_id: str) -> Instance:
        instance = await self.get(instance_id)
        if instance.status == InstanceStatus.RUNNING:
            raise InvalidStateTransitionError("Instance is already running")

        spec = self._workload_spec(instance)

        async def provision() -> None:
            try:
                await self._driver.create(spec)
            except WorkloadAlreadyExistsError:
                logger.info(
                    "Workload already exists, starting it",
                    extra={"event": LogEvent.STATE_CHANGED, "instance_id": instance_id, "workload": spec.name},
                )
            await self._driver.start(spec.name)

        await self._transition(
            instance_id, "start", instance.status, InstanceStatus.STARTING, InstanceStatus.RUNNING, provision
        )
        logger.info(
            "Instance started",
            extra={"event": LogEvent.INSTANCE_STARTED, "instance_id": instance_id, "port": instance.port},
        )
        return await self.get(instance_id)

    async def _stop_locked(self, instance_id: str) -> Instance:
        instance = await self.get(instance_id)
        if instance.status == InstanceStatus.STOPPED:
            raise InvalidStateTransitionError("Instance is already stopped")

        name = self._naming.container_name(instance_id)

        async def teardown() -> None:
            await self._driver.stop(name, self._grace_period)
            await self._driver.remove(name)

        await self._transition(
            instance_id, "stop", instance.status, InstanceStatus.STOPPING, InstanceStatus.STOPPED, teardown
        )
        logger.info(
            "Instance stopped",
            extra={"event": LogEvent.INSTANCE_STOPPED, "instance_id": instance_id},
        )
        return await self.get(instance_id)

    async def _teardown_best_effort(self, instance_id: str) -> None:
        name = self._naming.container_name(instance_id)
        try:
            await asyncio.wait_for(
                self._driver.stop(name, self._grace_period), timeout=self._operation_timeout
            )
        except Exception as e:
            logger.warning(
                "Stop failed during delete, removing anyway",
                extra={"event": LogEvent.OPERATION_FAILED, "instance_id": instance_id, "error": str(e)},
            )
        try:
            await self._driver.remove(name)
        except Exception as e:
            logger.warning(
                "Workload removal failed during delete",
                extra={"event": LogEvent.OPERATION_FAILED, "instance_id": instance_id, "error": str(e)},
            )

    async def _transition(
        self,
        instance_id: str,
        operation: str,
        current: InstanceStatus,
        pending: InstanceStatus,
        done: InstanceStatus,
        steps: Callable[[], Awaitable[None]],
    ) -> None:
        """Write ``pending``, run ``steps``, then write ``done`` or ERROR.

        The driver sequence and its final status write run in their own task
        shielded from caller cancellation. A cancelled caller returns at once
        (releasing the instance lock) while the task finishes on its own.
        """
        await self._store.update(instance_id, status=pending)
        logger.info(
            "State changed",
            extra={"event": LogEvent.STATE_CHANGED, "instance_id": instance_id, "from": current, "to": pending},
        )

        task = asyncio.create_task(self._drive(instance_id, operation, pending, done, steps))
        self._inflight.add(task)
        task.add_done_callback(self._forget)
        await asyncio.shield(task)

    async def _drive(
        self,
        instance_id: str,
        operation: str,
        pending: InstanceStatus,
        done: InstanceStatus,
        steps: Callable[[], Awaitable[None]],
    ) -> None:
        try:
            await asyncio.wait_for(steps(), timeout=self._operation_timeout)
        except TimeoutError as e:
            await self._write_error(instance_id, operation, pending, "timeout")
            raise DriverFailureError(
                f"{operation} timed out after {self._operation_timeout}s"
            ) from e
        except SpxHubError as e:
            await self._write_error(instance_id, operation, pending, e.message)
            raise
        except Exception as e:
            await self._write_error(instance_id, operation, pending, str(e))
            raise DriverFailureError(f"{operation} failed: {e}") from e

        await self._store.update(instance_id, status=done)
        logger.info(
            "State changed",
            extra={"event": LogEvent.STATE_CHANGED, "instance_id": instance_id, "from": pending, "to": done},
        )

    async def _write_error(
        self, instance_id: str, operation: str, pending: InstanceStatus, reason: str
    ) -> None:
        logger.error(
            "Transition failed",
            extra={
                "event": LogEvent.TRANSITION_FAILED,
                "instance_id": instance_id,
                "operation": operation,
                "from": pending,
                "error": reason,
            },
        )
        try:
            await self._store.update(instance_id, status=InstanceStatus.ERROR)
        except Exception:
            logger.exception(
                "Failed to record ERROR status",
                extra={"event": LogEvent.DB_ERROR, "instance_id": instance_id},
            )

    def _forget(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        # Mark the outcome retrieved when the caller was cancelled
        if not task.cancelled():
            task.exception()

    async def drain(self) -> None:
        """Wait for driver sequences whose callers were cancelled."""
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    @asynccontextmanager
    async def _measure(self, operation: str) -> AsyncIterator[None]:
        start = time.monotonic()
        try:
            yield
        except _REJECTIONS:
            LIFECYCLE_TRANSITIONS.labels(operation=operation, result="rejected").inc()
            raise
        except BaseException:
            LIFECYCLE_TRANSITIONS.labels(operation=operation, result="failure").inc()
            raise
        else:
            LIFECYCLE_TRANSITIONS.labels(operation=operation, result="success").inc()
        finally:
            LIFECYCLE_DURATION.labels(operation=operation).observe(time.monotonic() - start)

    def _workload_spec(self, instance: Instance) -> WorkloadSpec:
        naming = self._naming
        runtime = self._runtime
        return WorkloadSpec(
            name=naming.container_name(instance.id),
            image=runtime.image,
            port=instance.port,
            env={
                "NODE_ENV": runtime.node_env,
                "PORT": str(instance.port),
                "INSTANCE_ID": instance.id,
                "USER_ID": instance.owner_user_id,
                "ORGANIZATION_ID": instance.organization_id or "",
            },
            volumes=[
                VolumeBinding(volume=naming.data_volume(instance.id), target=runtime.data_mount),
                VolumeBinding(volume=naming.assets_volume(instance.id), target=runtime.assets_mount),
            ],
            resources=ResourceLimits(
                memory_bytes=runtime.memory_bytes,
                cpu_shares=runtime.cpu_shares,
                memory_swap=runtime.memory_swap,
            ),
            labels=naming.labels(instance.id, instance.owner_user_id, instance.organization_id),
            restart_policy=runtime.restart_policy,
        )
