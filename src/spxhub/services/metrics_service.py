"""Instance metrics and data backups."""

import asyncio
import logging
import time
from datetime import UTC, datetime

from pydantic import BaseModel

from spxhub.config import DockerConfig, RuntimeConfig
from spxhub.core.domain import InstanceStatus
from spxhub.core.errors import BackupFailedError, InstanceNotFoundError
from spxhub.core.interfaces import InstanceStore, VolumeBinding, WorkloadDriver, WorkloadSpec
from spxhub.core.locks import InstanceLocks
from spxhub.core.logging_schema import LogEvent
from spxhub.core.models import Instance
from spxhub.core.naming import ResourceNaming
from spxhub.metrics import LIFECYCLE_DURATION, LIFECYCLE_TRANSITIONS

logger = logging.getLogger(__name__)

_DATA_MOUNT = "/data"
_BACKUP_MOUNT = "/backup"


class InstanceMetrics(BaseModel):
    """Utilization of one instance workload."""

    instance_id: str
    cpu_percent: float
    memory_percent: float
    network_rx_bytes: int
    network_tx_bytes: int
    uptime: float


class BackupResult(BaseModel):
    """Location of a completed data snapshot."""

    instance_id: str
    volume: str
    archive: str
    created_at: datetime
    duration_ms: int


def _utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=UTC)


class MetricsBackupAdapter:
    """Reads runtime stats and runs backup jobs for instances."""

    def __init__(
        self,
        store: InstanceStore,
        driver: WorkloadDriver,
        locks: InstanceLocks,
        naming: ResourceNaming,
        runtime: RuntimeConfig,
        docker: DockerConfig,
    ) -> None:
        self._store = store
        self._driver = driver
        self._locks = locks
        self._naming = naming
        self._backup_image = runtime.backup_image
        self._job_timeout = docker.job_timeout

    async def _get(self, instance_id: str) -> Instance:
        instance = await self._store.get(instance_id)
        if instance is None:
            raise InstanceNotFoundError()
        return instance

    async def metrics(self, instance_id: str) -> InstanceMetrics:
        """Current utilization; uptime counts from creation while RUNNING."""
        instance = await self._get(instance_id)
        stats = await self._driver.stats(self._naming.container_name(instance_id))

        uptime = 0.0
        if instance.status == InstanceStatus.RUNNING:
            uptime = max(0.0, (datetime.now(UTC) - _utc(instance.created_at)).total_seconds())

        return InstanceMetrics(
            instance_id=instance_id,
            cpu_percent=stats.cpu_percent,
            memory_percent=stats.memory_percent,
            network_rx_bytes=stats.network_rx_bytes,
            network_tx_bytes=stats.network_tx_bytes,
            uptime=uptime,
        )

    async def backup(self, instance_id: str) -> BackupResult:
        """Snapshot the data volume into the backup volume.

        Runs a short-lived tar job with the data volume mounted read-only.
        Holds the instance lock so a delete cannot run concurrently.

        Raises:
            InstanceNotFoundError: record does not exist
            BackupFailedError: the job exited non-zero
            DriverFailureError: the job could not be run
        """
        start = time.monotonic()
        result = "failure"
        try:
            async with self._locks.for_instance(instance_id):
                await self._get(instance_id)
                backup = await self._run_backup(instance_id)
            result = "success"
            return backup
        except InstanceNotFoundError:
            result = "rejected"
            raise
        except asyncio.CancelledError:
            logger.warning(
                "Backup cancelled",
                extra={"event": LogEvent.BACKUP_CANCELLED, "instance_id": instance_id},
            )
            raise
        finally:
            LIFECYCLE_TRANSITIONS.labels(operation="backup", result=result).inc()
            LIFECYCLE_DURATION.labels(operation="backup").observe(time.monotonic() - start)

    async def _run_backup(self, instance_id: str) -> BackupResult:
        created_at = datetime.now(UTC)
        stamp = created_at.strftime("%Y%m%dT%H%M%S%fZ")
        archive = f"data-{stamp}.tar.gz"
        volume = self._naming.backup_volume(instance_id)

        spec = WorkloadSpec(
            name=self._naming.backup_job_name(instance_id, stamp),
            image=self._backup_image,
            cmd=["tar", "czf", f"{_BACKUP_MOUNT}/{archive}", "-C", _DATA_MOUNT, "."],
            volumes=[
                VolumeBinding(
                    volume=self._naming.data_volume(instance_id),
                    target=_DATA_MOUNT,
                    read_only=True,
                ),
                VolumeBinding(volume=volume, target=_BACKUP_MOUNT),
            ],
            labels={self._naming.job_label: "backup"},
        )

        start = time.monotonic()
        exit_code = await self._driver.run_to_completion(spec, timeout=self._job_timeout)
        duration_ms = int((time.monotonic() - start) * 1000)

        if exit_code != 0:
            logger.error(
                "Backup failed",
                extra={
                    "event": LogEvent.BACKUP_FAILED,
                    "instance_id": instance_id,
                    "exit_code": exit_code,
                    "duration_ms": duration_ms,
                },
            )
            raise BackupFailedError(f"Backup job exited with code {exit_code}", exit_code=exit_code)

        logger.info(
            "Backup completed",
            extra={
                "event": LogEvent.BACKUP_COMPLETED,
                "instance_id": instance_id,
                "archive": archive,
                "duration_ms": duration_ms,
            },
        )
        return BackupResult(
            instance_id=instance_id,
            volume=volume,
            archive=archive,
            created_at=created_at,
            duration_ms=duration_ms,
        )
