"""Health reconciler - recorded RUNNING vs observed workload state.

Algorithm:
1. Load every record with status RUNNING
2. inspect each workload concurrently (bounded by a semaphore)
3. Observed state not ``running`` -> mark_error (instance lock, re-check
   of both the record status and the workload)
4. A failure on one instance is logged and counted, the pass continues

Drift correction is one-directional: observed-down overrides recorded-up,
observed-up never promotes a STOPPED or ERROR record.

The sweep removes exited/dead instance workloads that no RUNNING or
STARTING record claims.
"""

import asyncio
import logging
import time

from pydantic import BaseModel

from spxhub.config import ReconcilerConfig
from spxhub.core.domain import ACTIVE_STATUSES, InstanceStatus, WorkloadState
from spxhub.core.interfaces import InstanceStore, WorkloadDriver
from spxhub.core.logging_schema import LogEvent
from spxhub.core.models import Instance
from spxhub.core.naming import ResourceNaming
from spxhub.metrics import (
    INSTANCES_RUNNING,
    RECONCILE_DRIFT,
    RECONCILE_DURATION,
    RECONCILE_FAILURES,
    SWEEP_REMOVED,
)
from spxhub.services.instance_service import InstanceLifecycleManager

logger = logging.getLogger(__name__)


class ReconcileResult(BaseModel):
    """Outcome of one reconcile pass."""

    checked: int = 0
    marked_error: list[str] = []
    failed: list[str] = []


class HealthReconciler:
    """Periodically demotes RUNNING records whose workload is gone."""

    def __init__(
        self,
        store: InstanceStore,
        driver: WorkloadDriver,
        manager: InstanceLifecycleManager,
        naming: ResourceNaming,
        config: ReconcilerConfig,
    ) -> None:
        self._store = store
        self._driver = driver
        self._manager = manager
        self._naming = naming
        self._config = config
        self._semaphore = asyncio.Semaphore(config.concurrency)
        self._stopped = asyncio.Event()
        self._last_sweep: float | None = None

    async def reconcile(self) -> ReconcileResult:
        """Run one reconcile pass over RUNNING records."""
        start = time.monotonic()
        instances = await self._store.list_by_status(InstanceStatus.RUNNING)
        INSTANCES_RUNNING.set(len(instances))

        outcomes = await asyncio.gather(*(self._check(i) for i in instances))

        result = ReconcileResult(checked=len(instances))
        for instance, outcome in zip(instances, outcomes, strict=True):
            if outcome is None:
                result.failed.append(instance.id)
            elif outcome:
                result.marked_error.append(instance.id)

        duration = time.monotonic() - start
        duration_ms = duration * 1000
        RECONCILE_DURATION.observe(duration)

        extra = {
            "event": LogEvent.RECONCILE_COMPLETE,
            "checked": result.checked,
            "marked_error": len(result.marked_error),
            "failed": len(result.failed),
            "duration_ms": round(duration_ms, 1),
        }
        if duration_ms > self._config.slow_threshold_ms:
            extra["event"] = LogEvent.RECONCILE_SLOW
            logger.warning("Reconcile pass slow", extra=extra)
        elif result.marked_error or result.failed:
            logger.info("Reconcile pass complete", extra=extra)
        else:
            logger.debug("Reconcile pass complete", extra=extra)
        return result

    async def _check(self, instance: Instance) -> bool | None:
        """Returns True if ERROR was written, False if healthy, None on failure."""
        try:
            async with self._semaphore:
                state = await self._driver.inspect(self._naming.container_name(instance.id))
            if state == WorkloadState.RUNNING:
                return False

            RECONCILE_DRIFT.inc()
            logger.warning(
                "Drift detected",
                extra={
                    "event": LogEvent.DRIFT_DETECTED,
                    "instance_id": instance.id,
                    "observed": state,
                },
            )
            return await self._manager.mark_error(instance.id, expected=InstanceStatus.RUNNING)
        except Exception as exc:
            RECONCILE_FAILURES.inc()
            logger.warning(
                "Reconcile failed for instance",
                extra={
                    "event": LogEvent.OPERATION_FAILED,
                    "instance_id": instance.id,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            return None

    async def sweep(self) -> list[str]:
        """Remove exited instance workloads not claimed by an active record."""
        active = await self._store.list_by_status(*ACTIVE_STATUSES)
        keep = frozenset(self._naming.container_name(i.id) for i in active)
        removed = await self._driver.remove_if_exited(self._naming.instance_label, keep=keep)
        SWEEP_REMOVED.inc(len(removed))
        if removed:
            logger.info(
                "Sweep removed exited workloads",
                extra={"event": LogEvent.SWEEP_COMPLETED, "removed": removed},
            )
        return removed

    async def tick(self) -> None:
        """Reconcile, and sweep when the sweep interval has elapsed."""
        await self.reconcile()
        now = time.monotonic()
        if self._last_sweep is None or now - self._last_sweep >= self._config.sweep_interval:
            self._last_sweep = now
            await self.sweep()

    async def run(self) -> None:
        """Main reconciler loop, until stop()."""
        logger.info(
            "Starting health reconciler",
            extra={"event": LogEvent.APP_STARTED, "interval": self._config.interval},
        )
        while not self._stopped.is_set():
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(
                    "Error in reconcile tick: %s",
                    e,
                    extra={"event": LogEvent.CONTROL_PLANE_ERROR},
                )
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self._config.interval)
            except TimeoutError:
                pass
        logger.info("Health reconciler stopped", extra={"event": LogEvent.APP_STOPPED})

    def stop(self) -> None:
        self._stopped.set()
