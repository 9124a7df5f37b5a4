"""Control plane wiring.

Constructs every component explicitly from a Settings object. Nothing here
is a module-level singleton; the owner calls start() and close().
"""

import logging

from spxhub.adapters.driver import DockerWorkloadDriver
from spxhub.adapters.store import SqlInstanceStore
from spxhub.config import Settings
from spxhub.control import HealthReconciler
from spxhub.core.interfaces import InstanceStore, WorkloadDriver
from spxhub.core.locks import InstanceLocks
from spxhub.core.logging_schema import LogEvent
from spxhub.core.naming import ResourceNaming
from spxhub.core.ports import PortAllocator
from spxhub.infra import Database, DockerClient
from spxhub.services import InstanceLifecycleManager, MetricsBackupAdapter

logger = logging.getLogger(__name__)


class ControlPlane:
    """Lifecycle manager, metrics adapter and reconciler over one store and driver.

    ``store`` and ``driver`` may be injected; otherwise a SQL store and a
    Docker driver are built from settings and owned by this object.
    """

    def __init__(
        self,
        settings: Settings,
        store: InstanceStore | None = None,
        driver: WorkloadDriver | None = None,
    ) -> None:
        self.settings = settings
        self._database: Database | None = None

        if store is None:
            self._database = Database(settings.database)
        self._store = store
        self.driver = driver or DockerWorkloadDriver(DockerClient(settings.docker))

        self.locks = InstanceLocks()
        self.naming = ResourceNaming(settings.runtime)
        self.allocator = PortAllocator(settings.port.base, settings.port.max)
        self._manager: InstanceLifecycleManager | None = None
        self._metrics: MetricsBackupAdapter | None = None
        self._reconciler: HealthReconciler | None = None
        if store is not None:
            self._build(store)

    def _build(self, store: InstanceStore) -> None:
        settings = self.settings
        self._store = store
        self._manager = InstanceLifecycleManager(
            store=store,
            driver=self.driver,
            locks=self.locks,
            allocator=self.allocator,
            naming=self.naming,
            runtime=settings.runtime,
            lifecycle=settings.lifecycle,
            docker=settings.docker,
            ports=settings.port,
        )
        self._metrics = MetricsBackupAdapter(
            store=store,
            driver=self.driver,
            locks=self.locks,
            naming=self.naming,
            runtime=settings.runtime,
            docker=settings.docker,
        )
        self._reconciler = HealthReconciler(
            store=store,
            driver=self.driver,
            manager=self._manager,
            naming=self.naming,
            config=settings.reconciler,
        )

    @property
    def store(self) -> InstanceStore:
        if self._store is None:
            raise RuntimeError("ControlPlane not started. Call start() first.")
        return self._store

    @property
    def instances(self) -> InstanceLifecycleManager:
        if self._manager is None:
            raise RuntimeError("ControlPlane not started. Call start() first.")
        return self._manager

    @property
    def metrics(self) -> MetricsBackupAdapter:
        if self._metrics is None:
            raise RuntimeError("ControlPlane not started. Call start() first.")
        return self._metrics

    @property
    def reconciler(self) -> HealthReconciler:
        if self._reconciler is None:
            raise RuntimeError("ControlPlane not started. Call start() first.")
        return self._reconciler

    async def start(self) -> None:
        """Connect the database (when owned) and build the services."""
        if self._database is not None and self._manager is None:
            await self._database.init()
            self._build(SqlInstanceStore(self._database.session_factory))
        logger.info("Control plane started", extra={"event": LogEvent.APP_STARTED})

    async def close(self) -> None:
        """Stop the reconciler, wait for in-flight transitions, release clients."""
        if self._reconciler is not None:
            self._reconciler.stop()
        if self._manager is not None:
            await self._manager.drain()
        await self.driver.close()
        if self._database is not None:
            await self._database.close()
        logger.info("Control plane closed", extra={"event": LogEvent.APP_STOPPED})

    async def __aenter__(self) -> "ControlPlane":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
