"""Shared fixtures for spxhub unit tests."""

import pytest

from spxhub.config import (
    DockerConfig,
    LifecycleConfig,
    PortConfig,
    ReconcilerConfig,
    RuntimeConfig,
)
from spxhub.core.locks import InstanceLocks
from spxhub.core.naming import ResourceNaming
from spxhub.core.ports import PortAllocator
from spxhub.services.instance_service import InstanceLifecycleManager
from tests.unit.fakes import FakeWorkloadDriver, InMemoryInstanceStore


@pytest.fixture
def runtime_config() -> RuntimeConfig:
    return RuntimeConfig(image="spx-gc:test", backup_image="alpine:test")


@pytest.fixture
def docker_config() -> DockerConfig:
    return DockerConfig(host="tcp://docker:2375", stop_grace_period=30, job_timeout=60)


@pytest.fixture
def lifecycle_config() -> LifecycleConfig:
    return LifecycleConfig(operation_timeout=5.0)


@pytest.fixture
def port_config() -> PortConfig:
    return PortConfig()


@pytest.fixture
def reconciler_config() -> ReconcilerConfig:
    return ReconcilerConfig(interval=0.01, sweep_interval=0.0, concurrency=4)


@pytest.fixture
def naming(runtime_config: RuntimeConfig) -> ResourceNaming:
    return ResourceNaming(runtime_config)


@pytest.fixture
def store() -> InMemoryInstanceStore:
    return InMemoryInstanceStore()


@pytest.fixture
def driver() -> FakeWorkloadDriver:
    return FakeWorkloadDriver()


@pytest.fixture
def locks() -> InstanceLocks:
    return InstanceLocks()


@pytest.fixture
def manager(
    store: InMemoryInstanceStore,
    driver: FakeWorkloadDriver,
    locks: InstanceLocks,
    naming: ResourceNaming,
    runtime_config: RuntimeConfig,
    lifecycle_config: LifecycleConfig,
    docker_config: DockerConfig,
    port_config: PortConfig,
) -> InstanceLifecycleManager:
    return InstanceLifecycleManager(
        store=store,
        driver=driver,
        locks=locks,
        allocator=PortAllocator(port_config.base, port_config.max),
        naming=naming,
        runtime=runtime_config,
        lifecycle=lifecycle_config,
        docker=docker_config,
        ports=port_config,
    )
