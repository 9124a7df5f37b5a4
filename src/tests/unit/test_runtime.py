"""Unit tests for ControlPlane wiring."""

import asyncio
from pathlib import Path

import pytest

from spxhub.config import DatabaseConfig, Settings
from spxhub.core.domain import InstanceStatus
from spxhub.runtime import ControlPlane
from tests.unit.fakes import FakeWorkloadDriver, InMemoryInstanceStore


class TestInjectedStore:
    """ControlPlane over an injected store."""

    async def test_services_available_immediately(self) -> None:
        store = InMemoryInstanceStore()
        plane = ControlPlane(Settings(), store=store, driver=FakeWorkloadDriver())

        assert plane.store is store
        assert plane.instances is not None
        assert plane.metrics is not None
        assert plane.reconciler is not None

    async def test_close_drains_and_closes_driver(self) -> None:
        store = InMemoryInstanceStore()
        driver = FakeWorkloadDriver()
        driver.start_gate = asyncio.Event()
        plane = ControlPlane(Settings(), store=store, driver=driver)
        instance = await plane.instances.create("x", None, None, "user-1", None)

        caller = asyncio.create_task(plane.instances.start(instance.id))
        await asyncio.sleep(0.01)
        caller.cancel()
        driver.start_gate.set()

        await plane.close()
        with pytest.raises(asyncio.CancelledError):
            await caller

        assert driver.closed is True
        assert (await store.get(instance.id)).status == InstanceStatus.RUNNING


class TestOwnedDatabase:
    """ControlPlane owning a SQL store."""

    async def test_services_require_start(self, tmp_path: Path) -> None:
        settings = Settings(
            database=DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'plane.db'}")
        )
        plane = ControlPlane(settings, driver=FakeWorkloadDriver())

        with pytest.raises(RuntimeError):
            plane.instances

    async def test_lifecycle_over_sql(self, tmp_path: Path) -> None:
        settings = Settings(
            database=DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'plane.db'}")
        )
        driver = FakeWorkloadDriver()

        async with ControlPlane(settings, driver=driver) as plane:
            instance = await plane.instances.create("x", None, None, "user-1", None)
            await plane.instances.start(instance.id)
            running = await plane.instances.get(instance.id)

            assert running.status == InstanceStatus.RUNNING
            assert running.port == settings.port.base

        assert driver.closed is True
