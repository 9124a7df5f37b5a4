"""SQL instance store implementation."""

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import col

from spxhub.core.domain import InstanceStatus
from spxhub.core.errors import InstanceNotFoundError, PortConflictError
from spxhub.core.interfaces import InstanceStore
from spxhub.core.logging_schema import LogEvent
from spxhub.core.models import Instance

logger = logging.getLogger(__name__)

_IMMUTABLE_FIELDS = frozenset({"id", "port", "created_at"})


class SqlInstanceStore(InstanceStore):
    """InstanceStore backed by SQLModel/SQLAlchemy async sessions.

    One short session per call; the unique constraint on ``port`` is
    surfaced as PortConflictError.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def add(self, instance: Instance) -> Instance:
        async with self._session_factory() as session:
            session.add(instance)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                logger.warning(
                    "Port already recorded",
                    extra={"event": LogEvent.PORT_CONFLICT, "port": instance.port, "error": str(e)},
                )
                raise PortConflictError(instance.port) from e
            await session.refresh(instance)
            return instance

    async def get(self, instance_id: str) -> Instance | None:
        async with self._session_factory() as session:
            return await session.get(Instance, instance_id)

    async def update(self, instance_id: str, **fields: Any) -> Instance:
        illegal = _IMMUTABLE_FIELDS & fields.keys()
        if illegal:
            raise ValueError(f"Immutable fields cannot be updated: {sorted(illegal)}")

        async with self._session_factory() as session:
            instance = await session.get(Instance, instance_id, with_for_update=True)
            if instance is None:
                raise InstanceNotFoundError()
            for key, value in fields.items():
                setattr(instance, key, value)
            instance.updated_at = datetime.now(UTC)
            await session.commit()
            await session.refresh(instance)
            return instance

    async def delete(self, instance_id: str) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(Instance).where(col(Instance.id) == instance_id))
            await session.commit()

    async def list_ports(self) -> set[int]:
        async with self._session_factory() as session:
            result = await session.execute(select(Instance.port))
            return {row[0] for row in result.all()}

    async def list_by_status(self, *statuses: InstanceStatus) -> list[Instance]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Instance).where(col(Instance.status).in_([s.value for s in statuses]))
            )
            return list(result.scalars().all())

    async def list_by_owner(self, owner_user_id: str) -> list[Instance]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Instance)
                .where(Instance.owner_user_id == owner_user_id)
                .order_by(col(Instance.created_at).desc())
            )
            return list(result.scalars().all())

    async def count_by_owner(self, owner_user_id: str) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count())
                .select_from(Instance)
                .where(Instance.owner_user_id == owner_user_id)
            )
            return int(result.scalar_one())
