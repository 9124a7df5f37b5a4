"""Instance record store interface."""

from abc import ABC, abstractmethod
from typing import Any

from spxhub.core.domain import InstanceStatus
from spxhub.core.models import Instance


class InstanceStore(ABC):
    """Create/read/update/delete access to Instance records.

    Implementations: SqlInstanceStore
    """

    @abstractmethod
    async def add(self, instance: Instance) -> Instance:
        """Insert a new record.

        Raises:
            PortConflictError: instance.port is already recorded
        """
        ...

    @abstractmethod
    async def get(self, instance_id: str) -> Instance | None:
        """Fetch a record, or None if it does not exist."""
        ...

    @abstractmethod
    async def update(self, instance_id: str, **fields: Any) -> Instance:
        """Update fields (and updated_at) of a record.

        Raises:
            InstanceNotFoundError: record does not exist
        """
        ...

    @abstractmethod
    async def delete(self, instance_id: str) -> None:
        """Delete a record. Deleting a missing record is not an error."""
        ...

    @abstractmethod
    async def list_ports(self) -> set[int]:
        """All ports currently recorded."""
        ...

    @abstractmethod
    async def list_by_status(self, *statuses: InstanceStatus) -> list[Instance]:
        """Records whose status is one of ``statuses``."""
        ...

    @abstractmethod
    async def list_by_owner(self, owner_user_id: str) -> list[Instance]:
        """Records owned by a user, newest first."""
        ...

    @abstractmethod
    async def count_by_owner(self, owner_user_id: str) -> int:
        """Number of records owned by a user."""
        ...
