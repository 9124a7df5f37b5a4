"""Instance-scoped locks for lifecycle operations."""

import asyncio


class InstanceLocks:
    """Registry of per-instance locks plus the global allocation lock.

    start/stop/restart/delete/backup and reconciler ERROR writes for the
    same instance all take ``for_instance(instance_id)``, so only one
    status transition per instance runs at a time. Different instances
    proceed in parallel.

    ``allocation`` serializes port allocation (read used ports, then insert).
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self.allocation = asyncio.Lock()

    def for_instance(self, instance_id: str) -> asyncio.Lock:
        """Get or create the lock for an instance."""
        lock = self._locks.get(instance_id)
        if lock is None:
            lock = self._locks[instance_id] = asyncio.Lock()
        return lock

    def discard(self, instance_id: str) -> None:
        """Forget the lock of a deleted instance if nobody holds it."""
        lock = self._locks.get(instance_id)
        if lock is not None and not lock.locked():
            del self._locks[instance_id]

    def __len__(self) -> int:
        return len(self._locks)
