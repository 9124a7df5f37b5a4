"""Instance record store adapters."""

from spxhub.adapters.store.sql import SqlInstanceStore

__all__ = ["SqlInstanceStore"]
