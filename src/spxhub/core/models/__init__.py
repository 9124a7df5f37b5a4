"""Persistence models."""

from spxhub.core.models.instance import Instance, InstanceView

__all__ = ["Instance", "InstanceView"]
