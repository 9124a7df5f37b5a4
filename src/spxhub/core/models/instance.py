"""Instance record model."""

from datetime import datetime

from pydantic import BaseModel
from sqlalchemy import JSON, Column, DateTime, Index, Integer, String
from sqlmodel import Field, SQLModel

from spxhub.core.domain import InstanceStatus, WorkloadState


class Instance(SQLModel, table=True):
    """One customer-facing deployment.

    ``port`` is assigned once at creation and never changes; the unique
    constraint backs the allocator's retry loop.
    """

    __tablename__ = "instances"

    id: str = Field(primary_key=True)
    name: str = Field(max_length=100)
    description: str | None = Field(default=None, max_length=500)
    port: int = Field(sa_column=Column(Integer, nullable=False, unique=True))
    status: InstanceStatus = Field(default=InstanceStatus.STOPPED, sa_type=String)
    config: dict = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False, default=dict),
    )

    owner_user_id: str = Field(index=True)
    organization_id: str | None = Field(default=None, index=True)

    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))

    __table_args__ = (
        # Reconciler target query
        Index("idx_instances_status", "status"),
    )


class InstanceView(BaseModel):
    """Instance projection enriched with the observed runtime state."""

    id: str
    name: str
    description: str | None
    port: int
    status: InstanceStatus
    runtime_state: WorkloadState
    config: dict
    owner_user_id: str
    organization_id: str | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, instance: Instance, runtime_state: WorkloadState) -> "InstanceView":
        return cls(
            id=instance.id,
            name=instance.name,
            description=instance.description,
            port=instance.port,
            status=InstanceStatus(instance.status),
            runtime_state=runtime_state,
            config=dict(instance.config or {}),
            owner_user_id=instance.owner_user_id,
            organization_id=instance.organization_id,
            created_at=instance.created_at,
            updated_at=instance.updated_at,
        )
