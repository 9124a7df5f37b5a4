"""Resource naming utilities for instance workloads."""

from spxhub.config import RuntimeConfig


class ResourceNaming:
    """Centralized naming conventions for Docker resources."""

    CONTAINER_PREFIX = "instance-"

    def __init__(self, config: RuntimeConfig) -> None:
        self._namespace = config.label_namespace

    @property
    def instance_label(self) -> str:
        return f"{self._namespace}.instance.id"

    @property
    def user_label(self) -> str:
        return f"{self._namespace}.user.id"

    @property
    def organization_label(self) -> str:
        return f"{self._namespace}.organization.id"

    @property
    def job_label(self) -> str:
        return f"{self._namespace}.job"

    def container_name(self, instance_id: str) -> str:
        return f"{self.CONTAINER_PREFIX}{instance_id}"

    def data_volume(self, instance_id: str) -> str:
        return f"data-{instance_id}"

    def assets_volume(self, instance_id: str) -> str:
        return f"assets-{instance_id}"

    def backup_volume(self, instance_id: str) -> str:
        return f"backup-{instance_id}"

    def backup_job_name(self, instance_id: str, stamp: str) -> str:
        return f"backup-{self.container_name(instance_id)}-{stamp}"

    def labels(
        self, instance_id: str, user_id: str, organization_id: str | None
    ) -> dict[str, str]:
        return {
            self.instance_label: instance_id,
            self.user_label: user_id,
            self.organization_label: organization_id or "",
        }
