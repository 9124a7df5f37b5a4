"""Unit tests for domain enums and the instance view."""

import pytest

from spxhub.core.domain import InstanceStatus, WorkloadState
from spxhub.core.models import InstanceView
from tests.unit.fakes import make_instance


class TestWorkloadStateFromRuntime:
    """Raw runtime strings are mapped onto the closed enum."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("running", WorkloadState.RUNNING),
            ("exited", WorkloadState.EXITED),
            ("Dead", WorkloadState.DEAD),
            ("created", WorkloadState.CREATED),
            ("restarting", WorkloadState.RESTARTING),
            ("paused", WorkloadState.PAUSED),
            ("removing", WorkloadState.REMOVING),
        ],
    )
    def test_known_states(self, raw: str, expected: WorkloadState) -> None:
        assert WorkloadState.from_runtime(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "hibernating"])
    def test_unknown_states(self, raw: str | None) -> None:
        assert WorkloadState.from_runtime(raw) == WorkloadState.UNKNOWN


class TestInstanceView:
    """Tests for InstanceView.from_record."""

    def test_from_record(self) -> None:
        instance = make_instance(status=InstanceStatus.RUNNING)
        instance.config = {"theme": "dark"}

        view = InstanceView.from_record(instance, WorkloadState.RUNNING)

        assert view.id == instance.id
        assert view.port == 5656
        assert view.status == InstanceStatus.RUNNING
        assert view.runtime_state == WorkloadState.RUNNING
        assert view.config == {"theme": "dark"}
