"""Unit tests for logging setup."""

import json
import logging
from collections.abc import Iterator

import pytest

from spxhub.config import LoggingConfig, ReconcilerConfig
from spxhub.control.reconciler import HealthReconciler
from spxhub.core.domain import InstanceStatus
from spxhub.core.logging_schema import LogEvent
from spxhub.core.naming import ResourceNaming
from spxhub.logging import (
    ControlPlaneJsonFormatter,
    ControlPlaneTextFormatter,
    EventRateLimitFilter,
    setup_logging,
)
from spxhub.services.instance_service import InstanceLifecycleManager
from tests.unit.fakes import FailingInspectDriver, InMemoryInstanceStore, make_instance


def _record(msg: str, level: int = logging.WARNING, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord("spxhub.test", level, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class Collector(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


class TestEventRateLimitFilter:
    def test_repeated_drift_for_one_instance_suppressed(self) -> None:
        log_filter = EventRateLimitFilter(window=60, clock=FakeClock())

        assert log_filter.filter(_record("Drift", event=LogEvent.DRIFT_DETECTED, instance_id="a"))
        assert not log_filter.filter(
            _record("Drift", event=LogEvent.DRIFT_DETECTED, instance_id="a")
        )

    def test_instances_throttled_independently(self) -> None:
        log_filter = EventRateLimitFilter(window=60, clock=FakeClock())

        assert log_filter.filter(_record("Drift", event=LogEvent.DRIFT_DETECTED, instance_id="a"))
        assert log_filter.filter(_record("Drift", event=LogEvent.DRIFT_DETECTED, instance_id="b"))

    def test_other_events_pass(self) -> None:
        log_filter = EventRateLimitFilter(window=60, clock=FakeClock())

        for _ in range(3):
            assert log_filter.filter(
                _record("Started", event=LogEvent.INSTANCE_STARTED, instance_id="a")
            )
            assert log_filter.filter(_record("no event"))

    def test_errors_pass(self) -> None:
        log_filter = EventRateLimitFilter(window=60, clock=FakeClock())

        for _ in range(2):
            assert log_filter.filter(
                _record("x", level=logging.ERROR, event=LogEvent.DRIVER_ERROR, workload="w")
            )

    def test_key_count_bounded(self) -> None:
        log_filter = EventRateLimitFilter(window=60, max_keys=10, clock=FakeClock())

        for i in range(50):
            log_filter.filter(_record("Drift", event=LogEvent.DRIFT_DETECTED, instance_id=str(i)))

        assert len(log_filter._seen) == 10


class TestReconcilerWarnings:
    """Throttling applied to what a reconcile pass actually logs."""

    @pytest.fixture
    def collector(self) -> Iterator[tuple[Collector, FakeClock]]:
        clock = FakeClock()
        collector = Collector()
        collector.addFilter(EventRateLimitFilter(window=60, clock=clock))
        reconciler_logger = logging.getLogger("spxhub.control.reconciler")
        level = reconciler_logger.level
        reconciler_logger.addHandler(collector)
        reconciler_logger.setLevel(logging.DEBUG)
        yield collector, clock
        reconciler_logger.removeHandler(collector)
        reconciler_logger.setLevel(level)

    async def test_unreachable_runtime_logged_once_per_instance(
        self,
        collector: tuple[Collector, FakeClock],
        store: InMemoryInstanceStore,
        manager: InstanceLifecycleManager,
        naming: ResourceNaming,
        reconciler_config: ReconcilerConfig,
    ) -> None:
        handler, clock = collector
        driver = FailingInspectDriver({naming.container_name("a"), naming.container_name("b")})
        reconciler = HealthReconciler(store, driver, manager, naming, reconciler_config)
        await store.add(make_instance("a", port=5656, status=InstanceStatus.RUNNING))
        await store.add(make_instance("b", port=5657, status=InstanceStatus.RUNNING))

        for _ in range(3):
            await reconciler.reconcile()

        failures = [
            r for r in handler.records if getattr(r, "event", None) == LogEvent.OPERATION_FAILED
        ]
        assert sorted(r.instance_id for r in failures) == ["a", "b"]

        clock.now += 61
        await reconciler.reconcile()

        failures = [
            r for r in handler.records if getattr(r, "event", None) == LogEvent.OPERATION_FAILED
        ]
        assert len(failures) == 4
        assert [r.suppressed for r in failures[2:]] == [2, 2]


class TestFormatters:
    def test_json_context_fields(self) -> None:
        formatter = ControlPlaneJsonFormatter(LoggingConfig(service_name="spxhub-test"))

        payload = json.loads(
            formatter.format(
                _record("Started", event=LogEvent.INSTANCE_STARTED, instance_id="a", port=5656)
            )
        )

        assert payload["message"] == "Started"
        assert payload["level"] == "WARNING"
        assert payload["logger"] == "spxhub.test"
        assert payload["service"] == "spxhub-test"
        assert payload["event"] == "instance_started"
        assert payload["instance_id"] == "a"
        assert payload["workload"] is None
        assert payload["operation"] is None
        assert payload["port"] == 5656
        assert "timestamp" in payload

    def test_text_appends_context(self) -> None:
        formatter = ControlPlaneTextFormatter()

        line = formatter.format(
            _record("Drift", event=LogEvent.DRIFT_DETECTED, instance_id="a", suppressed=3)
        )

        assert line.endswith("Drift [event=drift_detected instance_id=a suppressed=3]")

    def test_text_without_context(self) -> None:
        line = ControlPlaneTextFormatter().format(_record("plain"))

        assert line.endswith("spxhub.test plain")


class TestSetupLogging:
    @pytest.fixture(autouse=True)
    def restore_root(self) -> Iterator[None]:
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_json_format(self) -> None:
        setup_logging(LoggingConfig(format="json", level="DEBUG"))

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, ControlPlaneJsonFormatter)
        assert any(isinstance(f, EventRateLimitFilter) for f in root.handlers[0].filters)

    def test_unknown_level_falls_back_to_info(self) -> None:
        setup_logging(LoggingConfig(level="chatty"))

        assert logging.getLogger().level == logging.INFO
        assert isinstance(logging.getLogger().handlers[0].formatter, ControlPlaneTextFormatter)
