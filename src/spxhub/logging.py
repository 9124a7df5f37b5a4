"""Logging configuration for spxhub.

Two output formats:
- text: one line per record, event and instance context appended
- json: structured records for log aggregation

Every record carries the same context keys (event, instance_id, workload,
operation) so aggregation can index them whether or not a call site set
them.
"""

import logging
import sys
import time
from collections import OrderedDict
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from pythonjsonlogger import json as jsonlogger

from spxhub.config import LoggingConfig
from spxhub.core.logging_schema import LogEvent

CONTEXT_FIELDS = ("event", "instance_id", "workload", "operation")

# Events a reconcile pass can repeat for the same instance every interval
THROTTLED_EVENTS = frozenset(
    {
        LogEvent.DRIFT_DETECTED,
        LogEvent.OPERATION_FAILED,
        LogEvent.DRIVER_ERROR,
    }
)


class EventRateLimitFilter(logging.Filter):
    """Throttle repeated per-instance events.

    A record whose ``event`` is in ``events`` passes at most once per
    ``window`` seconds for each (event, instance) pair, where the instance
    is ``instance_id`` or else ``workload``. Records without such an event,
    and ERROR or above, always pass. The first record let through after a
    quiet window carries ``suppressed``: how many were dropped before it.
    """

    def __init__(
        self,
        window: float = 60.0,
        events: frozenset[str] = THROTTLED_EVENTS,
        max_keys: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__()
        self._window = window
        self._events = events
        self._max_keys = max_keys
        self._clock = clock
        # key -> (last emitted at, suppressed since)
        self._seen: OrderedDict[tuple[str, str], tuple[float, int]] = OrderedDict()

    def filter(self, record: logging.LogRecord) -> bool:
        event = getattr(record, "event", None)
        if record.levelno >= logging.ERROR or event not in self._events:
            return True

        subject = getattr(record, "instance_id", None) or getattr(record, "workload", "")
        key = (str(event), str(subject))
        now = self._clock()

        seen = self._seen.get(key)
        if seen is not None and now - seen[0] < self._window:
            self._seen[key] = (seen[0], seen[1] + 1)
            return False

        if seen is not None and seen[1]:
            record.suppressed = seen[1]
        self._seen[key] = (now, 0)
        self._seen.move_to_end(key)
        while len(self._seen) > self._max_keys:
            self._seen.popitem(last=False)
        return True


class ControlPlaneJsonFormatter(jsonlogger.JsonFormatter):
    """JSON records with service identity and instance context.

    Fields: timestamp (ISO 8601, UTC), level, logger, service, the
    context keys (null when unset) and exception text when present.
    """

    def __init__(self, config: LoggingConfig, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._service = config.service_name

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.fromtimestamp(record.created, tz=UTC).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["service"] = self._service
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            log_record[field] = str(value) if value is not None else None

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)
        log_record.pop("exc_info", None)
        log_record.pop("color_message", None)


class ControlPlaneTextFormatter(logging.Formatter):
    """``time level logger message [event instance=... workload=...]``."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-7s %(name)s %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = [f"{f}={getattr(record, f)}" for f in CONTEXT_FIELDS if getattr(record, f, None)]
        suppressed = getattr(record, "suppressed", 0)
        if suppressed:
            context.append(f"suppressed={suppressed}")
        if not context:
            return line
        head, sep, tail = line.partition("\n")
        return f"{head} [{' '.join(context)}]{sep}{tail}"


def setup_logging(config: LoggingConfig) -> None:
    """Install one stdout handler on the root logger.

    uvicorn is started with ``log_config=None`` so its loggers propagate
    here instead of installing their own handlers.
    """
    level = getattr(logging, config.level.upper(), logging.INFO)

    formatter: logging.Formatter
    if config.format == "json":
        formatter = ControlPlaneJsonFormatter(config)
    else:
        formatter = ControlPlaneTextFormatter()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(EventRateLimitFilter(window=config.rate_limit_seconds))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for noisy in ("httpx", "httpcore", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
