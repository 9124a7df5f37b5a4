"""Logging field schema.

Standard fields (added to all logs):
- service: Service name (spxhub)
- event: Event type (instance_started, reconcile_complete, etc.)
- duration_ms: Duration in milliseconds

High cardinality fields (OK in logs, NOT in metric labels):
- instance_id: Instance ID
- workload: Workload (container) name
- user_id / organization_id
"""

from enum import StrEnum


class LogEvent(StrEnum):
    """Standard log event types.

    Used with logger.info/warning/error extra dict:
        logger.info("message", extra={"event": LogEvent.INSTANCE_STARTED, ...})
    """

    # Application lifecycle
    APP_STARTED = "app_started"
    APP_STOPPED = "app_stopped"

    # Instance lifecycle
    INSTANCE_CREATED = "instance_created"
    INSTANCE_STARTED = "instance_started"
    INSTANCE_STOPPED = "instance_stopped"
    INSTANCE_DELETED = "instance_deleted"
    INSTANCE_UPDATED = "instance_updated"
    INSTANCE_SCALED = "instance_scaled"
    STATE_CHANGED = "state_changed"
    TRANSITION_FAILED = "transition_failed"
    PORT_ALLOCATED = "port_allocated"
    PORT_CONFLICT = "port_conflict"

    # Workload events
    WORKLOAD_CREATED = "workload_created"
    WORKLOAD_STARTED = "workload_started"
    WORKLOAD_STOPPED = "workload_stopped"
    WORKLOAD_REMOVED = "workload_removed"
    WORKLOAD_UPDATED = "workload_updated"
    IMAGE_PULLED = "image_pulled"
    DRIVER_ERROR = "driver_error"

    # Backup events
    BACKUP_COMPLETED = "backup_completed"
    BACKUP_FAILED = "backup_failed"
    BACKUP_CANCELLED = "backup_cancelled"

    # Reconciler events
    RECONCILE_COMPLETE = "reconcile_complete"
    RECONCILE_SLOW = "reconcile_slow"
    DRIFT_DETECTED = "drift_detected"
    SWEEP_COMPLETED = "sweep_completed"
    OPERATION_FAILED = "operation_failed"

    # Store events
    DB_CONNECTED = "db_connected"
    DB_ERROR = "db_error"

    # Error events
    UNHANDLED_EXCEPTION = "unhandled_exception"
    CONTROL_PLANE_ERROR = "control_plane_error"
