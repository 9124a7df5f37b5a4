"""Control loops."""

from spxhub.control.reconciler import HealthReconciler, ReconcileResult

__all__ = ["HealthReconciler", "ReconcileResult"]
