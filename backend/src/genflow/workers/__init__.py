"""Background workers for async processing tasks."""

from genflow.workers.reconcile_worker import run_reconcile_worker

__all__ = [
    "run_reconcile_worker",
]
