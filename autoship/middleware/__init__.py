# autoship/middleware/__init__.py
"""autoship logging context and HTTP middleware"""

from .correlation import (
    CorrelationIdMiddleware,
    TaskContextFilter,
    configure_logging,
    correlation_id_var,
    get_correlation_id,
    get_task_id,
    task_id_var,
)

__all__ = [
    "CorrelationIdMiddleware",
    "TaskContextFilter",
    "configure_logging",
    "correlation_id_var",
    "get_correlation_id",
    "get_task_id",
    "task_id_var",
]
