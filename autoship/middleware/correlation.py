# autoship/middleware/correlation.py
"""
Log context for the pipeline.

Two context variables travel with every asyncio task: the id of the Task a
worker is driving, and the correlation id of the HTTP request being served.
TaskContextFilter puts both on each log record so the formatter can print
[task:...] [corr-id:...].
"""

import logging
import logging.config
import os
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

task_id_var: ContextVar[str] = ContextVar("task_id", default="-")
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="no-corr-id")


def get_task_id() -> str:
    return task_id_var.get()


def get_correlation_id() -> str:
    return correlation_id_var.get()


def generate_correlation_id() -> str:
    return f"corr-{uuid.uuid4().hex[:12]}"


class TaskContextFilter(logging.Filter):
    """Inject task_id and correlation_id into log records"""

    def filter(self, record):
        record.task_id = get_task_id()
        record.correlation_id = get_correlation_id()
        return True


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Accept or mint an X-Correlation-ID per request and echo it back"""

    HEADER_NAME = "X-Correlation-ID"

    async def dispatch(self, request: Request, call_next) -> Response:
        corr_id = request.headers.get(self.HEADER_NAME) or generate_correlation_id()
        token = correlation_id_var.set(corr_id)
        try:
            response = await call_next(request)
            response.headers[self.HEADER_NAME] = corr_id
            return response
        finally:
            correlation_id_var.reset(token)


def configure_logging(config):
    """Apply the dictConfig built from a PipelineConfig"""
    os.makedirs(config.log_dir, exist_ok=True)
    logging.config.dictConfig(config.get_log_config())
