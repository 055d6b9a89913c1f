"""
Structured logging for the EduSocial core

Every line carries the environment, the request ID and the subsystem
(billing, moderation, engagement) that emitted it, so one request can be
followed from checkout through the payment webhook.
"""
import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Optional
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

APP_LOGGER = "edusocial"

# Module prefix -> subsystem label; first match wins
SUBSYSTEMS = (
    ("edusocial.services.checkout_service", "billing"),
    ("edusocial.services.billing_gateway", "billing"),
    ("edusocial.services.order_store", "billing"),
    ("edusocial.services.credit_ledger", "billing"),
    ("edusocial.services.invoice_service", "billing"),
    ("edusocial.billing_routes", "billing"),
    ("edusocial.services.moderation_service", "moderation"),
    ("edusocial.moderation_routes", "moderation"),
    ("edusocial.services.engagement_queue", "engagement"),
    ("edusocial.engagement_routes", "engagement"),
    ("edusocial.services.scheduled_jobs", "scheduler"),
    ("edusocial", "core"),
)

request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)


def get_request_id() -> Optional[str]:
    """Get current request ID from context"""
    return request_id_var.get()


def subsystem_for(logger_name: str) -> str:
    for prefix, label in SUBSYSTEMS:
        if logger_name == prefix or logger_name.startswith(prefix + "."):
            return label
    return "external"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tags each request with X-Request-ID, reusing the caller's when sent"""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        token = request_id_var.set(request_id)

        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        response.headers["X-Request-ID"] = request_id
        return response


class StructuredFormatter(logging.Formatter):
    """Adds env, request_id and subsystem to every record"""

    def __init__(self, env: str = "dev", fmt: str = None, datefmt: str = None):
        self.env = env
        if fmt is None:
            fmt = "%(asctime)s [%(env)s] [%(request_id)s] [%(subsystem)s] %(levelname)-8s %(name)s: %(message)s"
        if datefmt is None:
            datefmt = "%Y-%m-%d %H:%M:%S"
        super().__init__(fmt=fmt, datefmt=datefmt)

    def format(self, record: logging.LogRecord) -> str:
        record.request_id = get_request_id() or "-"
        record.env = self.env
        record.subsystem = subsystem_for(record.name)
        return super().format(record)


def setup_logging(env: str = "dev", log_level: str = "INFO"):
    """
    Configure the root handler and the edusocial logger

    Args:
        env: Environment name (dev, test, staging, prod)
        log_level: Level for edusocial's own loggers; libraries stay at WARNING
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter(env=env))

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.WARNING)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    app_logger = logging.getLogger(APP_LOGGER)
    app_logger.setLevel(numeric_level)

    # Request lines are useful; payment and HTTP client chatter is not
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
    for name in ("sqlalchemy.engine", "httpx", "apscheduler", "stripe", "redis"):
        logging.getLogger(name).setLevel(logging.WARNING)

    return app_logger
