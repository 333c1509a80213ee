# Core infrastructure
from src.core.context import (
    clear_context,
    get_context,
    get_correlation_id,
    get_learner_id,
    get_request_id,
    set_correlation_id,
    set_learner_id,
    set_request_id,
)
from src.core.database import init_async_cassandra, shutdown_async_cassandra
from src.core.logging import configure_structlog, get_logger
from src.core.middleware import RequestContextMiddleware


__all__ = [
    "RequestContextMiddleware",
    "clear_context",
    "configure_structlog",
    "get_context",
    "get_correlation_id",
    "get_learner_id",
    "get_logger",
    "get_request_id",
    "init_async_cassandra",
    "set_correlation_id",
    "set_learner_id",
    "set_request_id",
    "shutdown_async_cassandra",
]
