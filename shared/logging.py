"""
Structured logging for the reporting backend.

Every event carries the request context bound for the current task: the
request id and authenticated user, the route being served, and, inside a
cache-aside section, the cache layer and operation name. Context is held in
context variables so concurrent requests never see each other's values.
"""

import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Optional

import structlog

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)
route_var: ContextVar[Optional[str]] = ContextVar("route", default=None)
cache_layer_var: ContextVar[Optional[str]] = ContextVar("cache_layer", default=None)
operation_var: ContextVar[Optional[str]] = ContextVar("operation", default=None)

_CONTEXT_VARS: Dict[str, ContextVar] = {
    "request_id": request_id_var,
    "user_id": user_id_var,
    "route": route_var,
    "cache_layer": cache_layer_var,
    "operation": operation_var,
}


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Configure structured JSON logging for a service."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_service_context,
            add_reporting_context,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )


def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    # Logger names follow "<service>.<area>"
    logger_name = event_dict.get("logger", "")
    if "." in logger_name:
        event_dict.setdefault("service", logger_name.split(".")[0])
    return event_dict


def add_reporting_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Copy the bound request context onto the event.

    Fields passed explicitly to the log call win over bound ones.
    """
    for name, value in current_log_context().items():
        event_dict.setdefault(name, value)
    return event_dict


def current_log_context() -> Dict[str, str]:
    """Context values bound for the current task, unset ones omitted."""
    context = {}
    for name, var in _CONTEXT_VARS.items():
        value = var.get()
        if value:
            context[name] = value
    return context


@contextmanager
def log_context(**values: Optional[str]) -> Iterator[None]:
    """Bind ``route``, ``cache_layer`` or ``operation`` for the enclosed block."""
    unknown = set(values) - set(_CONTEXT_VARS)
    if unknown:
        raise ValueError(f"Unknown log context fields: {sorted(unknown)}")
    tokens = [(_CONTEXT_VARS[name], _CONTEXT_VARS[name].set(value)) for name, value in values.items()]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def set_request_id(request_id: Optional[str] = None) -> str:
    """Set request ID in context."""
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def set_route(route: Optional[str]) -> None:
    route_var.set(route)


def set_user_context(user_id: Optional[str] = None):
    if user_id:
        user_id_var.set(user_id)


def clear_context():
    """Clear all context variables."""
    for var in _CONTEXT_VARS.values():
        var.set(None)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
