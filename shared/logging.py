"""
Shared logging configuration for the feature flags library.

Modules log through ``get_logger("flags.<area>")``. The host
application decides output format by calling ``configure_logging`` once
at startup; ``FeatureFlags.from_config`` does so with the configured
level.
"""

import logging
import sys
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

# Node id of the cache layer that emitted the event
node_id_var: ContextVar[Optional[str]] = ContextVar('node_id', default=None)


def configure_logging(service_name: str = "flags", log_level: str = "info", json_logs: bool = True) -> None:
    """Configure structlog on top of the standard library logger."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_service_context,
            add_node_context,
            renderer
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    logging.getLogger(service_name).setLevel(level)


def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Derive the component from the logger name ("flags.cache" -> "cache")."""
    logger_name = event_dict.get("logger", "")
    if "." in logger_name:
        event_dict["component"] = logger_name.split(".", 1)[1]
    return event_dict


def add_node_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add the local node id to log events."""
    node_id = node_id_var.get()
    if node_id:
        event_dict["node_id"] = node_id
    return event_dict


def set_node_id(node_id: str) -> None:
    """Set node id in context."""
    node_id_var.set(node_id)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
