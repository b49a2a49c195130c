"""
Structured logging configuration using structlog.

Every module asks for a logger through ``get_logger(__name__)`` and emits
snake_case event names with key/value context. Values stored under sensitive
keys are masked before rendering.
"""
from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog

SENSITIVE_KEYS = frozenset(
    {
        "api_key",
        "api_secret",
        "secret",
        "webhook_secret",
        "signature",
        "client_secret",
        "authorization",
        "card",
        "email",
        "password",
    }
)

_CONFIGURED = False


def _mask(value: Any) -> str:
    text = str(value)
    if len(text) <= 4:
        return "****"
    return f"{text[:2]}****{text[-2:]}"


def mask_sensitive_fields(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Mask values of sensitive keys, one level into nested dicts."""
    for key, value in list(event_dict.items()):
        if key.lower() in SENSITIVE_KEYS and value is not None:
            event_dict[key] = _mask(value)
        elif isinstance(value, dict):
            event_dict[key] = {
                inner_key: _mask(inner_value)
                if str(inner_key).lower() in SENSITIVE_KEYS and inner_value is not None
                else inner_value
                for inner_key, inner_value in value.items()
            }
    return event_dict


def add_app_context(logger: Any, method_name: str, event_dict: dict) -> dict:
    event_dict["app"] = "payments-api"
    event_dict["environment"] = os.getenv("ENV", "development")
    return event_dict


def configure_logging(level: int | str | None = None) -> None:
    global _CONFIGURED
    if _CONFIGURED:
        return

    resolved_level = level or os.getenv("LOG_LEVEL", "INFO")
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=resolved_level,
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            add_app_context,
            mask_sensitive_fields,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _CONFIGURED = True


def get_logger(name: str = __name__):
    return structlog.get_logger(name)
