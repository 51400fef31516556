from __future__ import annotations

import logging
import os
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

# Set per request by the HTTP middleware and echoed as X-Request-ID
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Substrings that mark a field as credential or contact data
_SENSITIVE_KEYS = frozenset({"password", "secret", "token", "authorization", "email", "code"})
_STRUCTURAL_KEYS = frozenset({"event", "error_code", "status_code"})

EventDict = Dict[str, Any]


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Bind ``correlation_id`` (or a fresh uuid4) to the current context."""
    cid = correlation_id or str(uuid.uuid4())
    correlation_id_var.set(cid)
    return cid


def _mask(value: str) -> str:
    if len(value) <= 4:
        return value
    return f"{value[:2]}***{value[-2:]}"


def _is_sensitive(key: str) -> bool:
    if key in _STRUCTURAL_KEYS:
        return False
    lowered = key.lower()
    return any(marker in lowered for marker in _SENSITIVE_KEYS)


def _add_correlation_id(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    cid = get_correlation_id()
    if cid:
        event_dict.setdefault("correlation_id", cid)
    return event_dict


def _redact_pii(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask string values of credential-like and email fields.

    Only the first and last two characters survive, which is enough to tell
    two accounts apart in a trace.
    """
    for key, value in event_dict.items():
        if isinstance(value, str) and _is_sensitive(key):
            event_dict[key] = _mask(value)
    return event_dict


def _configure_structlog(level: str, console: bool) -> None:
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _add_correlation_id,
        _redact_pii,
    ]
    if console:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


_configure_structlog(
    level=os.getenv("LOG_LEVEL", "INFO"),
    console=os.getenv("LOG_FORMAT", "json").strip().lower() == "console",
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
