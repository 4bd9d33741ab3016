# localfinder/core/logging.py
from __future__ import annotations

import logging
import re
import sys
from typing import Any, Dict

import structlog

from localfinder.core.request_id import get_request_id, get_search_id

EventDict = Dict[str, Any]

REDACTED = "***redacted***"

# Keys whose values never reach the log. A contact User-Agent carries an
# email address, so it is listed alongside the usual credentials.
_SECRET_KEYS = frozenset({
    "authorization", "token", "api_key", "apikey", "password", "secret",
    "email", "user_agent", "contact",
})

_EMAIL_RE = re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+")


# -------- Processors ---------------------------------------------------------

def _bind_service(service_name: str):
    def _processor(_: Any, __: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", service_name)
        return event_dict
    return _processor


def _add_request_or_search_ids(_: Any, __: str, event_dict: EventDict) -> EventDict:
    """HTTP request id inside a route, search id inside a coordinator attempt."""
    for key, value in (("request_id", get_request_id()), ("search_id", get_search_id())):
        if value:
            event_dict.setdefault(key, value)
    return event_dict


def _pii_guard(_: Any, __: str, event_dict: EventDict) -> EventDict:
    for key, value in list(event_dict.items()):
        if str(key).lower() in _SECRET_KEYS:
            event_dict[key] = REDACTED
        elif isinstance(value, str) and "@" in value:
            # upstream error details can echo the contact header
            event_dict[key] = _EMAIL_RE.sub(REDACTED, value)
    return event_dict


def _coerce_level(level: int | str) -> int:
    """Accepts 10, "debug" or "WARNING"; anything unknown means INFO."""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


# -------- Public API ---------------------------------------------------------

_logger: structlog.BoundLogger | None = None


def configure_logging(service_name: str = "api", *, level: int | str = logging.INFO) -> None:
    """
    One JSON structlog pipeline for the API, the coordinators and scripts.
    """
    global _logger

    numeric_level = _coerce_level(level)
    logging.basicConfig(level=numeric_level, format="%(message)s", stream=sys.stderr, force=True)

    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            structlog.processors.add_log_level,
            _bind_service(service_name),
            _add_request_or_search_ids,
            _pii_guard,
            structlog.processors.EventRenamer("event"),
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _logger = structlog.get_logger()


def get_logger() -> structlog.BoundLogger:
    if _logger is None:
        configure_logging()
    return _logger
