# localfinder/core/request_id.py
"""
Correlation ids carried in context variables and picked up by the log
pipeline: one per HTTP request and one per coordinator search attempt.
"""
from __future__ import annotations

import contextvars
import re
import uuid
from contextlib import contextmanager
from typing import Iterator, Optional

REQUEST_ID_HEADER = "X-Request-Id"

# Client supplied ids are echoed back and logged, so keep them short and plain.
_SAFE_ID = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")

_request_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("request_id", default=None)
_search_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("search_id", default=None)


def resolve_request_id(incoming: Optional[str]) -> str:
    """The caller's id when it is safe to echo, otherwise a fresh one."""
    candidate = (incoming or "").strip()
    return candidate if _SAFE_ID.match(candidate) else uuid.uuid4().hex


def set_request_id(request_id: Optional[str]) -> None:
    _request_id.set(request_id)


def get_request_id() -> Optional[str]:
    return _request_id.get()


def clear_request_id() -> None:
    _request_id.set(None)


def get_search_id() -> Optional[str]:
    return _search_id.get()


@contextmanager
def with_search_id(search_id: Optional[str] = None) -> Iterator[str]:
    """Scope a search id (e.g. "coord2-7") around one fetch attempt."""
    sid = search_id or uuid.uuid4().hex
    token = _search_id.set(sid)
    try:
        yield sid
    finally:
        _search_id.reset(token)
