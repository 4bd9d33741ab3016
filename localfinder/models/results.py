from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple, Union

from localfinder.models.places import Place


class ErrorKind(str, Enum):
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    MALFORMED_RESPONSE = "malformed_response"
    INVALID_REQUEST = "invalid_request"


@dataclass(frozen=True, slots=True)
class FetchOk:
    places: Tuple[Place, ...] = field(default_factory=tuple)

    ok = True


@dataclass(frozen=True, slots=True)
class FetchErr:
    kind: ErrorKind
    detail: Optional[str] = None

    ok = False

    @property
    def message(self) -> str:
        """User-facing error text."""
        if self.kind is ErrorKind.MALFORMED_RESPONSE:
            base = "Unexpected response from places service"
        elif self.kind is ErrorKind.INVALID_REQUEST:
            base = "Invalid places request"
        else:
            base = "Places service unavailable"
        return f"{base}: {self.detail}" if self.detail else base


FetchResult = Union[FetchOk, FetchErr]
