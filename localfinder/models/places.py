from __future__ import annotations

import math
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

UNNAMED_PLACE = "Unnamed place"


class Place(BaseModel):
    """
    A point of interest as published to the map/list view.

    Created fresh from every successful provider fetch and never mutated
    afterwards; a newer result set replaces the old one wholesale.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = UNNAMED_PLACE
    lat: float
    lng: float
    category: str = "other"
    address: Optional[str] = None
    tags: Dict[str, str] = Field(default_factory=dict)

    @field_validator("name", mode="before")
    @classmethod
    def _name_never_empty(cls, value: object) -> str:
        text = str(value).strip() if value is not None else ""
        return text or UNNAMED_PLACE

    @field_validator("lat", "lng")
    @classmethod
    def _finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("coordinates must be finite")
        return value

    @field_validator("tags", mode="before")
    @classmethod
    def _string_tags(cls, value: object) -> Dict[str, str]:
        if not isinstance(value, dict):
            return {}
        return {str(k): str(v) for k, v in value.items() if v is not None}
