from __future__ import annotations

import math
from dataclasses import dataclass, field, fields, replace
from typing import Any, Callable, FrozenSet, List, Optional, Tuple

from localfinder.models.geo import BBox, GeoJSONPolygon
from localfinder.models.places import Place

DEFAULT_ZOOM = 14
DEFAULT_RADIUS_M = 1200
DEFAULT_CATEGORY = "coffee"
MIN_STORE_RADIUS_M = 50
MAX_STORE_RADIUS_M = 12_000

CenterTuple = Tuple[float, float]
Listener = Callable[["StoreState", FrozenSet[str]], None]


def clamp_radius(radius: float) -> int:
    try:
        value = float(radius)
    except (TypeError, ValueError):
        return DEFAULT_RADIUS_M
    if math.isnan(value):
        return DEFAULT_RADIUS_M
    return int(min(MAX_STORE_RADIUS_M, max(MIN_STORE_RADIUS_M, round(value))))


def clamp_zoom(zoom: float) -> int:
    return int(max(1, min(20, round(zoom))))


@dataclass(frozen=True)
class AreaOverlay:
    key: str
    bbox: Optional[BBox] = None
    polygon: Optional[GeoJSONPolygon] = None


@dataclass(frozen=True)
class StoreState:
    center: Optional[CenterTuple] = None
    zoom: int = DEFAULT_ZOOM
    user_location: Optional[CenterTuple] = None
    category: str = DEFAULT_CATEGORY
    radius: int = DEFAULT_RADIUS_M
    query: str = ""
    places: Tuple[Place, ...] = field(default_factory=tuple)
    selected_place: Optional[Place] = None
    area: Optional[AreaOverlay] = None
    loading: bool = False
    error: Optional[str] = None


SEARCH_INPUTS = frozenset({"center", "radius", "category", "query"})
STORE_FIELDS = frozenset(f.name for f in fields(StoreState))


class PlacesStore:
    """
    View state shared by the map and the sidebar.

    Every setter replaces the immutable snapshot and notifies subscribers
    with the names of the fields that actually changed.
    """

    def __init__(self, initial: Optional[StoreState] = None) -> None:
        self._state = initial or StoreState()
        self._listeners: List[Listener] = []

    @property
    def state(self) -> StoreState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def update(self, **changes: Any) -> FrozenSet[str]:
        unknown = set(changes) - STORE_FIELDS
        if unknown:
            raise ValueError(f"unknown store fields: {sorted(unknown)}")
        current = self._state
        changed = frozenset(
            name for name, value in changes.items() if getattr(current, name) != value
        )
        if not changed:
            return changed
        self._state = replace(current, **{name: changes[name] for name in changed})
        for listener in list(self._listeners):
            listener(self._state, changed)
        return changed

    # ---- view ----

    def set_center(self, center: Optional[CenterTuple]) -> None:
        self.update(center=tuple(center) if center is not None else None)

    def set_zoom(self, zoom: float) -> None:
        self.update(zoom=clamp_zoom(zoom))

    def locate(self, lat: float, lng: float, *, zoom: int = 18) -> None:
        """Device location fix: pin, recenter and zoom in."""
        self.update(user_location=(lat, lng), center=(lat, lng), zoom=clamp_zoom(zoom))

    # ---- filters ----

    def set_category(self, category: str) -> None:
        self.update(category=category)

    def set_radius(self, radius: float) -> None:
        self.update(radius=clamp_radius(radius))

    def set_query(self, query: str) -> None:
        self.update(query=query)

    # ---- results ----

    def set_places(self, places: List[Place] | Tuple[Place, ...]) -> None:
        self.update(places=tuple(places))

    def set_selected_place(self, place: Optional[Place]) -> None:
        self.update(selected_place=place)

    def set_area(self, area: Optional[AreaOverlay]) -> None:
        self.update(area=area)

    def set_loading(self, loading: bool) -> None:
        self.update(loading=loading)

    def set_error(self, error: Optional[str]) -> None:
        self.update(error=error)

    def search_inputs(self) -> Tuple[Optional[CenterTuple], int, str, str]:
        s = self._state
        return (s.center, s.radius, s.category, s.query)

