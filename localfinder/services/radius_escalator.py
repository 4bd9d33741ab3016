from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence

from localfinder.core.config import Settings
from localfinder.models.places import Place
from localfinder.services.geo_key import normalize_query

_SEARCHABLE_TAGS = ("name", "brand", "operator", "amenity", "shop")


def matches_query(place: Place, query_lower: str) -> bool:
    """Case-insensitive substring match over name, identifying tags and address."""
    haystack = [place.name]
    haystack.extend(place.tags.get(tag) for tag in _SEARCHABLE_TAGS)
    haystack.append(place.address)
    text = " ".join(part for part in haystack if part).lower()
    return query_lower in text


@dataclass(frozen=True)
class RadiusEscalator:
    """
    Widens text searches so a first query does not come back empty.

    Best effort only: upstream radius and element limits still apply.
    """

    query_min_radius_m: int = 6000
    widen_threshold: int = 5
    widen_factor: int = 2
    max_radius_m: int = 12000
    min_query_length: int = 2

    @classmethod
    def from_settings(cls, settings: Settings) -> "RadiusEscalator":
        return cls(
            query_min_radius_m=settings.QUERY_MIN_RADIUS_M,
            widen_threshold=settings.WIDEN_THRESHOLD,
            widen_factor=settings.WIDEN_FACTOR,
            max_radius_m=settings.WIDEN_MAX_RADIUS_M,
        )

    def has_query(self, query: str | None) -> bool:
        return len(normalize_query(query)) >= self.min_query_length

    def escalate(self, base_radius: int, has_query: bool) -> int:
        if has_query:
            return max(base_radius, self.query_min_radius_m)
        return base_radius

    def should_widen(self, match_count: int) -> bool:
        return match_count < self.widen_threshold

    def widened_radius(self, effective_base: int) -> int:
        return min(effective_base * self.widen_factor, self.max_radius_m)

    def filter_places(self, places: Iterable[Place], query: str | None) -> List[Place]:
        """Places matching an active query; everything when no query is active."""
        if not self.has_query(query):
            return list(places)
        needle = normalize_query(query)
        return [p for p in places if matches_query(p, needle)]

    @staticmethod
    def merge(first: Sequence[Place], second: Sequence[Place]) -> List[Place]:
        """Union by id; on conflict the first occurrence wins."""
        merged: Dict[str, Place] = {}
        for place in list(first) + list(second):
            merged.setdefault(place.id, place)
        return list(merged.values())
