from __future__ import annotations

from typing import Dict, List, Mapping, Tuple

ALL_CATEGORY = "all"
OTHER_CATEGORY = "other"
ANY_VALUE = "*"

# Catalogue of browseable categories. Order matters: classify_tags() returns
# the first entry whose OSM tags match, so specific shops precede "shop".
CATEGORY_MAP: Dict[str, Dict[str, object]] = {
    "coffee": {
        "label": "Coffee",
        "osm_tags": [
            ("amenity", "cafe"),
            ("amenity", "coffee"),
            ("amenity", "coffee_shop"),
            ("shop", "coffee"),
        ],
        "match": ["cafe", "coffee shop", "coffee_shop", "koffie"],
    },
    "clinic": {
        "label": "Clinics",
        "osm_tags": [
            ("amenity", "clinic"),
            ("healthcare", "clinic"),
            ("amenity", "doctors"),
        ],
        "match": ["doctor", "doctors", "gp"],
    },
    "coworking": {
        "label": "Coworking",
        "osm_tags": [
            ("office", "coworking"),
            ("amenity", "coworking_space"),
        ],
        "match": ["coworking_space", "cowork"],
    },
    "restaurant": {
        "label": "Restaurants",
        "osm_tags": [("amenity", "restaurant")],
        "match": ["restaurants", "food"],
    },
    "fastfood": {
        "label": "Fast food",
        "osm_tags": [("amenity", "fast_food")],
        "match": ["fast_food", "fast food", "takeaway"],
    },
    "pub": {
        "label": "Pubs",
        "osm_tags": [("amenity", "pub")],
        "match": ["pubs", "tavern"],
    },
    "bar": {
        "label": "Bars",
        "osm_tags": [("amenity", "bar")],
        "match": ["bars"],
    },
    "supermarket": {
        "label": "Supermarkets",
        "osm_tags": [
            ("shop", "supermarket"),
            ("shop", "convenience"),
        ],
        "match": ["grocery", "convenience"],
    },
    "pharmacy": {
        "label": "Pharmacies",
        "osm_tags": [("amenity", "pharmacy")],
        "match": ["chemist", "pharmacies"],
    },
    "hospital": {
        "label": "Hospitals",
        "osm_tags": [("amenity", "hospital")],
        "match": ["hospitals"],
    },
    "bank": {
        "label": "Banks",
        "osm_tags": [("amenity", "bank")],
        "match": ["banks"],
    },
    "atm": {
        "label": "ATMs",
        "osm_tags": [("amenity", "atm")],
        "match": ["atms", "cash"],
    },
    "fuel": {
        "label": "Petrol",
        "osm_tags": [("amenity", "fuel")],
        "match": ["petrol", "gas", "gas_station"],
    },
    "hotel": {
        "label": "Hotels",
        "osm_tags": [
            ("tourism", "hotel"),
            ("tourism", "guest_house"),
            ("tourism", "hostel"),
        ],
        "match": ["hotels", "hostel", "guest_house", "lodging"],
    },
    "attraction": {
        "label": "Attractions",
        "osm_tags": [
            ("tourism", "attraction"),
            ("tourism", "museum"),
            ("tourism", "gallery"),
            ("tourism", "viewpoint"),
        ],
        "match": ["attractions", "museum", "sights"],
    },
    "park": {
        "label": "Parks",
        "osm_tags": [("leisure", "park")],
        "match": ["parks"],
    },
    "shop": {
        "label": "Shops",
        "osm_tags": [("shop", ANY_VALUE)],
        "match": ["shops", "store", "retail"],
    },
}

# Generic set used when browsing "all".
ALL_FILTERS: List[str] = [
    '["amenity"]',
    '["shop"]',
    '["office"="coworking"]',
    '["healthcare"]',
]


def _slugify(value: str) -> str:
    """
    Minimal slugify for category keys:
    - lowercase, trimmed
    - "/", "-" and whitespace become "_"
    - repeated underscores collapse
    """
    s = (value or "").strip().lower()
    for sep in ("/", "-", " "):
        s = s.replace(sep, "_")
    while "__" in s:
        s = s.replace("__", "_")
    return s.strip("_")


_MATCH_LOOKUP: Dict[str, str] = {}
for _key, _cfg in CATEGORY_MAP.items():
    _MATCH_LOOKUP[_slugify(_key)] = _key
    for _alias in _cfg.get("match") or []:
        _MATCH_LOOKUP[_slugify(str(_alias))] = _key


def normalize_category(raw: str | None) -> str:
    """
    Resolve a user/category string to a catalogue key.
    Empty or unknown values browse everything ("all").
    """
    slug = _slugify(raw or "")
    if not slug or slug == ALL_CATEGORY:
        return ALL_CATEGORY
    return _MATCH_LOOKUP.get(slug, ALL_CATEGORY)


def category_label(key: str) -> str:
    if key == ALL_CATEGORY:
        return "All"
    cfg = CATEGORY_MAP.get(key)
    return str(cfg["label"]) if cfg else "Other"


def list_categories() -> List[Dict[str, str]]:
    return [{"key": ALL_CATEGORY, "label": "All"}] + [
        {"key": key, "label": str(cfg["label"])} for key, cfg in CATEGORY_MAP.items()
    ]


def _osm_tags(key: str) -> List[Tuple[str, str]]:
    cfg = CATEGORY_MAP.get(key) or {}
    return list(cfg.get("osm_tags") or [])  # type: ignore[arg-type]


def category_filters(category: str | None) -> List[str]:
    """Overpass tag selectors for a category (generic set for "all")."""
    key = normalize_category(category)
    tags = _osm_tags(key)
    if not tags:
        return list(ALL_FILTERS)
    return [f'["{k}"]' if v == ANY_VALUE else f'["{k}"="{v}"]' for k, v in tags]


def classify_tags(tags: Mapping[str, str]) -> str:
    """First catalogue key whose OSM tags match, else "other"."""
    for key in CATEGORY_MAP:
        for tag_key, tag_value in _osm_tags(key):
            actual = tags.get(tag_key)
            if not actual:
                continue
            if tag_value == ANY_VALUE or actual == tag_value:
                return key
    return OTHER_CATEGORY


def matches_category(tags: Mapping[str, str], key: str) -> bool:
    """True when any of the category's OSM tags is present on the element."""
    if key == ALL_CATEGORY:
        return True
    for tag_key, tag_value in _osm_tags(key):
        actual = tags.get(tag_key)
        if actual and (tag_value == ANY_VALUE or actual == tag_value):
            return True
    return False
