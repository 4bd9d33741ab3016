# localfinder/api/deps.py
from __future__ import annotations

from fastapi import Request

from localfinder.services.area_service import AreaService
from localfinder.services.nominatim_service import NominatimService
from localfinder.services.overpass_service import OverpassPlacesService


def get_overpass_service(request: Request) -> OverpassPlacesService:
    return request.app.state.overpass


def get_geocoder(request: Request) -> NominatimService:
    return request.app.state.nominatim


def get_area_service(request: Request) -> AreaService:
    return request.app.state.area
