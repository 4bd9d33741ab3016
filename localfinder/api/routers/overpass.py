from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from localfinder.api.deps import get_overpass_service
from localfinder.models.results import FetchErr
from localfinder.services.nominatim_service import to_number
from localfinder.services.overpass_service import OverpassPlacesService

router = APIRouter(
    prefix="/api",
    tags=["places"],
)

UPSTREAM_FAILED = "Overpass failed or timed out"


@router.get("/overpass")
async def places_near(
    lat: Optional[str] = Query(None, description="Center latitude (WGS84)"),
    lng: Optional[str] = Query(None, description="Center longitude (WGS84)"),
    radius: Optional[str] = Query(None, description="Radius in meters, clamped to 150..30000"),
    category: Optional[str] = Query(None, description="Category key, e.g. coffee; 'all' for everything"),
    q: Optional[str] = Query(None, description="Free-text query (matched client-side)"),
    overpass: OverpassPlacesService = Depends(get_overpass_service),
):
    """
    Points of interest around a center.

    Always answers with a list on success. Upstream failure is reported as
    {"error": ..., "data": []} with status 200 so the map never breaks.
    """
    lat_value, lng_value = to_number(lat), to_number(lng)
    if lat_value is None or lng_value is None:
        return JSONResponse({"error": "Missing lat/lng", "data": []}, status_code=400)

    result = await overpass.fetch_places(
        lat=lat_value,
        lng=lng_value,
        radius=to_number(radius),
        category=category,
        query=q,
    )
    if isinstance(result, FetchErr):
        return JSONResponse(
            {"error": UPSTREAM_FAILED, "detail": result.detail, "data": []},
            status_code=200,
        )
    return JSONResponse([place.model_dump() for place in result.places], status_code=200)
