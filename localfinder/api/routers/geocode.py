from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from localfinder.api.deps import get_area_service, get_geocoder
from localfinder.models.geo import GeocodeFound
from localfinder.services.area_service import ERR_MISSING_QUERY, ERR_NOT_FOUND, AreaService
from localfinder.services.nominatim_service import NominatimService, to_number

router = APIRouter(
    prefix="/api",
    tags=["geocode"],
)

FOUND_CACHE_HEADERS = {"Cache-Control": "s-maxage=600, stale-while-revalidate=86400"}


def _near(near_lat: Optional[str], near_lng: Optional[str]):
    lat, lng = to_number(near_lat), to_number(near_lng)
    if lat is None or lng is None:
        return None
    return (lat, lng)


@router.get("/geocode")
async def geocode(
    q: str = Query("", description="Free-text place name"),
    nearLat: Optional[str] = Query(None),
    nearLng: Optional[str] = Query(None),
    radiusKm: Optional[str] = Query(None, description="Bias radius in km"),
    radius: Optional[str] = Query(None, description="Bias radius in meters (legacy)"),
    geocoder: NominatimService = Depends(get_geocoder),
):
    """
    Best match for a search box query. Always 200: "no result" and upstream
    failures come back as {"found": false, ...}.
    """
    payload = await geocoder.geocode(
        q,
        bias_center=_near(nearLat, nearLng),
        bias_radius_km=to_number(radiusKm),
        bias_radius_m=to_number(radius),
    )
    headers = FOUND_CACHE_HEADERS if isinstance(payload, GeocodeFound) else None
    return JSONResponse(payload.model_dump(exclude_none=True), status_code=200, headers=headers)


@router.get("/area")
async def area(
    q: str = Query("", description="Area name (suburb, city, region)"),
    nearLat: Optional[str] = Query(None),
    nearLng: Optional[str] = Query(None),
    radiusKm: Optional[str] = Query(None, description="Bias radius in km (default 50)"),
    areas: AreaService = Depends(get_area_service),
):
    """Centroid, bbox and boundary polygon for an area name."""
    radius_km = to_number(radiusKm) or 50.0
    payload = await areas.resolve(q, near=_near(nearLat, nearLng), radius_km=radius_km)
    if isinstance(payload, GeocodeFound):
        return JSONResponse(payload.model_dump(exclude_none=True), status_code=200, headers=FOUND_CACHE_HEADERS)

    if payload.error == ERR_MISSING_QUERY:
        status_code = 400
    elif payload.error == ERR_NOT_FOUND:
        status_code = 404
    else:
        status_code = 502
    return JSONResponse(payload.model_dump(exclude_none=True), status_code=status_code)
