# localfinder/main.py
from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response as StarletteResponse

from localfinder.api.routers.geocode import router as geocode_router
from localfinder.api.routers.overpass import router as overpass_router
from localfinder.core.config import Settings, get_settings, require_contact_user_agent
from localfinder.core.logging import configure_logging, get_logger
from localfinder.core.request_id import REQUEST_ID_HEADER, clear_request_id, resolve_request_id, set_request_id
from localfinder.services.area_service import AreaService
from localfinder.services.nominatim_service import NominatimService
from localfinder.services.overpass_service import OverpassPlacesService

logger = get_logger()


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tags every log line of a request with its id and echoes the id back."""

    async def dispatch(self, request: Request, call_next):
        req_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        set_request_id(req_id)
        started = time.perf_counter()
        try:
            response: StarletteResponse = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = req_id
            logger.info(
                "http_request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 1),
            )
            return response
        finally:
            clear_request_id()


def create_app(
    settings: Optional[Settings] = None,
    *,
    overpass: Optional[OverpassPlacesService] = None,
    nominatim: Optional[NominatimService] = None,
) -> FastAPI:
    """
    Build the API app. Upstream services can be injected (tests); anything
    not injected is created from settings and closed on shutdown.
    """
    s = settings or get_settings()
    configure_logging(service_name="api", level=s.LOG_LEVEL)
    require_contact_user_agent(s)

    owned = []
    if overpass is None:
        overpass = OverpassPlacesService(settings=s)
        owned.append(overpass)
    if nominatim is None:
        nominatim = NominatimService(settings=s)
        owned.append(nominatim)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("api_startup", version=s.APP_VERSION)
        try:
            yield
        finally:
            for service in owned:
                await service.aclose()
            logger.info("api_shutdown")

    app = FastAPI(
        title="LocalFinder - Places API",
        version=s.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = s
    app.state.overpass = overpass
    app.state.nominatim = nominatim
    app.state.area = AreaService(nominatim, overpass, settings=s)

    # CORS first (outermost), request-id innermost.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=s.cors_origins(),
        allow_credentials=True,
        allow_methods=["GET", "OPTIONS", "HEAD"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIdMiddleware)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_exception", exc_info=True)
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})

    @app.get("/health")
    async def health():
        return {"ok": True}

    app.include_router(overpass_router)
    app.include_router(geocode_router)

    logger.info("routers_registered", routers=["overpass", "geocode", "area"])
    return app


app = create_app()
