"""
FastAPI Main Application

Parcel Cache REST API.
"""
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config.settings import settings
from src.parcelcache import __version__
from src.parcelcache.api.dependencies import get_parcel_service
from src.parcelcache.api.routers import parcels
from src.parcelcache.api.schemas import HealthCheck
from src.parcelcache.errors import ConfigurationError, MissingLocationError, UpstreamError
from src.parcelcache.services.parcel_service import ParcelDataService
from src.parcelcache.utils.logger import (
    bind_request_context,
    clear_request_context,
    get_logger,
    setup_logging,
)

setup_logging()
logger = get_logger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Parcel Cache API",
    description="Tiled, cached and normalized access to ATTOM property data",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)

app.include_router(parcels.router)


@app.middleware("http")
async def request_logging_context(request: Request, call_next):
    bind_request_context(method=request.method, path=request.url.path)
    try:
        return await call_next(request)
    finally:
        clear_request_context()


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error("configuration_error", error=str(exc))
    return JSONResponse(status_code=500, content={"error": str(exc)})


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError):
    logger.error("upstream_error", status=exc.status)
    return JSONResponse(
        status_code=502,
        content={"error": "Upstream request failed", "status": exc.status},
    )


@app.exception_handler(MissingLocationError)
async def missing_location_handler(request: Request, exc: MissingLocationError):
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.get("/health", response_model=HealthCheck, tags=["health"])
def health_check(service: ParcelDataService = Depends(get_parcel_service)):
    """
    Health check endpoint.

    Returns:
        Health status with cache availability
    """
    cache_stats = service.cache.stats()
    return HealthCheck(
        status="healthy" if cache_stats.get("available") else "degraded",
        version=__version__,
        cache=cache_stats,
        timestamp=datetime.now(timezone.utc),
    )


@app.get("/", tags=["root"])
def root():
    """
    Root endpoint.

    Returns:
        API information
    """
    return {
        "name": "Parcel Cache API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
        "endpoints": [
            "/api/attom/map",
            "/api/attom/address",
            "/api/attom/lookup",
            "/api/attom/snapshot",
        ],
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.parcelcache.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
