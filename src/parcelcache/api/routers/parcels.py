"""
ATTOM Parcels Router

Endpoints for map parcels, address resolution, map-click lookup and
property snapshots. Every response carries a diagnostic ``cache`` tag.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import ValidationError

from src.parcelcache.api.dependencies import get_parcel_service
from src.parcelcache.api.schemas import AddressRequest, MapParcelsRequest, SnapshotResponse
from src.parcelcache.models.parcel import AddressResolution, Bounds, MapParcelsResult
from src.parcelcache.normalizers.snapshot import normalize_snapshot_sections
from src.parcelcache.services.parcel_service import ParcelDataService

router = APIRouter(prefix="/api/attom", tags=["attom"])


def _bounds(n: Optional[float], s: Optional[float], e: Optional[float], w: Optional[float]) -> Bounds:
    if None in (n, s, e, w):
        raise HTTPException(status_code=400, detail="Missing or invalid n,s,e,w")
    try:
        return Bounds(n=n, s=s, e=e, w=w)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Missing or invalid n,s,e,w")


def _requester_key(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@router.get("/map", response_model=MapParcelsResult)
async def get_map_parcels(
    request: Request,
    n: Optional[float] = Query(None, description="Northern latitude"),
    s: Optional[float] = Query(None, description="Southern latitude"),
    e: Optional[float] = Query(None, description="Eastern longitude"),
    w: Optional[float] = Query(None, description="Western longitude"),
    zoom: Optional[int] = Query(None, description="Map zoom level"),
    service: ParcelDataService = Depends(get_parcel_service),
):
    """
    Map parcels for a viewport, cached per tile.

    Args:
        n, s, e, w: Viewport bounds
        zoom: Map zoom level

    Returns:
        Parcels, tile key and cache status
    """
    bounds = _bounds(n, s, e, w)
    if zoom is None:
        raise HTTPException(status_code=400, detail="Missing or invalid n,s,e,w,zoom")
    return await service.get_map_parcels(bounds, zoom, requester_key=_requester_key(request))


@router.post("/map", response_model=MapParcelsResult)
async def post_map_parcels(
    request: Request,
    body: MapParcelsRequest,
    service: ParcelDataService = Depends(get_parcel_service),
):
    """Body-based variant of GET /map."""
    bounds = _bounds(body.n, body.s, body.e, body.w)
    if body.zoom is None:
        raise HTTPException(status_code=400, detail="Missing or invalid n,s,e,w,zoom")
    return await service.get_map_parcels(bounds, body.zoom, requester_key=_requester_key(request))


@router.get("/address", response_model=AddressResolution)
async def get_address(
    address: Optional[str] = Query(None, description="Typed or autocompleted address"),
    n: Optional[float] = Query(None),
    s: Optional[float] = Query(None),
    e: Optional[float] = Query(None),
    w: Optional[float] = Query(None),
    service: ParcelDataService = Depends(get_parcel_service),
):
    """
    Resolve an address to a parcel within the given bounds.

    Returns:
        Resolution; external_id and parcel are null when nothing matched
    """
    if not address:
        raise HTTPException(status_code=400, detail="Missing address")
    return await service.resolve_address(address, _bounds(n, s, e, w))


@router.post("/address", response_model=AddressResolution)
async def post_address(
    body: AddressRequest,
    service: ParcelDataService = Depends(get_parcel_service),
):
    """Body-based variant of GET /address."""
    if not body.address:
        raise HTTPException(status_code=400, detail="Missing address")
    return await service.resolve_address(body.address, _bounds(body.n, body.s, body.e, body.w))


@router.get("/lookup", response_model=AddressResolution)
async def lookup_by_location(
    lat: Optional[float] = Query(None, ge=-90, le=90, description="Latitude of the clicked point"),
    lng: Optional[float] = Query(None, ge=-180, le=180, description="Longitude of the clicked point"),
    address: Optional[str] = Query(None, description="Optional address hint for matching"),
    service: ParcelDataService = Depends(get_parcel_service),
):
    """
    Resolve a map click to a parcel.

    Returns:
        Resolution; negative answers are cached briefly
    """
    if lat is None or lng is None:
        raise HTTPException(status_code=400, detail="Missing or invalid lat,lng")
    return await service.lookup_by_location(lat, lng, address or None)


@router.get("/snapshot", response_model=SnapshotResponse)
async def get_snapshot(
    attom_id: Optional[str] = Query(None, alias="attomId", description="Upstream property id"),
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    include_sections: bool = Query(False, description="Include the seven normalized sections"),
    service: ParcelDataService = Depends(get_parcel_service),
):
    """
    Full property snapshot.

    Stale records are served immediately while a background refresh runs.
    lat/lng are only needed when nothing is cached for the id.
    """
    if not attom_id:
        raise HTTPException(status_code=400, detail="Missing attomId")

    result = await service.get_property_snapshot(attom_id, lat, lng)
    record = result.record
    response = SnapshotResponse(
        external_id=record.external_id,
        payload=record.payload,
        fetched_at=record.fetched_at,
        expires_at=record.expires_at,
        meta=record.meta,
        cache=result.cache,
    )
    if include_sections:
        response.sections = normalize_snapshot_sections(record.payload)
        response.stale_sections = record.stale_sections(service.now())
    return response
