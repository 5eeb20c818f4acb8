"""
Pydantic Schemas for API Request/Response Models

These schemas define the JSON structure for API endpoints. Map and address
responses reuse the result models from src.parcelcache.models.parcel.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from src.parcelcache.models.parcel import CacheStatus, SnapshotMeta


class ViewportRequest(BaseModel):
    """Viewport bounds sent in a request body."""
    n: Optional[float] = None
    s: Optional[float] = None
    e: Optional[float] = None
    w: Optional[float] = None


class MapParcelsRequest(ViewportRequest):
    zoom: Optional[int] = None


class AddressRequest(ViewportRequest):
    address: Optional[str] = None


class SnapshotResponse(BaseModel):
    """Snapshot record plus cache status and, on request, decomposed sections."""
    external_id: str
    payload: Any
    fetched_at: datetime
    expires_at: datetime
    meta: SnapshotMeta
    cache: CacheStatus
    stale_sections: Optional[List[str]] = None
    sections: Optional[Dict[str, Optional[Dict[str, Any]]]] = None


class HealthCheck(BaseModel):
    """Health check response."""
    status: str
    version: str
    cache: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime
