"""
Parcel Data Models

Pydantic models for viewport bounds, tile keys, normalized parcel records,
property snapshots and cache entries.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class CacheStatus(str, Enum):
    """
    Where a result came from. Diagnostic only; callers must not branch on it.
    """
    MEMORY = "memory"
    REDIS = "redis"
    MISS = "miss"
    STALE = "stale"
    SINGLEFLIGHT = "singleflight"
    RATE_LIMITED = "rate_limited"


class Bounds(BaseModel):
    """
    Geographic viewport.

    Attributes:
        n: Northern latitude
        s: Southern latitude
        e: Eastern longitude
        w: Western longitude
    """
    model_config = ConfigDict(frozen=True)

    n: float = Field(..., ge=-90, le=90)
    s: float = Field(..., ge=-90, le=90)
    e: float = Field(..., ge=-180, le=180)
    w: float = Field(..., ge=-180, le=180)

    def center(self) -> Tuple[float, float]:
        """Return (latitude, longitude) of the box center."""
        return (self.n + self.s) / 2, (self.e + self.w) / 2


class TileKey(BaseModel):
    """Slippery-map cell used as a cache bucket, serialized as "zoom:x:y"."""
    model_config = ConfigDict(frozen=True)

    zoom: int
    x: int
    y: int

    def __str__(self) -> str:
        return f"{self.zoom}:{self.x}:{self.y}"

    @classmethod
    def parse(cls, value: str) -> "TileKey":
        zoom, x, y = (int(part) for part in value.split(":"))
        return cls(zoom=zoom, x=x, y=y)


class ParcelRecord(BaseModel):
    """
    Lightweight map pin for one property.

    Coordinates are the only hard requirement; every other field
    degrades to None when the upstream record lacks it.
    """

    address: str
    latitude: float
    longitude: float
    external_id: str
    thumbnail: Optional[str] = None
    property_type: Optional[str] = None
    beds: Optional[float] = None
    baths: Optional[float] = None
    square_feet: Optional[float] = None


class AddressParcelRecord(ParcelRecord):
    """
    Parcel record resolved from a typed address, with valuation and
    last sale. The sale date is kept in the upstream's own string format.
    """

    estimate: Optional[float] = None
    last_sale_price: Optional[float] = None
    last_sale_date: Optional[str] = None


class SnapshotHint(BaseModel):
    """Coordinates a snapshot was fetched with, used to refresh it later."""
    latitude: float
    longitude: float


class SnapshotMeta(BaseModel):
    section_expiry: Dict[str, datetime] = Field(default_factory=dict)
    hint: Optional[SnapshotHint] = None


class SnapshotRecord(BaseModel):
    """
    Full upstream payload for one property plus cache bookkeeping.

    Attributes:
        external_id: Upstream property identifier
        payload: Upstream JSON, stored verbatim
        fetched_at: When the payload was fetched
        expires_at: When the record as a whole goes stale
        meta: Per-section expiry horizons and the refresh hint
    """

    external_id: str
    payload: Any
    fetched_at: datetime
    expires_at: datetime
    meta: SnapshotMeta = Field(default_factory=SnapshotMeta)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.expires_at <= now

    def stale_sections(self, now: Optional[datetime] = None) -> List[str]:
        """Sections whose own expiry horizon has passed."""
        now = now or datetime.now(timezone.utc)
        return sorted(
            name for name, expires_at in self.meta.section_expiry.items()
            if expires_at <= now
        )


class CacheEntry(BaseModel):
    """
    Cached value with expiry (epoch seconds).

    Entries are replaced wholesale on every write, never merged.
    """

    value: Any
    fetched_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


class MapParcelsResult(BaseModel):
    parcels: List[ParcelRecord] = Field(default_factory=list)
    tile_key: str
    cache: CacheStatus
    suppressed: bool = False
    degraded: bool = False


class AddressResolution(BaseModel):
    """
    Address (or map click) resolved to a parcel.

    A resolution with no external_id is a deliberate negative answer.
    """

    address_key: str
    external_id: Optional[str] = None
    parcel: Optional[AddressParcelRecord] = None
    cache: CacheStatus = CacheStatus.MISS

    @property
    def found(self) -> bool:
        return self.external_id is not None


class SnapshotResult(BaseModel):
    record: SnapshotRecord
    cache: CacheStatus
