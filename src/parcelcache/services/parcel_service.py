"""
Parcel Data Service

Orchestrates cache reads, coalesced upstream fetches, normalization and
cache writes for the three exposed operations:

- get_map_parcels: viewport -> map pins, cached per tile
- resolve_address / lookup_by_location: address or map click -> parcel
- get_property_snapshot: external id -> full snapshot, stale-while-revalidate

Every coalesced body re-checks the cache before calling upstream, since
another instance may have written the entry in the meantime.
"""
import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from config.settings import Settings, settings as default_settings
from src.parcelcache.cache.coalescer import Coalescer
from src.parcelcache.cache.store import CacheStore, Namespace
from src.parcelcache.clients.attom_client import AttomClient
from src.parcelcache.errors import MissingLocationError, UpstreamError
from src.parcelcache.models.parcel import (
    AddressResolution,
    Bounds,
    CacheEntry,
    CacheStatus,
    MapParcelsResult,
    ParcelRecord,
    SnapshotHint,
    SnapshotMeta,
    SnapshotRecord,
    SnapshotResult,
)
from src.parcelcache.normalizers.addresses import normalize_address_text
from src.parcelcache.normalizers.parcels import (
    extract_property_list,
    find_property,
    normalize_parcel_list,
    payload_for_property,
    raw_external_id,
    select_best_match,
)
from src.parcelcache.services.rate_limiter import RateLimiter
from src.parcelcache.utils.geo_utils import (
    bounds_around_point,
    round_coordinate,
    tile_key_for_bounds,
)
from src.parcelcache.utils.logger import get_logger

logger = get_logger(__name__)


def build_section_expiry(now: datetime, ttl_days: Dict[str, int]) -> Dict[str, datetime]:
    """Per-section expiry stamps for a snapshot fetched at ``now``."""
    return {section: now + timedelta(days=days) for section, days in ttl_days.items()}


class ParcelDataService:
    """
    Cache-fronted access to ATTOM property data.

    One instance per process: it owns the coalescer registry and the
    in-process cache tier.
    """

    def __init__(
        self,
        client: AttomClient,
        cache: CacheStore,
        coalescer: Optional[Coalescer] = None,
        rate_limiter: Optional[RateLimiter] = None,
        config: Optional[Settings] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.client = client
        self.cache = cache
        self.coalescer = coalescer or Coalescer()
        self.config = config or default_settings
        self.rate_limiter = rate_limiter or RateLimiter(interval_ms=self.config.map_rate_limit_ms)
        self.clock = clock or cache.clock or time.time

    def now(self) -> datetime:
        """Current time on the service clock."""
        return datetime.fromtimestamp(self.clock(), tz=timezone.utc)

    async def _fetch(self, bounds: Bounds) -> Any:
        return await asyncio.to_thread(self.client.fetch_snapshot_for_bounds, bounds)

    # Map tiles

    async def get_map_parcels(
        self,
        bounds: Bounds,
        zoom: int,
        requester_key: Optional[str] = None,
    ) -> MapParcelsResult:
        """
        Map pins for a viewport, cached per tile of the viewport center.

        Map pins are best-effort: with map_degrade_on_upstream_error set,
        an upstream failure yields an empty, uncached, degraded result.

        Args:
            bounds: Viewport
            zoom: Map zoom level
            requester_key: Caller identity for the per-tile rate limit

        Returns:
            MapParcelsResult
        """
        tile_key = str(tile_key_for_bounds(bounds, zoom))

        if requester_key and not self.rate_limiter.allow(f"{requester_key}:{tile_key}"):
            logger.info("map_request_rate_limited", tile_key=tile_key, requester=requester_key)
            return MapParcelsResult(
                parcels=[], tile_key=tile_key, cache=CacheStatus.RATE_LIMITED, suppressed=True
            )

        cached = await self._read_map_tile(tile_key)
        if cached is not None:
            return cached

        try:
            return await self.coalescer.coalesce(
                f"map:{tile_key}", lambda: self._fetch_map_tile(bounds, tile_key)
            )
        except UpstreamError as e:
            if not self.config.map_degrade_on_upstream_error:
                raise
            logger.warning("map_tile_degraded", tile_key=tile_key, status=e.status)
            return MapParcelsResult(parcels=[], tile_key=tile_key, cache=CacheStatus.MISS, degraded=True)

    async def _read_map_tile(
        self,
        tile_key: str,
        hit_status: Optional[CacheStatus] = None,
    ) -> Optional[MapParcelsResult]:
        entry, status = await self.cache.lookup(Namespace.MAP_TILE, tile_key)
        if entry is None:
            return None
        parcels = [ParcelRecord.model_validate(parcel) for parcel in entry.value.get("parcels", [])]
        return MapParcelsResult(parcels=parcels, tile_key=tile_key, cache=hit_status or status)

    async def _fetch_map_tile(self, bounds: Bounds, tile_key: str) -> MapParcelsResult:
        refreshed = await self._read_map_tile(tile_key, hit_status=CacheStatus.SINGLEFLIGHT)
        if refreshed is not None:
            return refreshed

        data = await self._fetch(bounds)
        items = extract_property_list(data)
        parcels = normalize_parcel_list(items)
        await self.cache.set(
            Namespace.MAP_TILE,
            tile_key,
            {"tile_key": tile_key, "parcels": [parcel.model_dump(mode="json") for parcel in parcels]},
            self.config.map_tile_ttl_seconds,
        )
        if self.config.map_precache_snapshots:
            await self._precache_snapshots(data, parcels)

        logger.info("map_tile_fetched", tile_key=tile_key, cache="miss", count=len(parcels))
        return MapParcelsResult(parcels=parcels, tile_key=tile_key, cache=CacheStatus.MISS)

    async def _precache_snapshots(self, data: Any, parcels: List[ParcelRecord]) -> None:
        """Seed the snapshot namespace from a map fetch that already holds full records."""
        writes = []
        for parcel in parcels:
            item = find_property(data, parcel.external_id)
            if item is None:
                continue
            writes.append(
                self._store_snapshot(
                    parcel.external_id,
                    payload_for_property(data, item),
                    SnapshotHint(latitude=parcel.latitude, longitude=parcel.longitude),
                )
            )
        if writes:
            await asyncio.gather(*writes)

    # Address resolution

    async def resolve_address(self, address: str, bounds: Bounds) -> AddressResolution:
        """
        Resolve a typed address to its parcel within caller-supplied bounds.

        A resolution without external_id means the address has no known
        parcel; that negative answer is not cached.
        """
        normalized = normalize_address_text(address)
        address_key = normalized or f"lat:{bounds.n}-{bounds.e}"

        cached = await self._read_address(Namespace.ADDRESS, address_key)
        if cached is not None:
            return cached

        return await self.coalescer.coalesce(
            f"addr:{address_key}",
            lambda: self._resolve(
                Namespace.ADDRESS,
                address_key,
                normalized,
                bounds,
                positive_ttl=self.config.address_ttl_seconds,
                negative_ttl=None,
            ),
        )

    async def lookup_by_location(
        self,
        latitude: float,
        longitude: float,
        address: Optional[str] = None,
    ) -> AddressResolution:
        """
        Resolve a map click to its parcel using a small box around the point.

        Answers live in the lookup namespace, apart from resolve_address
        entries, since they come from a different box. Unlike
        resolve_address, a negative answer is cached for
        lookup_negative_ttl_seconds.
        """
        normalized = normalize_address_text(address)
        address_key = normalized or f"lat:{round_coordinate(latitude)}_{round_coordinate(longitude)}"

        cached = await self._read_address(Namespace.LOOKUP, address_key)
        if cached is not None:
            return cached

        bounds = bounds_around_point(latitude, longitude, self.config.location_box_delta)
        return await self.coalescer.coalesce(
            f"lookup:{address_key}",
            lambda: self._resolve(
                Namespace.LOOKUP,
                address_key,
                normalized,
                bounds,
                positive_ttl=self.config.lookup_ttl_seconds,
                negative_ttl=self.config.lookup_negative_ttl_seconds,
            ),
        )

    async def _read_address(
        self,
        namespace: Namespace,
        address_key: str,
        hit_status: Optional[CacheStatus] = None,
    ) -> Optional[AddressResolution]:
        entry, status = await self.cache.lookup(namespace, address_key)
        if entry is None:
            return None
        return AddressResolution.model_validate({**entry.value, "cache": hit_status or status})

    async def _resolve(
        self,
        namespace: Namespace,
        address_key: str,
        normalized: str,
        bounds: Bounds,
        positive_ttl: int,
        negative_ttl: Optional[int],
    ) -> AddressResolution:
        refreshed = await self._read_address(namespace, address_key, hit_status=CacheStatus.SINGLEFLIGHT)
        if refreshed is not None:
            return refreshed

        data = await self._fetch(bounds)
        match = select_best_match(data, normalized)

        if match is None:
            resolution = AddressResolution(address_key=address_key, cache=CacheStatus.MISS)
            if negative_ttl:
                await self.cache.set(
                    namespace,
                    address_key,
                    resolution.model_dump(mode="json", exclude={"cache"}),
                    negative_ttl,
                )
            logger.info("address_unresolved", address_key=address_key, cached=bool(negative_ttl))
            return resolution

        parcel, item = match
        if raw_external_id(item) is not None:
            await self._store_snapshot(
                parcel.external_id,
                payload_for_property(data, item),
                SnapshotHint(latitude=parcel.latitude, longitude=parcel.longitude),
            )

        resolution = AddressResolution(
            address_key=address_key,
            external_id=parcel.external_id,
            parcel=parcel,
            cache=CacheStatus.MISS,
        )
        await self.cache.set(
            namespace,
            address_key,
            resolution.model_dump(mode="json", exclude={"cache"}),
            positive_ttl,
        )
        logger.info("address_resolved", address_key=address_key, cache="miss", external_id=parcel.external_id)
        return resolution

    # Snapshots

    async def get_property_snapshot(
        self,
        external_id: str,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> SnapshotResult:
        """
        Full snapshot for a property.

        A fresh hit returns immediately. A stale hit returns the stale record
        at once and refreshes it in the background when a hint (cached or
        caller-supplied) is available. A true miss fetches synchronously.

        Raises:
            MissingLocationError: True miss with no coordinates to fetch by
        """
        entry, status = await self.cache.lookup(Namespace.SNAPSHOT, external_id, allow_stale=True)
        record = SnapshotRecord.model_validate(entry.value) if entry is not None else None

        if record is not None and not self._is_stale(entry, record):
            return SnapshotResult(record=record, cache=status)

        if record is not None:
            hint = self._hint(record, latitude, longitude)
            if hint is not None:
                self.coalescer.spawn(
                    f"snapshot-refresh:{external_id}",
                    lambda: self._background_refresh(external_id, hint),
                )
            else:
                logger.warning("snapshot_stale_without_hint", external_id=external_id)
            return SnapshotResult(record=record, cache=CacheStatus.STALE)

        return await self.coalescer.coalesce(
            f"snapshot:{external_id}",
            lambda: self._fetch_snapshot(external_id, latitude, longitude),
        )

    def _is_stale(self, entry: CacheEntry, record: SnapshotRecord) -> bool:
        return entry.is_expired(self.clock()) or record.is_expired(self.now())

    @staticmethod
    def _hint(
        record: Optional[SnapshotRecord],
        latitude: Optional[float],
        longitude: Optional[float],
    ) -> Optional[SnapshotHint]:
        if record is not None and record.meta.hint is not None:
            return record.meta.hint
        if latitude is None or longitude is None:
            return None
        return SnapshotHint(latitude=latitude, longitude=longitude)

    async def _fetch_snapshot(
        self,
        external_id: str,
        latitude: Optional[float],
        longitude: Optional[float],
    ) -> SnapshotResult:
        entry, _ = await self.cache.lookup(Namespace.SNAPSHOT, external_id, allow_stale=True)
        record = SnapshotRecord.model_validate(entry.value) if entry is not None else None
        if record is not None and not self._is_stale(entry, record):
            return SnapshotResult(record=record, cache=CacheStatus.SINGLEFLIGHT)

        hint = self._hint(record, latitude, longitude)
        if hint is None:
            raise MissingLocationError(
                f"Latitude/longitude required to fetch snapshot {external_id}"
            )

        stored = await self.refresh_snapshot(external_id, hint.latitude, hint.longitude)
        logger.info("snapshot_fetched", external_id=external_id, cache="miss")
        return SnapshotResult(record=stored, cache=CacheStatus.MISS)

    async def refresh_snapshot(self, external_id: str, latitude: float, longitude: float) -> SnapshotRecord:
        """
        Fetch and store a snapshot around a point.

        The stored payload is narrowed to the property carrying
        ``external_id`` when the response contains it.
        """
        bounds = bounds_around_point(latitude, longitude, self.config.location_box_delta)
        data = await self._fetch(bounds)
        item = find_property(data, external_id)
        payload = payload_for_property(data, item) if item is not None else data
        return await self._store_snapshot(
            external_id, payload, SnapshotHint(latitude=latitude, longitude=longitude)
        )

    async def _background_refresh(self, external_id: str, hint: SnapshotHint) -> None:
        try:
            await self.refresh_snapshot(external_id, hint.latitude, hint.longitude)
        except Exception as e:
            logger.error(
                "snapshot_refresh_failed",
                external_id=external_id,
                error=str(e),
                error_type=type(e).__name__
            )
            return
        logger.info("snapshot_refreshed", external_id=external_id, cache="stale-revalidated")

    async def _store_snapshot(self, external_id: str, payload: Any, hint: SnapshotHint) -> SnapshotRecord:
        now = self.now()
        ttl = self.config.snapshot_ttl_seconds
        record = SnapshotRecord(
            external_id=external_id,
            payload=payload,
            fetched_at=now,
            expires_at=now + timedelta(seconds=ttl),
            meta=SnapshotMeta(
                section_expiry=build_section_expiry(now, self.config.section_ttl_days),
                hint=hint,
            ),
        )
        await self.cache.set(Namespace.SNAPSHOT, external_id, record.model_dump(mode="json"), ttl)
        return record
