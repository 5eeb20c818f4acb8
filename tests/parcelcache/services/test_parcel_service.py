"""
Tests for Parcel Data Service

Tests the map, address and snapshot flows end to end against a stubbed
ATTOM client and an in-memory cache.
"""
import asyncio
import threading
from datetime import datetime, timedelta, timezone

import pytest

from src.parcelcache.cache.store import Namespace
from src.parcelcache.errors import ConfigurationError, MissingLocationError, UpstreamError
from src.parcelcache.models.parcel import (
    Bounds,
    CacheStatus,
    SnapshotHint,
    SnapshotMeta,
    SnapshotRecord,
)
from src.parcelcache.services.parcel_service import build_section_expiry

VIEWPORT = Bounds(n=40.71, s=40.70, e=-73.99, w=-74.01)
DAY = 24 * 60 * 60


def _map_payload(property_factory):
    without_location = property_factory(attom_id="2002", line1="2 Main St")
    del without_location["location"]
    return {"status": {"code": 0}, "property": [property_factory(), without_location]}


class TestGetMapParcels:
    """Tests for viewport map pins."""

    def test_miss_then_memory_hit(self, make_service, attom_client, property_factory):
        """Test the first call fetches and the second is served from cache."""
        attom_client.fetch_snapshot_for_bounds.return_value = _map_payload(property_factory)
        service = make_service()

        async def scenario():
            first = await service.get_map_parcels(VIEWPORT, 15)
            second = await service.get_map_parcels(VIEWPORT, 15)
            return first, second

        first, second = asyncio.run(scenario())

        assert first.cache == CacheStatus.MISS
        assert [parcel.external_id for parcel in first.parcels] == ["1001"]
        assert second.cache == CacheStatus.MEMORY
        assert second.parcels == first.parcels
        assert second.tile_key == first.tile_key
        assert attom_client.fetch_snapshot_for_bounds.call_count == 1
        attom_client.fetch_snapshot_for_bounds.assert_called_once_with(VIEWPORT)

    def test_tile_key_shape(self, make_service):
        result = asyncio.run(make_service().get_map_parcels(VIEWPORT, 15))

        zoom, x, y = result.tile_key.split(":")
        assert zoom == "15"
        assert x == "9648"
        assert result.parcels == []

    def test_concurrent_requests_coalesce(self, make_service, attom_client, property_factory):
        """Test simultaneous requests for one tile make a single upstream call."""
        attom_client.fetch_snapshot_for_bounds.return_value = _map_payload(property_factory)
        service = make_service()

        async def scenario():
            return await asyncio.gather(*(service.get_map_parcels(VIEWPORT, 15) for _ in range(5)))

        results = asyncio.run(scenario())

        assert attom_client.fetch_snapshot_for_bounds.call_count == 1
        assert all(result.parcels == results[0].parcels for result in results)

    def test_polar_viewport(self, make_service):
        """Test a viewport at the pole is tiled instead of failing."""
        result = asyncio.run(make_service().get_map_parcels(Bounds(n=-90, s=-90, e=0, w=0), 10))

        assert result.tile_key == "10:512:1023"
        assert result.parcels == []

    def test_recheck_inside_flight(self, make_service, attom_client):
        """Test the coalesced body serves an entry written by another instance."""
        service = make_service()

        async def scenario():
            tile_key = "15:9648:12321"
            await service.cache.set(Namespace.MAP_TILE, tile_key, {"tile_key": tile_key, "parcels": []}, 60)
            return await service._fetch_map_tile(VIEWPORT, tile_key)

        result = asyncio.run(scenario())

        assert result.cache == CacheStatus.SINGLEFLIGHT
        attom_client.fetch_snapshot_for_bounds.assert_not_called()

    def test_precaches_snapshots(self, make_service, attom_client, property_factory):
        """Test map fetches seed the snapshot cache with a narrowed payload."""
        payload = {"property": [property_factory(attom_id="1"), property_factory(attom_id="2", line1="2 Main St")]}
        attom_client.fetch_snapshot_for_bounds.return_value = payload
        service = make_service()

        async def scenario():
            await service.get_map_parcels(VIEWPORT, 15)
            return await service.get_property_snapshot("2")

        result = asyncio.run(scenario())

        assert result.cache == CacheStatus.MEMORY
        assert result.record.payload["property"] == [payload["property"][1]]
        assert result.record.meta.hint == SnapshotHint(latitude=40.705, longitude=-74.0)
        assert attom_client.fetch_snapshot_for_bounds.call_count == 1

    def test_precache_can_be_disabled(self, make_service, attom_client, property_factory):
        attom_client.fetch_snapshot_for_bounds.return_value = {"property": [property_factory()]}
        service = make_service(map_precache_snapshots=False)

        async def scenario():
            await service.get_map_parcels(VIEWPORT, 15)
            return await service.cache.get(Namespace.SNAPSHOT, "1001")

        assert asyncio.run(scenario()) is None

    def test_rate_limited(self, make_service, attom_client):
        """Test rapid repeats from one requester are suppressed."""
        service = make_service(map_rate_limit_ms=600)

        async def scenario():
            first = await service.get_map_parcels(VIEWPORT, 15, requester_key="10.0.0.1")
            second = await service.get_map_parcels(VIEWPORT, 15, requester_key="10.0.0.1")
            other = await service.get_map_parcels(VIEWPORT, 15, requester_key="10.0.0.2")
            return first, second, other

        first, second, other = asyncio.run(scenario())

        assert first.cache == CacheStatus.MISS
        assert second.cache == CacheStatus.RATE_LIMITED
        assert second.suppressed is True
        assert second.parcels == []
        assert other.cache == CacheStatus.MEMORY

    def test_upstream_failure_degrades(self, make_service, attom_client, property_factory):
        """Test an upstream error yields an uncached, degraded empty result."""
        attom_client.fetch_snapshot_for_bounds.side_effect = [
            UpstreamError(503, "busy"),
            {"property": [property_factory()]},
        ]
        service = make_service()

        async def scenario():
            degraded = await service.get_map_parcels(VIEWPORT, 15)
            recovered = await service.get_map_parcels(VIEWPORT, 15)
            return degraded, recovered

        degraded, recovered = asyncio.run(scenario())

        assert degraded.degraded is True
        assert degraded.parcels == []
        assert recovered.cache == CacheStatus.MISS
        assert len(recovered.parcels) == 1

    def test_upstream_failure_propagates_when_not_degrading(self, make_service, attom_client):
        attom_client.fetch_snapshot_for_bounds.side_effect = UpstreamError(500, "boom")
        service = make_service(map_degrade_on_upstream_error=False)

        with pytest.raises(UpstreamError):
            asyncio.run(service.get_map_parcels(VIEWPORT, 15))

    def test_configuration_error_propagates(self, make_service, attom_client):
        attom_client.fetch_snapshot_for_bounds.side_effect = ConfigurationError("ATTOM API key not configured")

        with pytest.raises(ConfigurationError):
            asyncio.run(make_service().get_map_parcels(VIEWPORT, 15))


class TestResolveAddress:
    """Tests for typed address resolution."""

    def _payload(self, property_factory):
        return {
            "property": [
                property_factory(attom_id="1", line1="1 Main St"),
                property_factory(attom_id="2", line1="2 Main St", avm={"amount": {"value": 500000}}),
            ]
        }

    def test_resolves_and_caches(self, make_service, attom_client, property_factory):
        attom_client.fetch_snapshot_for_bounds.return_value = self._payload(property_factory)
        service = make_service()

        async def scenario():
            first = await service.resolve_address("2 Main St.", VIEWPORT)
            second = await service.resolve_address("  2 main st ", VIEWPORT)
            return first, second

        first, second = asyncio.run(scenario())

        assert first.address_key == "2 main st"
        assert first.external_id == "2"
        assert first.parcel.estimate == 500000
        assert first.cache == CacheStatus.MISS
        assert second.cache == CacheStatus.MEMORY
        assert second.parcel == first.parcel
        assert attom_client.fetch_snapshot_for_bounds.call_count == 1

    def test_stores_matched_snapshot(self, make_service, attom_client, property_factory):
        """Test the matched property's payload lands in the snapshot cache."""
        payload = self._payload(property_factory)
        attom_client.fetch_snapshot_for_bounds.return_value = payload
        service = make_service()

        async def scenario():
            await service.resolve_address("2 Main St", VIEWPORT)
            return await service.get_property_snapshot("2")

        result = asyncio.run(scenario())

        assert result.cache == CacheStatus.MEMORY
        assert result.record.payload["property"] == [payload["property"][1]]

    def test_unmatched_falls_back_to_first(self, make_service, attom_client, property_factory):
        attom_client.fetch_snapshot_for_bounds.return_value = self._payload(property_factory)

        resolution = asyncio.run(make_service().resolve_address("9 Elm St", VIEWPORT))

        assert resolution.external_id == "1"

    def test_not_found_is_not_cached(self, make_service, attom_client):
        """Test an empty result is returned but re-queried next time."""
        service = make_service()

        async def scenario():
            first = await service.resolve_address("404 Nowhere Rd", VIEWPORT)
            second = await service.resolve_address("404 Nowhere Rd", VIEWPORT)
            return first, second

        first, second = asyncio.run(scenario())

        assert first.external_id is None
        assert first.parcel is None
        assert not first.found
        assert second.cache == CacheStatus.MISS
        assert attom_client.fetch_snapshot_for_bounds.call_count == 2

    def test_blank_address_keys_by_bounds(self, make_service):
        resolution = asyncio.run(make_service().resolve_address("!!!", VIEWPORT))
        assert resolution.address_key == "lat:40.71--73.99"


class TestLookupByLocation:
    """Tests for map-click lookup."""

    def test_queries_small_box(self, make_service, attom_client, property_factory):
        attom_client.fetch_snapshot_for_bounds.return_value = {"property": [property_factory()]}
        service = make_service(location_box_delta=0.002)

        resolution = asyncio.run(service.lookup_by_location(40.7050001, -74.0000001))

        bounds = attom_client.fetch_snapshot_for_bounds.call_args[0][0]
        assert bounds.n - bounds.s == pytest.approx(0.004)
        assert resolution.address_key == "lat:40.705_-74.0"
        assert resolution.external_id == "1001"

    def test_address_hint_sets_key(self, make_service, attom_client, property_factory):
        attom_client.fetch_snapshot_for_bounds.return_value = {"property": [property_factory()]}

        resolution = asyncio.run(make_service().lookup_by_location(40.705, -74.0, "1 Main St"))

        assert resolution.address_key == "1 main st"

    def test_negative_result_cached_briefly(self, make_service, attom_client, clock, property_factory):
        """Test a miss is cached for the negative TTL and re-queried after it."""
        attom_client.fetch_snapshot_for_bounds.side_effect = [
            {"property": []},
            {"property": [property_factory()]},
        ]
        service = make_service(lookup_negative_ttl_seconds=3600)

        async def scenario():
            first = await service.lookup_by_location(40.705, -74.0)
            cached = await service.lookup_by_location(40.705, -74.0)
            clock.advance(3601)
            refreshed = await service.lookup_by_location(40.705, -74.0)
            return first, cached, refreshed

        first, cached, refreshed = asyncio.run(scenario())

        assert first.external_id is None
        assert cached.external_id is None
        assert cached.cache == CacheStatus.MEMORY
        assert refreshed.external_id == "1001"
        assert attom_client.fetch_snapshot_for_bounds.call_count == 2

    def test_lookup_does_not_share_address_cache(self, make_service, attom_client, property_factory):
        """Test a cached negative click lookup is never served to address resolution."""
        attom_client.fetch_snapshot_for_bounds.side_effect = [
            {"property": []},
            {"property": [property_factory()]},
        ]
        service = make_service()

        async def scenario():
            lookup = await service.lookup_by_location(40.705, -74.0, "1 Main St")
            resolution = await service.resolve_address("1 Main St", VIEWPORT)
            return lookup, resolution

        lookup, resolution = asyncio.run(scenario())

        assert lookup.external_id is None
        assert resolution.external_id == "1001"
        assert resolution.cache == CacheStatus.MISS
        assert attom_client.fetch_snapshot_for_bounds.call_count == 2

    def test_concurrent_lookup_and_resolve_do_not_coalesce(self, make_service, attom_client, property_factory):
        """Test a click lookup never joins an address resolution querying other bounds."""
        attom_client.fetch_snapshot_for_bounds.return_value = {"property": [property_factory()]}
        service = make_service()

        async def scenario():
            return await asyncio.gather(
                service.resolve_address("1 Main St", VIEWPORT),
                service.lookup_by_location(40.705, -74.0, "1 Main St"),
            )

        asyncio.run(scenario())

        queried = [call.args[0] for call in attom_client.fetch_snapshot_for_bounds.call_args_list]
        assert len(queried) == 2
        assert VIEWPORT in queried

    def test_positive_result_uses_lookup_ttl(self, make_service, attom_client, clock, property_factory):
        attom_client.fetch_snapshot_for_bounds.return_value = {"property": [property_factory()]}
        service = make_service(lookup_ttl_seconds=30 * DAY)

        async def scenario():
            await service.lookup_by_location(40.705, -74.0)
            clock.advance(29 * DAY)
            return await service.lookup_by_location(40.705, -74.0)

        assert asyncio.run(scenario()).cache == CacheStatus.MEMORY
        assert attom_client.fetch_snapshot_for_bounds.call_count == 1


class TestGetPropertySnapshot:
    """Tests for snapshot retrieval and stale-while-revalidate."""

    def _stale_record(self, clock, payload):
        now = datetime.fromtimestamp(clock(), tz=timezone.utc)
        return SnapshotRecord(
            external_id="123",
            payload=payload,
            fetched_at=now - timedelta(days=40),
            expires_at=now - timedelta(days=10),
            meta=SnapshotMeta(hint=SnapshotHint(latitude=40.705, longitude=-74.0)),
        )

    def test_miss_fetches_with_coordinates(self, make_service, attom_client, property_factory):
        payload = {"property": [property_factory(attom_id="9"), property_factory(attom_id="123")]}
        attom_client.fetch_snapshot_for_bounds.return_value = payload
        service = make_service()

        result = asyncio.run(service.get_property_snapshot("123", 40.705, -74.0))

        assert result.cache == CacheStatus.MISS
        assert result.record.external_id == "123"
        assert result.record.payload["property"] == [payload["property"][1]]
        assert result.record.meta.hint == SnapshotHint(latitude=40.705, longitude=-74.0)
        assert set(result.record.meta.section_expiry) == set(service.config.section_ttl_days)

    def test_miss_without_coordinates(self, make_service, attom_client):
        """Test a true miss without any location fails before upstream."""
        with pytest.raises(MissingLocationError):
            asyncio.run(make_service().get_property_snapshot("123"))

        attom_client.fetch_snapshot_for_bounds.assert_not_called()

    def test_fresh_hit(self, make_service, attom_client, property_factory):
        attom_client.fetch_snapshot_for_bounds.return_value = {"property": [property_factory(attom_id="123")]}
        service = make_service()

        async def scenario():
            await service.get_property_snapshot("123", 40.705, -74.0)
            return await service.get_property_snapshot("123")

        result = asyncio.run(scenario())

        assert result.cache == CacheStatus.MEMORY
        assert attom_client.fetch_snapshot_for_bounds.call_count == 1

    def test_stale_served_while_refreshing(self, make_service, attom_client, clock, property_factory):
        """Test a stale record is returned at once and refreshed in the background."""
        release = threading.Event()
        fresh_payload = {"property": [property_factory(attom_id="123", line1="123 New St")]}

        def slow_fetch(bounds):
            release.wait(timeout=5)
            return fresh_payload

        attom_client.fetch_snapshot_for_bounds.side_effect = slow_fetch
        service = make_service()
        stale = self._stale_record(clock, {"property": [{"old": True}]})

        async def scenario():
            await service.cache.set(Namespace.SNAPSHOT, "123", stale.model_dump(mode="json"), -DAY)

            served = await service.get_property_snapshot("123")
            refreshing = service.coalescer.is_in_flight("snapshot-refresh:123")

            release.set()
            await service.coalescer.in_flight("snapshot-refresh:123")

            after = await service.get_property_snapshot("123")
            return served, refreshing, after

        served, refreshing, after = asyncio.run(scenario())

        assert served.cache == CacheStatus.STALE
        assert served.record.payload == {"property": [{"old": True}]}
        assert refreshing is True
        assert after.cache == CacheStatus.MEMORY
        assert after.record.payload == fresh_payload
        assert attom_client.fetch_snapshot_for_bounds.call_count == 1

    def test_failed_refresh_keeps_stale_record(self, make_service, attom_client, clock):
        """Test a background refresh failure is swallowed and the stale record kept."""
        attom_client.fetch_snapshot_for_bounds.side_effect = UpstreamError(500, "boom")
        service = make_service()
        stale = self._stale_record(clock, {"property": [{"old": True}]})

        async def scenario():
            await service.cache.set(Namespace.SNAPSHOT, "123", stale.model_dump(mode="json"), -DAY)
            served = await service.get_property_snapshot("123")
            await service.coalescer.in_flight("snapshot-refresh:123")
            again = await service.get_property_snapshot("123")
            await service.coalescer.in_flight("snapshot-refresh:123")
            return served, again

        served, again = asyncio.run(scenario())

        assert served.cache == CacheStatus.STALE
        assert again.cache == CacheStatus.STALE
        assert again.record.payload == {"property": [{"old": True}]}

    def test_concurrent_misses_coalesce(self, make_service, attom_client, property_factory):
        attom_client.fetch_snapshot_for_bounds.return_value = {"property": [property_factory(attom_id="123")]}
        service = make_service()

        async def scenario():
            return await asyncio.gather(
                *(service.get_property_snapshot("123", 40.705, -74.0) for _ in range(4))
            )

        results = asyncio.run(scenario())

        assert attom_client.fetch_snapshot_for_bounds.call_count == 1
        assert all(result.record == results[0].record for result in results)


class TestSectionExpiry:
    """Tests for per-section expiry stamps."""

    def test_build_section_expiry(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)

        expiry = build_section_expiry(now, {"valuation": 3, "tax": 90})

        assert expiry == {
            "valuation": datetime(2026, 1, 4, tzinfo=timezone.utc),
            "tax": datetime(2026, 4, 1, tzinfo=timezone.utc),
        }

    def test_stale_sections(self):
        fetched = datetime(2026, 1, 1, tzinfo=timezone.utc)
        record = SnapshotRecord(
            external_id="1",
            payload={},
            fetched_at=fetched,
            expires_at=fetched + timedelta(days=30),
            meta=SnapshotMeta(section_expiry=build_section_expiry(fetched, {"valuation": 3, "tax": 90})),
        )

        assert record.stale_sections(fetched + timedelta(days=10)) == ["valuation"]
        assert not record.is_expired(fetched + timedelta(days=10))
