"""
Shared fixtures for parcel cache tests
"""
from unittest.mock import Mock

import pytest

from config.settings import Settings
from src.parcelcache.cache.coalescer import Coalescer
from src.parcelcache.cache.store import CacheStore
from src.parcelcache.clients.attom_client import AttomClient
from src.parcelcache.services.parcel_service import ParcelDataService
from src.parcelcache.services.rate_limiter import RateLimiter

# 2026-01-01T00:00:00Z
START_TIME = 1767225600.0


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, start: float = START_TIME):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_property(
    attom_id="1001",
    line1="1 Main St",
    locality="Springfield",
    latitude=40.705,
    longitude=-74.0,
    **extra,
):
    """Upstream-shaped property object."""
    item = {
        "identifier": {"Id": attom_id},
        "address": {"line1": line1, "locality": locality, "adminarea": "NY", "postal1": "10004"},
        "location": {"latitude": str(latitude), "longitude": str(longitude)},
        "summary": {"proptype": "SFR"},
        "building": {"rooms": {"beds": 3, "bathstotal": 2.5}, "size": {"universalsize": 1800}},
    }
    item.update(extra)
    return item


@pytest.fixture
def property_factory():
    return make_property


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def test_settings():
    return Settings(
        attom_api_key="test-key",
        redis_url="",
        map_rate_limit_ms=0,
    )


@pytest.fixture
def attom_client():
    client = Mock(spec=AttomClient)
    client.fetch_snapshot_for_bounds.return_value = {"property": []}
    return client


@pytest.fixture
def make_service(attom_client, clock, test_settings):
    """Factory for a service wired to the stub client and an in-memory cache."""

    def _factory(config=None, **overrides):
        config = config or test_settings.model_copy(update=overrides)
        return ParcelDataService(
            client=attom_client,
            cache=CacheStore(clock=clock),
            coalescer=Coalescer(),
            rate_limiter=RateLimiter(interval_ms=config.map_rate_limit_ms, clock=clock),
            config=config,
        )

    return _factory
