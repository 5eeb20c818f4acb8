"""
Geographic Utility Functions

Viewport tiling and search radius derivation for point-radius queries.
"""
from math import cos, floor, log, pi, radians, tan

from src.parcelcache.models.parcel import Bounds, TileKey

# Flat-earth approximation used for every degree-to-mile conversion
MILES_PER_DEGREE = 69.0

# Radius range accepted by the upstream point-radius query
MIN_RADIUS_MILES = 0.25
MAX_RADIUS_MILES = 20.0

# Web-Mercator is undefined at the poles; latitudes are clamped to the square map
MAX_MERCATOR_LATITUDE = 85.05112878


def tile_key_for_point(lat: float, lng: float, zoom: int) -> TileKey:
    """
    Project a point onto the Web-Mercator slippery-map grid.

    Args:
        lat: Latitude (decimal degrees)
        lng: Longitude (decimal degrees)
        zoom: Map zoom level

    Returns:
        TileKey of the cell containing the point. Latitudes beyond
        +/-MAX_MERCATOR_LATITUDE and longitudes at the antimeridian land in
        the edge tiles.

    Formula:
        x = floor((lng + 180) / 360 * 2^zoom)
        y = floor((1 - ln(tan(lat) + sec(lat)) / pi) / 2 * 2^zoom)
    """
    scale = 2 ** zoom
    lat_rad = radians(max(-MAX_MERCATOR_LATITUDE, min(MAX_MERCATOR_LATITUDE, lat)))
    x = floor(((lng + 180) / 360) * scale)
    y = floor(((1 - log(tan(lat_rad) + 1 / cos(lat_rad)) / pi) / 2) * scale)
    return TileKey(zoom=zoom, x=_clamp_index(x, scale), y=_clamp_index(y, scale))


def _clamp_index(index: int, scale: int) -> int:
    return max(0, min(scale - 1, index))


def tile_key_for_bounds(bounds: Bounds, zoom: int) -> TileKey:
    """TileKey of the viewport's center point."""
    center_lat, center_lng = bounds.center()
    return tile_key_for_point(center_lat, center_lng, zoom)


def radius_miles_for_bounds(n: float, s: float, e: float, w: float) -> float:
    """
    Approximate a viewport's half-diagonal in miles.

    Longitude degrees are shrunk by cos(center latitude). The result is
    clamped to the upstream's accepted radius range, so degenerate
    (zero-area) boxes still query the minimum radius.

    Returns:
        Radius in miles within [MIN_RADIUS_MILES, MAX_RADIUS_MILES]
    """
    center_lat = (n + s) / 2
    lat_degrees = n - s
    lng_degrees = abs(e - w) * cos(radians(center_lat))
    radius = MILES_PER_DEGREE * 0.5 * max(lat_degrees, lng_degrees)
    return max(MIN_RADIUS_MILES, min(MAX_RADIUS_MILES, radius))


def bounds_around_point(lat: float, lng: float, delta: float) -> Bounds:
    """Square box of +/- delta degrees around a point."""
    return Bounds(n=lat + delta, s=lat - delta, e=lng + delta, w=lng - delta)


def round_coordinate(value: float, places: int = 4) -> float:
    """Round a coordinate for use in cache keys (4 places is ~11m)."""
    return round(value, places)
