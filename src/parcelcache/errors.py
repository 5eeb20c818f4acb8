"""
Parcel Cache Errors

Typed failures raised by the upstream client and the orchestration layer.
Normalizers never raise; they degrade missing fields to None.
"""
from typing import Optional


class ParcelCacheError(RuntimeError):
    """Base class for parcel cache failures."""


class ConfigurationError(ParcelCacheError):
    """A required secret or setting is missing. Never retried."""


class UpstreamError(ParcelCacheError):
    """
    The property data API failed.

    Attributes:
        status: HTTP status, or None for transport failures
        body_excerpt: Truncated response body (never the full body)
    """

    def __init__(self, status: Optional[int], body_excerpt: str = ""):
        self.status = status
        self.body_excerpt = body_excerpt
        label = status if status is not None else "transport"
        super().__init__(f"ATTOM API error {label}: {body_excerpt}")


class MissingLocationError(ParcelCacheError):
    """A snapshot was requested without a cached hint or caller coordinates."""

__all__ = [
    "ParcelCacheError",
    "ConfigurationError",
    "UpstreamError",
    "MissingLocationError",
]
