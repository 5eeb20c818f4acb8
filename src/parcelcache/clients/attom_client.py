"""
ATTOM API Client

Issues point-radius snapshot queries against the ATTOM property data API.
"""
from typing import Any, Optional

import requests

from config.settings import settings
from src.parcelcache.errors import ConfigurationError, UpstreamError
from src.parcelcache.models.parcel import Bounds
from src.parcelcache.utils.geo_utils import radius_miles_for_bounds
from src.parcelcache.utils.logger import get_logger

logger = get_logger(__name__)

# ATTOM answers an empty radius query with a non-2xx status and this message
NO_RESULT_MESSAGE = "SuccessWithoutResult"


class AttomClient:
    """
    Client for the ATTOM allevents/snapshot endpoint.

    Makes exactly one HTTP call per fetch and returns the parsed JSON
    untouched. Retries are not attempted here.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        """
        Initialize the ATTOM client.

        Args:
            api_key: Override the configured API key (for testing)
            base_url: Override the default API URL (for testing)
            timeout: Override the HTTP timeout in seconds
        """
        self.api_key = api_key
        self.base_url = base_url or settings.attom_base_url
        self.timeout = timeout if timeout is not None else settings.attom_timeout_seconds
        self.session = requests.Session()
        logger.info("attom_client_initialized", base_url=self.base_url)

    def _resolve_api_key(self) -> str:
        api_key = self.api_key or settings.attom_api_key
        if not api_key:
            raise ConfigurationError("ATTOM API key not configured")
        return api_key

    def fetch_snapshot_for_bounds(self, bounds: Bounds) -> Any:
        """
        Fetch every property within the radius covering a viewport.

        Args:
            bounds: Viewport to query

        Returns:
            Parsed JSON body

        Raises:
            ConfigurationError: No API key configured (checked before any I/O)
            UpstreamError: Non-2xx response, transport failure or invalid JSON
        """
        api_key = self._resolve_api_key()

        center_lat, center_lng = bounds.center()
        radius = radius_miles_for_bounds(bounds.n, bounds.s, bounds.e, bounds.w)
        params = {
            "latitude": center_lat,
            "longitude": center_lng,
            "radius": radius,
        }
        headers = {
            "APIKey": api_key,
            "Accept": "application/json",
        }

        try:
            response = self.session.get(
                self.base_url, params=params, headers=headers, timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(
                "attom_request_failed",
                error=str(e),
                error_type=type(e).__name__
            )
            raise UpstreamError(None, _excerpt(str(e))) from e

        if not response.ok:
            empty = _no_result_payload(response)
            if empty is not None:
                logger.info("attom_request_without_result", status_code=response.status_code)
                return empty

            excerpt = _excerpt(response.text)
            logger.warning(
                "attom_request_rejected",
                status_code=response.status_code,
                body_excerpt=excerpt
            )
            raise UpstreamError(response.status_code, excerpt)

        try:
            data = response.json()
        except ValueError as e:
            logger.error("attom_response_not_json", status_code=response.status_code)
            raise UpstreamError(response.status_code, _excerpt(response.text)) from e

        logger.info(
            "attom_request_successful",
            status_code=response.status_code,
            radius_miles=round(radius, 3),
            property_count=_property_count(data)
        )
        return data


def _excerpt(text: Optional[str]) -> str:
    return (text or "")[:settings.attom_error_excerpt_chars]


def _no_result_payload(response: requests.Response) -> Optional[dict]:
    """Return an empty payload when the error body is ATTOM's no-result status."""
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    status = body.get("status") or {}
    if isinstance(status, dict) and status.get("msg") == NO_RESULT_MESSAGE:
        return {"status": status, "property": []}
    return None


def _property_count(data: Any) -> int:
    if isinstance(data, list):
        return len(data)
    if isinstance(data, dict):
        items = data.get("property", data.get("properties"))
        if isinstance(items, list):
            return len(items)
        return 1 if items else 0
    return 0
