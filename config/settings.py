"""
Configuration Settings

Centralized configuration management using Pydantic and environment variables.
"""
from typing import Dict, List, Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DAY_SECONDS = 24 * 60 * 60


def _default_section_ttl_days() -> Dict[str, int]:
    return {
        "valuation": 3,
        "equity": 3,
        "distress": 3,
        "ownership": 60,
        "mortgage": 60,
        "sales_history": 60,
        "tax": 90,
        "physical": 90,
    }


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All sensitive values should be stored in .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ATTOM property data API
    attom_api_key: Optional[str] = None
    attom_base_url: str = "https://api.gateway.attomdata.com/propertyapi/v1.0.0/allevents/snapshot"
    attom_timeout_seconds: float = 10.0
    attom_error_excerpt_chars: int = 200

    # Redis settings (L2 cache); empty string disables the remote tier
    redis_url: str = "redis://localhost:6379/0"
    redis_key_prefix: str = "attom"

    # In-process cache (L1)
    local_cache_max_entries: int = 5000

    # Cache retention per namespace
    map_tile_ttl_seconds: int = 30 * 60
    address_ttl_seconds: int = 120 * DAY_SECONDS
    lookup_ttl_seconds: int = 30 * DAY_SECONDS
    lookup_negative_ttl_seconds: int = 60 * 60
    snapshot_ttl_seconds: int = 30 * DAY_SECONDS
    snapshot_stale_retention_seconds: int = 30 * DAY_SECONDS
    section_ttl_days: Dict[str, int] = Field(default_factory=_default_section_ttl_days)

    # Map tile behaviour
    map_rate_limit_ms: int = 600
    map_degrade_on_upstream_error: bool = True
    map_precache_snapshots: bool = True

    # Half-size in degrees of the box queried around a single point (~200m)
    location_box_delta: float = 0.002

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "json"

    # Application settings
    environment: str = "development"
    debug: bool = False
    cors_allow_origins: List[str] = Field(default_factory=lambda: ["*"])


# Singleton instance
settings = Settings()
