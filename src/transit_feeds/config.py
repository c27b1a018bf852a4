"""Application configuration via environment variables."""

from functools import lru_cache
from typing import Literal, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "AC Transit Feeds API"
    app_version: str = "0.1.0"
    environment: Literal["development", "test", "production"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    # AC Transit API
    ac_transit_token: str = Field(default="")
    gtfs_realtime_api_base_url: str = Field(
        default="https://api.actransit.org/transit/gtfsrt",
        validation_alias=AliasChoices("GTFS_REALTIME_API_BASE_URL"),
    )
    act_realtime_api_base_url: str = Field(
        default="https://api.actransit.org/transit/actrealtime",
        validation_alias=AliasChoices("ACT_REALTIME_API_BASE_URL"),
    )
    http_timeout_sec: float = 10.0
    stale_feed_threshold_sec: int = Field(default=120, ge=1)

    # Operator home zone; ACT RealTime timestamps carry no offset
    transit_timezone: str = "America/Los_Angeles"

    # Redis (optional)
    redis_url: Optional[str] = None
    enable_cache: bool = True
    memory_cache_cleanup_threshold: int = Field(default=100, ge=1)

    # Cache TTLs (seconds)
    cache_ttl_vehicle_positions: int = Field(default=10, ge=1)
    cache_ttl_predictions: int = Field(default=15, ge=1)
    cache_ttl_service_alerts: int = Field(default=300, ge=1)
    cache_ttl_bus_stop_profiles: int = Field(default=86400, ge=1)

    # Subscription polling
    polling_interval_sec: float = Field(
        default=15.0,
        ge=5.0,
        le=300.0,
        validation_alias=AliasChoices("POLLING_INTERVAL_SEC", "POLLING_INTERVAL"),
    )
    alerts_polling_interval_sec: float = Field(
        default=60.0,
        ge=30.0,
        le=600.0,
        validation_alias=AliasChoices(
            "ALERTS_POLLING_INTERVAL_SEC", "ACTRANSITALERTS_POLLING_INTERVAL"
        ),
    )

    def missing_required_env(self) -> list[str]:
        """Return required environment variables that are missing or empty."""
        missing: list[str] = []

        if not self.ac_transit_token:
            missing.append("AC_TRANSIT_TOKEN")

        return missing


def with_token(url: str, token: str, params: Optional[dict[str, str]] = None) -> str:
    """Return URL with the AC Transit token and extra query params applied.

    Params already present in the URL are overwritten.
    """
    parsed = urlparse(url)
    query = dict(parse_qsl(parsed.query, keep_blank_values=True))

    if token:
        query["token"] = token
    if params:
        query.update(params)

    if not query:
        return url
    return urlunparse(parsed._replace(query=urlencode(query, safe=",")))


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
