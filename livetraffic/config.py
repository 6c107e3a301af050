"""Configuration settings for the LiveTraffic radar feed."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger("livetraffic.config")


def _get_bool(env_var: str, default: bool = False) -> bool:
    """Parse an environment variable into a boolean with a default."""

    value = os.getenv(env_var)
    if value is None:
        return default

    return value.lower() in {"1", "true", "yes", "on"}


def _get_optional_float(env_var: str) -> float | None:
    value = os.getenv(env_var)
    return float(value) if value else None


def _get_list(env_var: str, default: str) -> list[str]:
    raw = os.getenv(env_var, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@lru_cache(maxsize=8)
def get_ssm_parameter(name: str) -> str:
    """Fetch a secret from AWS SSM Parameter Store.

    Values are cached in-memory to avoid repeated SSM calls. Any failure to
    retrieve the parameter results in a runtime error so callers fail fast.
    """

    client = boto3.client(
        "ssm",
        region_name=os.getenv("AWS_REGION") or os.getenv("AWS_DEFAULT_REGION") or "us-east-1",
    )
    try:
        response = client.get_parameter(Name=name, WithDecryption=True)
        value = response.get("Parameter", {}).get("Value")
    except (ClientError, BotoCoreError) as exc:  # pragma: no cover - AWS error passthrough
        logger.error("Failed to load %s from SSM: %s", name, exc)
        raise RuntimeError(f"Unable to load {name} from SSM") from exc

    if not value:
        logger.error("Received empty value for %s from SSM", name)
        raise RuntimeError(f"{name} not configured in SSM")

    return value


@dataclass
class Settings:
    """Application configuration loaded from environment variables."""

    log_level: str = os.getenv("LIVETRAFFIC_LOG_LEVEL", "INFO")

    # Radar scope
    reference_airport: str = os.getenv("LIVETRAFFIC_AIRPORT", "").upper()
    reference_lat: float | None = _get_optional_float("LIVETRAFFIC_REFERENCE_LAT")
    reference_lon: float | None = _get_optional_float("LIVETRAFFIC_REFERENCE_LON")
    range_nm: float = float(os.getenv("LIVETRAFFIC_RANGE_NM", "30"))
    floor_ft: float = float(os.getenv("LIVETRAFFIC_FLOOR_FT", "0"))
    ceiling_ft: float = float(os.getenv("LIVETRAFFIC_CEILING_FT", "99999"))
    delay_seconds: float = float(os.getenv("LIVETRAFFIC_DELAY_SECONDS", "0"))
    enable_flight_plan_enrichment: bool = _get_bool(
        "LIVETRAFFIC_ENABLE_FLIGHT_PLANS", default=True
    )
    session_callsign: str | None = os.getenv("LIVETRAFFIC_SESSION_CALLSIGN") or None
    airports_file: str = os.getenv("LIVETRAFFIC_AIRPORTS_FILE", "airports.csv")

    # Fusion and delivery policy
    expiry_seconds: float = float(os.getenv("LIVETRAFFIC_EXPIRY_SECONDS", "60"))
    fusion_interval_seconds: float = float(os.getenv("LIVETRAFFIC_FUSION_INTERVAL", "3"))
    delivery_interval_seconds: float = float(os.getenv("LIVETRAFFIC_DELIVERY_INTERVAL", "5"))
    drain_interval_seconds: float = float(os.getenv("LIVETRAFFIC_DRAIN_INTERVAL", "0.5"))
    source_priority: list[str] = field(
        default_factory=lambda: _get_list(
            "LIVETRAFFIC_SOURCE_PRIORITY", "flightradar24,opensky"
        )
    )
    fusion_tie_window_seconds: float = float(os.getenv("LIVETRAFFIC_TIE_WINDOW", "0"))
    delay_max_span_seconds: float = float(os.getenv("LIVETRAFFIC_DELAY_MAX_SPAN", "900"))
    delay_reorder_window_seconds: float = float(
        os.getenv("LIVETRAFFIC_DELAY_REORDER_WINDOW", "30")
    )
    ingest_queue_size: int = int(os.getenv("LIVETRAFFIC_INGEST_QUEUE_SIZE", "2000"))
    feed_backoff_max_seconds: float = float(os.getenv("LIVETRAFFIC_FEED_BACKOFF_MAX", "60"))
    squawk_range_start: str = os.getenv("LIVETRAFFIC_SQUAWK_START", "0201")
    squawk_range_end: str = os.getenv("LIVETRAFFIC_SQUAWK_END", "7677")

    # FSD server
    listen_host: str = os.getenv("LIVETRAFFIC_LISTEN_HOST", "127.0.0.1")
    listen_port: int = int(os.getenv("LIVETRAFFIC_LISTEN_PORT", "6809"))
    server_name: str = os.getenv("LIVETRAFFIC_SERVER_NAME", "VATSIM FSD V3.14")
    handshake_timeout_seconds: float = float(os.getenv("LIVETRAFFIC_HANDSHAKE_TIMEOUT", "10"))
    position_keepalive_seconds: float = float(os.getenv("LIVETRAFFIC_KEEPALIVE", "15"))
    interpolate_positions: bool = _get_bool("LIVETRAFFIC_INTERPOLATE", default=True)
    interpolate_max_age_seconds: float = float(
        os.getenv("LIVETRAFFIC_INTERPOLATE_MAX_AGE", "20")
    )

    # Status API
    api_host: str = os.getenv("LIVETRAFFIC_API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("LIVETRAFFIC_API_PORT", "8080"))

    # FlightRadar24 (position source A)
    enable_flightradar: bool = _get_bool("ENABLE_FLIGHTRADAR", default=True)
    flightradar_base_url: str = os.getenv(
        "FLIGHTRADAR_BASE_URL",
        "https://data-live.flightradar24.com/zones/fcgi/feed.js",
    )
    flightradar_interval: float = float(os.getenv("FLIGHTRADAR_INTERVAL", "5"))
    flightradar_timeout: float = float(os.getenv("FLIGHTRADAR_TIMEOUT", "10.0"))

    # OpenSky (position source B)
    enable_opensky: bool = _get_bool("ENABLE_OPENSKY", default=True)
    opensky_base_url: str = os.getenv(
        "OPENSKY_BASE_URL", "https://opensky-network.org/api/states/all"
    )
    opensky_interval: float = float(os.getenv("OPENSKY_INTERVAL", "10"))
    opensky_timeout: float = float(os.getenv("OPENSKY_TIMEOUT", "10.0"))
    opensky_username: str | None = os.getenv("OPENSKY_USERNAME") or None
    opensky_password: str | None = os.getenv("OPENSKY_PASSWORD") or None
    opensky_password_ssm_param: str | None = os.getenv("OPENSKY_PASSWORD_SSM_PARAM") or None

    # FlightAware (flight plans)
    flightaware_base_url: str = os.getenv(
        "FLIGHTAWARE_BASE_URL", "https://flightaware.com/live/flight/"
    )
    flightaware_timeout: float = float(os.getenv("FLIGHTAWARE_TIMEOUT", "10.0"))
    flight_plan_cooldown_seconds: float = float(os.getenv("FLIGHT_PLAN_COOLDOWN", "600"))
    flight_plan_max_concurrent: int = int(os.getenv("FLIGHT_PLAN_MAX_CONCURRENT", "5"))

    # NOAA (weather)
    enable_weather: bool = _get_bool("ENABLE_WEATHER", default=True)
    noaa_base_url: str = os.getenv(
        "NOAA_BASE_URL", "https://aviationweather.gov/api/data/metar"
    )
    weather_interval_seconds: float = float(os.getenv("WEATHER_INTERVAL", "300"))
    weather_timeout: float = float(os.getenv("WEATHER_TIMEOUT", "10.0"))


settings = Settings()


def get_opensky_password(config: Settings | None = None) -> str | None:
    """Resolve the OpenSky password from the environment or SSM."""

    config = config or settings
    if config.opensky_password:
        return config.opensky_password
    if config.opensky_password_ssm_param:
        return get_ssm_parameter(config.opensky_password_ssm_param)
    return None


__all__ = ["settings", "Settings", "get_opensky_password", "get_ssm_parameter"]
