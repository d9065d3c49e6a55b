from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DispatchSettings(BaseSettings):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["text", "json"] = "text"
    environment: str = "development"
    sweep_interval_seconds: float = Field(
        default=2.0,
        ge=0.5,
        le=60.0,
        description="Seconds between expiry sweeps and deferred dispatch drains",
    )
    retry_unmatched_after_seconds: int = Field(
        default=20,
        ge=1,
        le=600,
        description="Minimum age of the last matching attempt before a pending ride is retried",
    )
    task_batch_size: int = Field(default=50, ge=1, le=1000)

    model_config = SettingsConfigDict(env_prefix="DISPATCH_")


class DatabaseSettings(BaseSettings):
    url: str = "sqlite:///./data/captain_dispatch.db"
    echo: bool = False

    model_config = SettingsConfigDict(env_prefix="DB_")


class MatchingSettings(BaseSettings):
    """Fallback matching policy used when a locality has no config row."""

    initial_radius_km: float = Field(default=1.5, gt=0.0)
    radius_expansion_step_km: float = Field(default=1.0, ge=0.0)
    max_radius_km: float = Field(default=5.0, gt=0.0)
    max_retry_attempts: int = Field(default=3, ge=0, le=20)
    max_offers_per_ride: int = Field(default=5, ge=1, le=50)
    offer_timeout_seconds: int = Field(
        default=15,
        ge=5,
        le=120,
        description="Seconds before a pending offer expires",
    )
    redispatch_delay_seconds: float = Field(
        default=0.5,
        ge=0.0,
        le=30.0,
        description="Delay before a deferred re-dispatch task becomes due",
    )
    location_staleness_seconds: int = Field(
        default=120,
        ge=5,
        description="Captains whose last location ping is older than this are not offered rides",
    )
    cooldown_threshold: int = Field(default=3, ge=1)
    cooldown_minutes: int = Field(default=30, ge=1)
    day_boundary_timezone: str = "UTC"
    h3_resolution: int = Field(
        default=7,
        ge=4,
        le=9,
        description="H3 resolution of the captain location cell column",
    )

    model_config = SettingsConfigDict(env_prefix="MATCHING_")

    @model_validator(mode="after")
    def validate_radius_bounds(self) -> "MatchingSettings":
        if self.initial_radius_km > self.max_radius_km:
            raise ValueError(
                f"initial_radius_km ({self.initial_radius_km}) must not exceed "
                f"max_radius_km ({self.max_radius_km})"
            )
        return self


class FareSettings(BaseSettings):
    road_distance_factor: float = Field(
        default=1.3,
        ge=1.0,
        le=3.0,
        description="Multiplier applied to great-circle distance in the fallback estimate",
    )
    captain_earnings_share: float = Field(default=0.80, gt=0.0, le=1.0)
    currency_minor_units: int = Field(default=2, ge=0, le=4)
    max_surge_multiplier: float = Field(default=3.0, ge=1.0)

    model_config = SettingsConfigDict(env_prefix="FARE_")


class OSRMSettings(BaseSettings):
    base_url: str = "http://localhost:5000"
    timeout_seconds: float = Field(default=5.0, gt=0.0, le=60.0)
    max_retries: int = Field(default=2, ge=0, le=10)

    model_config = SettingsConfigDict(env_prefix="OSRM_")

    @field_validator("base_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("OSRM base URL must start with http:// or https://")
        return v.rstrip("/")


class RedisSettings(BaseSettings):
    enabled: bool = False
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: str = ""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    @model_validator(mode="after")
    def validate_credentials_provided(self) -> "RedisSettings":
        if self.enabled and not self.password:
            raise ValueError("Required credential not provided: REDIS_PASSWORD")
        return self


class APISettings(BaseSettings):
    key: str = ""
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)

    model_config = SettingsConfigDict(env_prefix="API_")

    @model_validator(mode="after")
    def validate_credentials_provided(self) -> "APISettings":
        if not self.key:
            raise ValueError("Required credential not provided: API_KEY")
        return self


class Settings(BaseSettings):
    dispatch: DispatchSettings = Field(default_factory=DispatchSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    matching: MatchingSettings = Field(default_factory=MatchingSettings)
    fare: FareSettings = Field(default_factory=FareSettings)
    osrm: OSRMSettings = Field(default_factory=OSRMSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    api: APISettings = Field(default_factory=APISettings)

    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        case_sensitive=False,
    )


def get_settings() -> Settings:
    """Load and validate settings from environment variables."""
    return Settings()
