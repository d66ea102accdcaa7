"""Engine settings loaded from keyword arguments, environment and ``.env``."""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RateLimitConfig(BaseModel):
    """Spacing between outbound provider calls, in seconds."""

    min_global_gap: float = Field(default=5.0, ge=0)
    min_provider_gap: float = Field(default=15.0, ge=0)
    cooldown: float = Field(default=120.0, ge=0)

    model_config = ConfigDict(extra="ignore")


class CacheConfig(BaseModel):
    """Result cache lifetimes, in seconds."""

    success_ttl: float = Field(default=300.0, gt=0)
    error_ttl: float = Field(default=30.0, gt=0)
    sweep_interval: float = Field(default=300.0, gt=0)

    model_config = ConfigDict(extra="ignore")


class SchedulerConfig(BaseModel):
    """Per-network queue pacing, retry cap and bulk fan-out limits."""

    batch_size: int = Field(default=3, ge=1)
    item_delay: float = Field(default=1.5, ge=0)
    batch_delay: float = Field(default=3.0, ge=0)
    max_attempts: int = Field(default=3, ge=1)
    bulk_concurrency: int = Field(default=10, ge=1)
    bulk_batch_size: int = Field(default=10, ge=1)
    bulk_pause: float = Field(default=0.5, ge=0)

    model_config = ConfigDict(extra="ignore")


class MonitorConfig(BaseModel):
    """Watch-list defaults and buffer capacities."""

    default_interval_minutes: float = Field(default=15.0, gt=0)
    default_threshold_percent: float = Field(default=5.0, ge=0)
    history_size: int = Field(default=100, ge=1)
    alert_capacity: int = Field(default=50, ge=1)

    model_config = ConfigDict(extra="ignore")


class PricingConfig(BaseModel):
    """USD price lookups."""

    enabled: bool = True
    base_url: str = "https://coins.llama.fi"
    ttl: float = Field(default=300.0, gt=0)

    model_config = ConfigDict(extra="ignore")


class EngineSettings(BaseSettings):
    """Single source of truth for engine configuration.

    Values may come from:
    - init kwargs (the CLI passes its options this way)
    - ENV / .env, prefixed with BALANCE_ENGINE_ and nested with ``__``,
      e.g. ``BALANCE_ENGINE_RATE_LIMIT__COOLDOWN=60``

    Do not read os.environ elsewhere in the codebase.
    """

    networks_file: Path | None = None
    request_timeout_seconds: float = Field(default=15.0, gt=0)

    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    pricing: PricingConfig = Field(default_factory=PricingConfig)

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="BALANCE_ENGINE_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _check_ttls(self) -> "EngineSettings":
        if self.cache.error_ttl > self.cache.success_ttl:
            msg = "cache.error_ttl must not exceed cache.success_ttl"
            raise ValueError(msg)
        return self
