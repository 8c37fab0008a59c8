"""Configuration management.

Loads from TOML config files + environment variables.
Uses pydantic-settings for validation and env var overriding.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings

from .enums import BrokerBackend


# ---------------------------------------------------------------------------
# Sub-configs
# ---------------------------------------------------------------------------

class BrokerConfig(BaseModel):
    backend: BrokerBackend = BrokerBackend.MEMORY
    redis_url: str = "redis://localhost:6379/0"
    topic: str = "order-events"
    group: str = "order-processor"
    partitions: int = Field(default=3, ge=1)
    max_stream_length: int = 10_000
    block_ms: int = 1000
    batch_size: int = 10
    alerts_topic: str = ""  # Empty disables forwarding alerts to the broker


class SequencerConfig(BaseModel):
    max_buffer: int = Field(default=64, ge=1)  # Early events held per order
    gap_timeout_seconds: float = Field(default=30.0, gt=0)
    sweep_interval_seconds: float = Field(default=5.0, gt=0)


class RetryConfig(BaseModel):
    max_attempts: int = Field(default=5, ge=1)
    base_backoff_seconds: float = 0.2
    max_backoff_seconds: float = 10.0

    @model_validator(mode="after")
    def _check_backoff(self) -> RetryConfig:
        if self.max_backoff_seconds < self.base_backoff_seconds:
            from .errors import ConfigError

            raise ConfigError(
                "retry.max_backoff_seconds must be >= retry.base_backoff_seconds"
            )
        return self


class LaneConfig(BaseModel):
    num_lanes: int = Field(default=8, ge=1)
    queue_size: int = Field(default=1000, ge=1)  # Per-lane backpressure bound


class ObservabilityConfig(BaseModel):
    log_level: str = "INFO"
    log_format: str = "json"  # "json" or "console"
    metrics_enabled: bool = True
    metrics_port: int = 9090


# ---------------------------------------------------------------------------
# Top-level settings
# ---------------------------------------------------------------------------

class Settings(BaseSettings):
    """Top-level application settings.

    Loaded from TOML config files, overridden by environment variables
    (``ORDERFLOW_BROKER__BACKEND=redis`` and so on).
    """

    broker: BrokerConfig = Field(default_factory=BrokerConfig)
    sequencer: SequencerConfig = Field(default_factory=SequencerConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    lanes: LaneConfig = Field(default_factory=LaneConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    model_config = {"env_prefix": "ORDERFLOW_", "env_nested_delimiter": "__"}


def load_settings(
    config_path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> Settings:
    """Load settings from TOML file + env vars.

    Args:
        config_path: Path to TOML config file (optional).
        overrides: Dict of overrides to apply on top.  Nested sections are
            merged key by key rather than replaced.
    """
    data: dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if path.exists():
            import tomli

            with open(path, "rb") as f:
                data = tomli.load(f)

    if overrides:
        for key, value in overrides.items():
            if isinstance(value, dict) and isinstance(data.get(key), dict):
                data[key] = {**data[key], **value}
            else:
                data[key] = value

    return Settings(**data)
