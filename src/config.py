"""Configuration models using Pydantic for validation."""
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
import os

DEFAULT_TTL_S = 30 * 60


class StoreConfig(BaseModel):
    """Snapshot store connection settings."""
    backend: Literal["redis", "memory"] = "redis"
    url: str = "redis://localhost:6379/0"
    key_prefix: str = "metrics"
    ttl_s: int = Field(default=DEFAULT_TTL_S, gt=0)
    socket_timeout_s: float = 5.0
    socket_connect_timeout_s: float = 10.0
    scan_count: int = Field(default=500, gt=0)

    @field_validator('key_prefix')
    @classmethod
    def validate_key_prefix(cls, v):
        """The prefix is the first key segment, so it cannot contain ':'."""
        if not v or ":" in v:
            raise ValueError("key_prefix must be non-empty and must not contain ':'")
        return v


class FlushConfig(BaseModel):
    """Flush cycle settings."""
    interval_s: float = Field(default=5.0, gt=0)
    histogram_capacity: int = Field(default=1000, ge=1)
    # Merge drained deltas back into the collector when the store write fails
    retain_on_failure: bool = False


class CollectorConfig(BaseModel):
    """Collector settings."""
    sort_labels: bool = False


class GlobalConfig(BaseModel):
    """Global configuration settings."""
    log_level: str = "INFO"
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    self_metrics_prefix: str = "snapshot_exporter_"


class Config(BaseModel):
    """Root configuration model."""
    model_config = ConfigDict(populate_by_name=True)

    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    store: StoreConfig = Field(default_factory=StoreConfig)
    flush: FlushConfig = Field(default_factory=FlushConfig)
    collector: CollectorConfig = Field(default_factory=CollectorConfig)


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate configuration from a YAML file (defaults when no path)."""
    import yaml

    raw_config = {}
    if config_path is not None:
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'r') as f:
            raw_config = yaml.safe_load(f) or {}

    # Apply environment variable overrides
    if env_redis_url := os.getenv('REDIS_URL'):
        raw_config.setdefault('store', {})['url'] = env_redis_url

    if env_log_level := os.getenv('LOG_LEVEL'):
        raw_config.setdefault('global', {})['log_level'] = env_log_level

    try:
        config = Config(**raw_config)
        return config
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}")
