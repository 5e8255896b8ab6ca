"""Pydantic settings loaded from YAML configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, SecretStr

_settings: Settings | None = None

_DEFAULT_CONFIG_PATH = Path("config/settings.yaml")


class EvaluationConfig(BaseModel):
    """Re-notification rules for alerts whose condition stays met."""

    price_change_threshold_pct: float = 2.0
    price_change_cooldown_ms: int = 15 * 60 * 1000


class StateCacheConfig(BaseModel):
    """Write-back alert state cache configuration."""

    kv_write_interval_secs: float = 3600.0
    cache_ttl_secs: float = 3600.0


class ExpoConfig(BaseModel):
    """Expo push service configuration."""

    url: str = "https://exp.host/--/api/v2/push/send"
    access_token: SecretStr = SecretStr("")


class FcmConfig(BaseModel):
    """Firebase Cloud Messaging HTTP v1 configuration."""

    base_url: str = "https://fcm.googleapis.com/v1/projects"
    project_id: str = ""
    access_token: SecretStr = SecretStr("")
    service_account_file: str | None = None
    service_account_json: SecretStr = SecretStr("")
    token_url: str = "https://oauth2.googleapis.com/token"
    token_refresh_margin_secs: float = 300.0


class PushConfig(BaseModel):
    """Push notification dispatch configuration."""

    provider: str = "fcm"
    max_retries: int = 3
    retry_delays_ms: list[int] = [200, 500, 1000]
    max_concurrent_sends: int = 20
    request_timeout_secs: float = 10.0
    expo: ExpoConfig = ExpoConfig()
    fcm: FcmConfig = FcmConfig()


class PricesConfig(BaseModel):
    """Price cache in front of the injected price source."""

    cache_ttl_secs: float = 30.0
    allow_stale: bool = False


class StorageConfig(BaseModel):
    """Durable storage locations."""

    sqlite_path: str = "data/alerts.db"


class SchedulerConfig(BaseModel):
    """Cadence of the alert evaluation job."""

    interval_secs: float = 60.0


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"
    delivery_log_path: str | None = None


class Settings(BaseModel):
    """Root settings container."""

    evaluation: EvaluationConfig = EvaluationConfig()
    state_cache: StateCacheConfig = StateCacheConfig()
    push: PushConfig = PushConfig()
    prices: PricesConfig = PricesConfig()
    storage: StorageConfig = StorageConfig()
    scheduler: SchedulerConfig = SchedulerConfig()
    logging: LoggingConfig = LoggingConfig()


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from a YAML file and cache globally.

    Args:
        path: Path to YAML config. Defaults to config/settings.yaml.

    Returns:
        Parsed Settings instance.
    """
    global _settings  # noqa: PLW0603

    config_path = Path(path) if path else _DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f)
            if isinstance(raw, dict):
                data = raw

    _settings = Settings(**data)
    return _settings


def get_settings() -> Settings:
    """Return the cached settings, loading defaults if not yet loaded."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset the cached settings (useful for testing)."""
    global _settings  # noqa: PLW0603
    _settings = None
