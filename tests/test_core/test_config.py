"""Tests for src/core/config.py — YAML loading, defaults, SecretStr."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from src.core.config import (
    EvaluationConfig,
    FcmConfig,
    LoggingConfig,
    PushConfig,
    Settings,
    StateCacheConfig,
    get_settings,
    load_settings,
    reset_settings,
)


@pytest.fixture(autouse=True)
def _clean_settings() -> None:
    """Reset the global settings cache before each test."""
    reset_settings()


class TestDefaults:
    """Settings should have sensible defaults when no YAML is provided."""

    def test_default_evaluation_config(self) -> None:
        cfg = EvaluationConfig()
        assert cfg.price_change_threshold_pct == 2.0
        assert cfg.price_change_cooldown_ms == 900_000

    def test_default_state_cache_config(self) -> None:
        cfg = StateCacheConfig()
        assert cfg.kv_write_interval_secs == 3600.0

    def test_default_push_config(self) -> None:
        cfg = PushConfig()
        assert cfg.provider == "fcm"
        assert cfg.max_retries == 3
        assert cfg.retry_delays_ms == [200, 500, 1000]
        assert cfg.expo.url == "https://exp.host/--/api/v2/push/send"
        assert cfg.fcm.project_id == ""

    def test_default_logging_config(self) -> None:
        cfg = LoggingConfig()
        assert cfg.level == "INFO"
        assert cfg.format == "json"

    def test_default_settings(self) -> None:
        s = Settings()
        assert s.evaluation.price_change_threshold_pct == 2.0
        assert s.prices.allow_stale is False
        assert s.storage.sqlite_path == "data/alerts.db"
        assert s.scheduler.interval_secs == 60.0


class TestYamlLoading:
    """Settings should load correctly from YAML files."""

    def test_load_from_yaml(self, tmp_path: Path) -> None:
        config_data = {
            "evaluation": {
                "price_change_threshold_pct": 5,
                "price_change_cooldown_ms": 60000,
            },
            "push": {
                "provider": "expo",
                "retry_delays_ms": [100, 100],
                "expo": {"access_token": "expo-secret"},
            },
            "logging": {
                "level": "DEBUG",
                "format": "console",
            },
        }
        config_file = tmp_path / "settings.yaml"
        config_file.write_text(yaml.dump(config_data))

        settings = load_settings(config_file)

        assert settings.evaluation.price_change_threshold_pct == 5
        assert settings.evaluation.price_change_cooldown_ms == 60000
        assert settings.push.provider == "expo"
        assert settings.push.retry_delays_ms == [100, 100]
        assert settings.push.expo.access_token.get_secret_value() == "expo-secret"
        assert settings.logging.level == "DEBUG"
        assert settings.logging.format == "console"

    def test_load_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        settings = load_settings(tmp_path / "nonexistent.yaml")
        assert settings.push.max_retries == 3
        assert settings.state_cache.kv_write_interval_secs == 3600.0

    def test_load_empty_file_uses_defaults(self, tmp_path: Path) -> None:
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")
        settings = load_settings(config_file)
        assert settings.push.max_retries == 3

    def test_partial_yaml_merges_with_defaults(self, tmp_path: Path) -> None:
        config_data = {"push": {"fcm": {"project_id": "my-app"}}}
        config_file = tmp_path / "settings.yaml"
        config_file.write_text(yaml.dump(config_data))

        settings = load_settings(config_file)
        assert settings.push.fcm.project_id == "my-app"
        # Other defaults still intact
        assert settings.push.fcm.base_url == "https://fcm.googleapis.com/v1/projects"
        assert settings.evaluation.price_change_threshold_pct == 2.0

    def test_get_settings_caches(self, tmp_path: Path) -> None:
        config_file = tmp_path / "settings.yaml"
        config_file.write_text(yaml.dump({"scheduler": {"interval_secs": 5}}))
        loaded = load_settings(config_file)
        assert get_settings() is loaded


class TestSecretStr:
    """Sensitive fields should use SecretStr to prevent leaking."""

    def test_secret_str_repr_does_not_leak(self) -> None:
        cfg = FcmConfig(
            project_id="my-app",
            access_token="ya29.super-secret",  # type: ignore[arg-type]
        )
        repr_str = repr(cfg)
        assert "ya29.super-secret" not in repr_str
        assert "**********" in repr_str

    def test_secret_str_get_value(self) -> None:
        cfg = FcmConfig(access_token="my-secret")  # type: ignore[arg-type]
        assert cfg.access_token.get_secret_value() == "my-secret"
