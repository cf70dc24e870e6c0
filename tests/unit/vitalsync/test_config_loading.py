"""
Tests for configuration management in `vitalsync/config.py`.

Covers:
- Environment parsing and debug defaults
- Simulator, ingestion and distributor settings from the environment
- Database URL handling (empty means in-memory)
- get_config cache behavior
- AppConfig validation (debug only in development, no simulator trigger in production)
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from vitalsync.config import (
    AppConfig,
    DistributorConfig,
    SimulatorConfig,
    get_config,
    load_config_from_env,
    reset_config_cache,
)


@pytest.fixture(autouse=True)
def clear_config_cache() -> Iterator[None]:
    reset_config_cache()
    yield
    reset_config_cache()


def test_load_config_dev_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENVIRONMENT", "development")
    monkeypatch.delenv("API_RELOAD", raising=False)
    monkeypatch.delenv("SIMULATOR_ENABLED", raising=False)
    monkeypatch.delenv("CLOCK_SKEW_TOLERANCE_SECONDS", raising=False)

    config = load_config_from_env()

    assert config.environment == "development"
    assert config.debug is True
    assert config.api.reload is True  # defaults to debug
    assert config.logging.format == "console"
    assert config.simulator.enabled is False
    assert config.ingestion.clock_skew_tolerance_seconds == 3600.0
    assert config.api.api_key_header == "X-API-Key"


def test_production_uses_json_logs_and_no_debug(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENVIRONMENT", "prod")
    monkeypatch.delenv("API_RELOAD", raising=False)
    monkeypatch.delenv("SIMULATOR_ENABLED", raising=False)

    config = load_config_from_env()

    assert config.environment == "production"
    assert config.debug is False
    assert config.api.reload is False
    assert config.logging.format == "json"


def test_unknown_log_level_falls_back_to_info(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOG_LEVEL", "chatty")
    assert load_config_from_env().logging.level == "INFO"

    monkeypatch.setenv("LOG_LEVEL", "warning")
    assert load_config_from_env().logging.level == "WARNING"


def test_pipeline_settings_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENVIRONMENT", "development")
    monkeypatch.setenv("CLOCK_SKEW_TOLERANCE_SECONDS", "120")
    monkeypatch.setenv("SUBSCRIBER_QUEUE_SIZE", "8")
    monkeypatch.setenv("SIMULATOR_ENABLED", "yes")
    monkeypatch.setenv("SIMULATOR_INTERVAL_SECONDS", "0.5")
    monkeypatch.setenv("SIMULATOR_JITTER", "0.1")

    config = load_config_from_env()

    assert config.ingestion.clock_skew_tolerance_seconds == 120.0
    assert config.distributor.subscriber_queue_size == 8
    assert config.simulator.enabled is True
    assert config.simulator.interval_seconds == 0.5
    assert config.simulator.jitter == 0.1


def test_allowed_origins_and_database_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("API_ALLOWED_ORIGINS", "http://a.test,http://b.test")
    monkeypatch.setenv("DATABASE_URL", "")

    config = load_config_from_env()

    assert config.api.allowed_origins == ["http://a.test", "http://b.test"]
    assert config.database.url == ""


def test_get_config_is_cached_until_reset(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SUBSCRIBER_QUEUE_SIZE", "16")
    first = get_config()
    monkeypatch.setenv("SUBSCRIBER_QUEUE_SIZE", "32")

    assert get_config() is first

    reset_config_cache()
    assert get_config().distributor.subscriber_queue_size == 32


def test_debug_only_allowed_in_development() -> None:
    with pytest.raises(ValueError, match="debug mode is only allowed"):
        AppConfig(environment="staging", debug=True)


def test_simulator_trigger_rejected_in_production() -> None:
    with pytest.raises(ValueError, match="simulator trigger cannot be enabled"):
        AppConfig(environment="production", simulator=SimulatorConfig(enabled=True))


def test_component_bounds_are_validated() -> None:
    with pytest.raises(ValueError):
        DistributorConfig(subscriber_queue_size=0)
    with pytest.raises(ValueError):
        SimulatorConfig(jitter=1.0)
