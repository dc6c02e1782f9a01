"""
Tests for configuration management in `core/config.py`.

Covers:
- Environment parsing and debug defaults
- Logging level coercion to the expected Literal
- Storage and prediction settings read from the environment
- get_config cache behavior
- AppConfig validation (debug only allowed in development)
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest
from pydantic import ValidationError

from aurasense.core.config import (
    AppConfig,
    LoggingConfig,
    PredictionConfig,
    StorageConfig,
    get_config,
    load_config_from_env,
)

_MANAGED_VARS = (
    "ENVIRONMENT",
    "LOG_LEVEL",
    "AURASENSE_DB_PATH",
    "STORAGE_BUSY_TIMEOUT_SECONDS",
    "STORAGE_OPEN_TIMEOUT_SECONDS",
    "STORAGE_PRELOAD_NAMESPACES",
    "HISTORY_WINDOW_HOURS",
    "INCLUDE_TRENDS",
    "ALERT_THRESHOLD",
    "MISSING_FEATURE_POLICY",
    "DEGENERATE_LEAF_POLICY",
    "DECISION_TREE_PATH",
    "MONITOR_INTERVAL_SECONDS",
)


@pytest.fixture(autouse=True)
def clear_config_cache(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Start every test from a clean environment and an empty get_config cache."""
    for name in _MANAGED_VARS:
        monkeypatch.delenv(name, raising=False)
    get_config.cache_clear()
    yield
    get_config.cache_clear()


def test_load_config_dev_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENVIRONMENT", "development")

    config = load_config_from_env()

    assert config.environment == "development"
    assert config.debug is True
    assert config.logging.format == "console"
    assert config.storage.database_path == "./aurasense.db"
    assert config.storage.preload_namespaces == ["general"]
    assert config.prediction.history_window_hours == 168
    assert config.prediction.include_trends is True
    assert config.prediction.missing_feature_policy == "error"
    assert config.prediction.degenerate_leaf_policy == "error"
    assert config.prediction.tree_path is None


def test_production_env_uses_json_logging_and_no_debug(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENVIRONMENT", "prod")

    config = load_config_from_env()

    assert config.environment == "production"
    assert config.debug is False
    assert config.logging.format == "json"


def test_staging_aliases(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENVIRONMENT", "stage")
    assert load_config_from_env().environment == "staging"


@pytest.mark.parametrize(
    "raw, expected",
    [("debug", "DEBUG"), (" warning ", "WARNING"), ("verbose", "INFO")],
)
def test_log_level_coercion(monkeypatch: pytest.MonkeyPatch, raw: str, expected: str) -> None:
    monkeypatch.setenv("LOG_LEVEL", raw)
    assert load_config_from_env().logging.level == expected


def test_storage_settings_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AURASENSE_DB_PATH", "/tmp/elsewhere.db")
    monkeypatch.setenv("STORAGE_BUSY_TIMEOUT_SECONDS", "1.5")
    monkeypatch.setenv("STORAGE_PRELOAD_NAMESPACES", "general, migraines,,weather")

    storage = load_config_from_env().storage

    assert storage.database_path == "/tmp/elsewhere.db"
    assert storage.busy_timeout_seconds == 1.5
    assert storage.preload_namespaces == ["general", "migraines", "weather"]


def test_prediction_settings_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HISTORY_WINDOW_HOURS", "24")
    monkeypatch.setenv("INCLUDE_TRENDS", "no")
    monkeypatch.setenv("ALERT_THRESHOLD", "0.5")
    monkeypatch.setenv("MISSING_FEATURE_POLICY", "RIGHT")
    monkeypatch.setenv("DEGENERATE_LEAF_POLICY", "neutral")
    monkeypatch.setenv("DECISION_TREE_PATH", "/models/tree.json")

    prediction = load_config_from_env().prediction

    assert prediction.history_window_hours == 24
    assert prediction.include_trends is False
    assert prediction.alert_threshold == 0.5
    assert prediction.missing_feature_policy == "right"
    assert prediction.degenerate_leaf_policy == "neutral"
    assert prediction.tree_path == "/models/tree.json"


def test_unknown_policy_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MISSING_FEATURE_POLICY", "guess")
    with pytest.raises(ValidationError):
        load_config_from_env()


def test_get_config_is_cached(monkeypatch: pytest.MonkeyPatch) -> None:
    first = get_config()
    monkeypatch.setenv("AURASENSE_DB_PATH", "/tmp/changed.db")

    assert get_config() is first

    get_config.cache_clear()
    assert get_config().storage.database_path == "/tmp/changed.db"


def test_debug_only_allowed_in_development() -> None:
    with pytest.raises(ValidationError, match="debug mode is only allowed"):
        AppConfig(environment="production", debug=True)

    assert AppConfig(environment="development", debug=True).debug is True


def test_memory_database_rejected() -> None:
    with pytest.raises(ValidationError):
        StorageConfig(database_path=":memory:")


def test_component_defaults() -> None:
    assert PredictionConfig().alert_threshold == 0.7
    assert PredictionConfig().max_drivers == 3
    assert LoggingConfig().enable_file_logging is False
    with pytest.raises(ValidationError):
        PredictionConfig(alert_threshold=1.5)
