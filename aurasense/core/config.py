"""
Configuration management with environment variable support and validation.

Design principles:
- Environment-specific configs (dev, staging, prod)
- Validation at startup (fail fast)
- Type safety with Pydantic
- Local-first defaults (a single SQLite file next to the app)
"""

import os
from functools import lru_cache
from typing import Literal, cast

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

# Load environment variables from .env file
load_dotenv()

DEFAULT_NAMESPACES = (
    "general",
    "migraines",
    "permissions",
    "geolocation",
    "weather",
    "calendar",
    "wearables",
)

MissingFeaturePolicy = Literal["error", "right"]
DegenerateLeafPolicy = Literal["error", "neutral"]


class StorageConfig(BaseModel):
    """Local record store configuration."""

    database_path: str = Field(
        default="./aurasense.db", description="SQLite file holding every namespace"
    )
    busy_timeout_seconds: float = Field(
        default=5.0, gt=0.0, description="How long to wait on a lock held by another connection"
    )
    open_timeout_seconds: float = Field(
        default=30.0, gt=0.0, description="Upper bound for one open/upgrade cycle"
    )
    default_namespace: str = Field(default="general", description="Store used when none is given")
    preload_namespaces: list[str] = Field(
        default_factory=lambda: ["general"],
        description="Stores created together on first open",
    )

    @field_validator("database_path")
    def validate_database_path(cls, v: str) -> str:
        if not v or v.strip() == ":memory:":
            raise ValueError("database_path must point to a file")
        return v


class PredictionConfig(BaseModel):
    """Risk inference configuration."""

    history_window_hours: int = Field(
        default=24 * 7, gt=0, description="Historical window used for trends"
    )
    include_trends: bool = Field(default=True, description="Compare against history by default")
    max_drivers: int = Field(default=3, gt=0, description="Number of ranked drivers returned")
    alert_threshold: float = Field(
        default=0.7, ge=0.0, le=1.0, description="Score at or above which an alert is raised"
    )
    missing_feature_policy: MissingFeaturePolicy = Field(
        default="error", description="'error' fails fast; 'right' follows the right branch"
    )
    degenerate_leaf_policy: DegenerateLeafPolicy = Field(
        default="error", description="'error' fails fast; 'neutral' scores an empty leaf as 0.5"
    )
    tree_path: str | None = Field(
        default=None, description="Decision tree JSON; the bundled model when unset"
    )
    monitor_interval_seconds: float = Field(
        default=10.0, gt=0.0, description="Delay between predictions in watch mode"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")

    # Log destinations
    enable_file_logging: bool = Field(default=False, description="Enable file logging")
    log_file_path: str = Field(default="./logs/aurasense.log", description="Path to log file")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    # Environment
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    # Component configs
    storage: StorageConfig = Field(default_factory=StorageConfig)
    prediction: PredictionConfig = Field(default_factory=PredictionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
        v = val.strip().lower()
        if v in {"dev", "development"}:
            return "development"
        if v in {"stage", "staging"}:
            return "staging"
        return "production"

    def _level_to_literal(val: str) -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
        v = val.strip().upper()
        return cast(
            Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
        )

    def _parse_bool(val: str | None, default: bool) -> bool:
        if val is None:
            return default
        return val.strip().lower() in {"1", "true", "yes", "on"}

    def _parse_list(val: str | None, default: list[str]) -> list[str]:
        if not val:
            return default
        return [item.strip() for item in val.split(",") if item.strip()]

    # Detect environment
    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    storage_config = StorageConfig(
        database_path=os.getenv("AURASENSE_DB_PATH", "./aurasense.db"),
        busy_timeout_seconds=float(os.getenv("STORAGE_BUSY_TIMEOUT_SECONDS", "5.0")),
        open_timeout_seconds=float(os.getenv("STORAGE_OPEN_TIMEOUT_SECONDS", "30.0")),
        preload_namespaces=_parse_list(os.getenv("STORAGE_PRELOAD_NAMESPACES"), ["general"]),
    )

    prediction_config = PredictionConfig(
        history_window_hours=int(os.getenv("HISTORY_WINDOW_HOURS", str(24 * 7))),
        include_trends=_parse_bool(os.getenv("INCLUDE_TRENDS"), True),
        alert_threshold=float(os.getenv("ALERT_THRESHOLD", "0.7")),
        missing_feature_policy=cast(
            MissingFeaturePolicy, os.getenv("MISSING_FEATURE_POLICY", "error").strip().lower()
        ),
        degenerate_leaf_policy=cast(
            DegenerateLeafPolicy, os.getenv("DEGENERATE_LEAF_POLICY", "error").strip().lower()
        ),
        tree_path=os.getenv("DECISION_TREE_PATH") or None,
        monitor_interval_seconds=float(os.getenv("MONITOR_INTERVAL_SECONDS", "10.0")),
    )

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
        enable_file_logging=_parse_bool(os.getenv("LOG_TO_FILE"), False),
    )

    return AppConfig(
        environment=environment,
        debug=debug,
        storage=storage_config,
        prediction=prediction_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()


def validate_config() -> None:
    """Validate configuration at startup."""
    try:
        config = get_config()
        print(f"✅ Configuration loaded for {config.environment} environment")
        print(f"✅ Record store at {config.storage.database_path}")
        if config.prediction.tree_path:
            print(f"✅ Decision tree override: {config.prediction.tree_path}")

    except Exception as e:
        print(f"❌ Configuration validation failed: {e}")
        raise


def print_config_summary() -> None:
    """Print configuration summary for debugging."""
    config = get_config()

    print("\n🔧 CONFIGURATION SUMMARY")
    print(f"Environment: {config.environment}")
    print(f"Debug Mode: {config.debug}")
    print(f"Log Level: {config.logging.level}")

    print("\n💾 STORAGE CONFIGURATION")
    print(f"Database: {config.storage.database_path}")
    print(f"Preloaded Stores: {', '.join(config.storage.preload_namespaces)}")
    print(f"Busy Timeout: {config.storage.busy_timeout_seconds}s")

    print("\n🧠 PREDICTION CONFIGURATION")
    print(f"History Window: {config.prediction.history_window_hours}h")
    print(f"Alert Threshold: {config.prediction.alert_threshold:.0%}")
    print(f"Missing Feature Policy: {config.prediction.missing_feature_policy}")
    print(f"Degenerate Leaf Policy: {config.prediction.degenerate_leaf_policy}")


if __name__ == "__main__":
    validate_config()
    print_config_summary()
