"""
Configuration management with environment variable support and validation.

Design principles:
- Environment-specific configs (dev, staging, prod)
- Validation at startup (fail fast)
- Type safety with Pydantic
- Secure defaults (device secrets never live in config)
"""

import os
from functools import lru_cache
from typing import Literal, cast

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

# Load environment variables from .env file
load_dotenv()


class IngestionConfig(BaseModel):
    """Reading ingestion behaviour."""

    clock_skew_tolerance_seconds: float = Field(
        default=3600.0,
        gt=0.0,
        description="Skew between device and server clocks above which a warning is logged",
    )


class DistributorConfig(BaseModel):
    """Realtime fan-out settings."""

    subscriber_queue_size: int = Field(
        default=256, gt=0, description="Undelivered events buffered per subscriber"
    )


class SimulatorConfig(BaseModel):
    """Synthetic vitals producer."""

    enabled: bool = Field(
        default=False, description="Expose the simulation trigger over HTTP"
    )
    interval_seconds: float = Field(
        default=5.0, gt=0.0, description="Interval between simulated readings"
    )
    jitter: float = Field(
        default=0.05, ge=0.0, lt=1.0, description="Multiplicative jitter applied per reading"
    )


class DatabaseConfig(BaseModel):
    """Database configuration. An empty URL keeps every store in memory."""

    url: str = Field(default="sqlite:///./vitalsync.db", description="Database URL")
    echo: bool = Field(default=False, description="Log emitted SQL")


class APIConfig(BaseModel):
    """API server configuration."""

    host: str = Field(default="0.0.0.0", description="API server host")
    port: int = Field(default=8000, gt=0, lt=65536, description="API server port")
    reload: bool = Field(default=False, description="Enable auto-reload for development")

    # Security settings
    allowed_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000"], description="Allowed origins for CORS"
    )
    api_key_header: str = Field(default="X-API-Key", description="Header name for device API key")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    # Environment
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    # Component configs
    ingestion: IngestionConfig = Field(default_factory=IngestionConfig)
    distributor: DistributorConfig = Field(default_factory=DistributorConfig)
    simulator: SimulatorConfig = Field(default_factory=SimulatorConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self

    @model_validator(mode="after")
    def simulator_trigger_not_in_prod(self) -> "AppConfig":
        """The simulator writes without device credentials; keep it out of production."""
        if self.simulator.enabled and self.environment == "production":
            raise ValueError("simulator trigger cannot be enabled in production")
        return self


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


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    # Detect environment
    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    ingestion_config = IngestionConfig(
        clock_skew_tolerance_seconds=float(os.getenv("CLOCK_SKEW_TOLERANCE_SECONDS", "3600")),
    )

    distributor_config = DistributorConfig(
        subscriber_queue_size=int(os.getenv("SUBSCRIBER_QUEUE_SIZE", "256")),
    )

    simulator_config = SimulatorConfig(
        enabled=_parse_bool(os.getenv("SIMULATOR_ENABLED"), False),
        interval_seconds=float(os.getenv("SIMULATOR_INTERVAL_SECONDS", "5.0")),
        jitter=float(os.getenv("SIMULATOR_JITTER", "0.05")),
    )

    # Database config from environment
    database_config = DatabaseConfig(
        url=os.getenv("DATABASE_URL", "sqlite:///./vitalsync.db"),
        echo=_parse_bool(os.getenv("DATABASE_ECHO"), False),
    )

    # API config
    api_config = APIConfig(
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=int(os.getenv("API_PORT", "8000")),
        reload=_parse_bool(os.getenv("API_RELOAD"), debug),
        allowed_origins=os.getenv("API_ALLOWED_ORIGINS", "http://localhost:3000").split(","),
        api_key_header=os.getenv("API_KEY_HEADER", "X-API-Key"),
    )

    # Logging config
    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    # Application config
    return AppConfig(
        environment=environment,
        debug=debug,
        ingestion=ingestion_config,
        distributor=distributor_config,
        simulator=simulator_config,
        database=database_config,
        api=api_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()


def reset_config_cache() -> None:
    """Drop the cached configuration so the next get_config() re-reads the environment."""
    get_config.cache_clear()


# Development helpers
def print_config_summary() -> None:
    """Print configuration summary for debugging."""
    config = get_config()

    print("\nCONFIGURATION SUMMARY")
    print(f"Environment: {config.environment}")
    print(f"Debug Mode: {config.debug}")
    print(f"Log Level: {config.logging.level}")

    print("\nINGESTION")
    print(f"Clock skew tolerance: {config.ingestion.clock_skew_tolerance_seconds}s")
    print(f"Subscriber queue size: {config.distributor.subscriber_queue_size}")

    print("\nSIMULATOR")
    print(f"Trigger enabled: {config.simulator.enabled}")
    print(f"Interval: {config.simulator.interval_seconds}s (jitter {config.simulator.jitter:.0%})")

    print("\nAPI CONFIGURATION")
    print(f"Host: {config.api.host}:{config.api.port}")
    print(f"Database: {config.database.url or 'in-memory'}")


if __name__ == "__main__":
    print_config_summary()
