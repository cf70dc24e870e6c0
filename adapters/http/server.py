"""
Process entry point: build the pipeline from configuration and serve it with uvicorn.

Run with: uv run python -m adapters.http.server
"""

import uvicorn
from fastapi import FastAPI

from adapters.http.app import create_app
from adapters.sql import Database, SqlAlertStore, SqlDeviceRegistry, SqlVitalsStore
from vitalsync.config import AppConfig, get_config
from vitalsync.observability import configure_logging
from vitalsync.services.pipeline import VitalsPipeline


def build_pipeline(config: AppConfig) -> VitalsPipeline:
    """SQL-backed stores when a database URL is configured, in-memory stores otherwise."""
    if not config.database.url:
        return VitalsPipeline(config)

    database = Database(config.database.url, echo=config.database.echo)
    database.create_schema()
    return VitalsPipeline(
        config,
        registry=SqlDeviceRegistry(database),
        vitals=SqlVitalsStore(database),
        alerts=SqlAlertStore(database),
    )


def create_default_app() -> FastAPI:
    config = get_config()
    configure_logging(config.logging)
    return create_app(build_pipeline(config))


def main() -> None:
    config = get_config()
    uvicorn.run(
        "adapters.http.server:create_default_app",
        factory=True,
        host=config.api.host,
        port=config.api.port,
        reload=config.api.reload,
    )


if __name__ == "__main__":
    main()
