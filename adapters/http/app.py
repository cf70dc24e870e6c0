"""
FastAPI application factory.

The app is a thin transport over ``VitalsPipeline``: routes translate HTTP into service
calls, and the failure taxonomy is mapped to status codes by the handlers below.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from adapters.http.realtime import router as realtime_router
from adapters.http.routes import router as api_router
from vitalsync.domain.models import utcnow
from vitalsync.errors import ValidationFailure, VitalSyncError
from vitalsync.services.pipeline import VitalsPipeline

logger = structlog.get_logger(__name__)


def _request_validation_details(exc: RequestValidationError) -> list[dict[str, Any]]:
    return [
        {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg")}
        for err in exc.errors()
    ]


def create_app(pipeline: VitalsPipeline) -> FastAPI:
    config = pipeline.config

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("api_starting", environment=config.environment)
        yield
        await pipeline.stop()
        logger.info("api_stopped")

    app = FastAPI(title="VitalSync ingestion API", version="0.1.0", lifespan=lifespan)
    app.state.pipeline = pipeline

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        response = await call_next(request)
        logger.info(
            "http_request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
        )
        return response

    @app.exception_handler(VitalSyncError)
    async def vitalsync_error_handler(request: Request, exc: VitalSyncError) -> JSONResponse:
        logger.info(
            "request_rejected",
            path=request.url.path,
            status=exc.status_code,
            error=exc.code,
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        failure = ValidationFailure("Invalid request", _request_validation_details(exc))
        return JSONResponse(status_code=failure.status_code, content=failure.to_payload())

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_request_error", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=500,
            content={"error": "internal_error", "message": "Internal server error"},
        )

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "timestamp": utcnow().isoformat(),
            "subscribers": pipeline.distributor.subscriber_count,
        }

    app.include_router(api_router)
    app.include_router(realtime_router)
    return app
