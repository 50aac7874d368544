"""
Module: main.py
Description: FastAPI application entry point for the relay API.

Initializes the FastAPI application with the webhook routes, exception
handlers and service wiring, and exposes the Mangum Lambda handler.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi import status as status_codes
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from mangum import Mangum

from relay.config.settings import Settings
from relay.dependencies import RelayServices, build_services
from relay.errors import RelayError
from relay.handlers.webhooks import router as webhooks_router
from relay.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)


def _error(status_code: int, message, error_type: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": status_code,
                "message": message,
                "type": error_type
            }
        }
    )


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[RelayServices] = None
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Settings to use (loaded from the environment when omitted)
        services: Prebuilt services (built from settings when omitted)
    """
    settings = settings or (services.settings if services else Settings())
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Starting relay API",
            version=settings.app_version,
            stage=settings.stage,
            region=settings.aws_region
        )
        yield
        logger.info("Shutting down relay API")

    app = FastAPI(
        title=settings.app_name,
        description="Webhook delivery and chat message relay API",
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.services = services or build_services(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(webhooks_router)

    @app.get("/health")
    async def health_check():
        """Basic application health information."""
        return {
            "status": "ok",
            "message": "Relay API is healthy",
            "version": settings.app_version,
            "environment": settings.stage
        }

    @app.exception_handler(RelayError)
    async def relay_exception_handler(request: Request, exc: RelayError):
        logger.info(
            "Request rejected",
            status_code=exc.status_code,
            error_type=exc.error_type,
            detail=str(exc),
            path=request.url.path,
            method=request.method
        )
        return _error(exc.status_code, str(exc), exc.error_type)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": list(error.get("loc", [])), "msg": error.get("msg")}
            for error in exc.errors()
        ]
        logger.info("Request validation failed", path=request.url.path, errors=errors)
        return _error(status_codes.HTTP_400_BAD_REQUEST, errors, "validation_error")

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        logger.warning(
            "HTTP exception occurred",
            status_code=exc.status_code,
            detail=exc.detail,
            path=request.url.path,
            method=request.method
        )
        return _error(exc.status_code, exc.detail, "http_exception")

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error(
            "Unhandled exception occurred",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
            method=request.method
        )
        return _error(status_codes.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", "internal_error")

    return app


_mangum: Optional[Mangum] = None


def handler(event, context):
    """Lambda entry point; the app is built once per container."""
    global _mangum
    if _mangum is None:
        _mangum = Mangum(create_app(), lifespan="off")
    return _mangum(event, context)
