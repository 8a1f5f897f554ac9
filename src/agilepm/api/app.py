"""FastAPI application for the AgilePM webhook service."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from agilepm.config import Settings
from agilepm.exceptions import (
    AgilePMError,
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    ValidationError,
)
from agilepm.logging import configure_logging, get_logger
from agilepm.storage import WebhookStorage
from agilepm.webhooks import EventDispatcher, RetentionWorker, set_dispatcher

from .auth import set_settings
from .router import router, set_storage, to_validation_error

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifespan.

    Opens storage, installs the process-wide event dispatcher and starts
    the delivery log retention worker. On shutdown, scheduled retries are
    dropped and in-flight deliveries are allowed to finish.
    """
    settings: Settings = app.state.settings

    configure_logging(level=settings.log_level, format=settings.log_format)
    logger.info("Starting AgilePM webhook API", env=settings.env, log_level=settings.log_level)

    storage = WebhookStorage(
        url=settings.qdrant_url,
        api_key=settings.qdrant_api_key,
        prefix=settings.collection_prefix,
    )
    await storage.initialize()
    set_storage(storage)
    set_settings(settings)

    dispatcher = EventDispatcher(storage, settings=settings)
    set_dispatcher(dispatcher)

    retention = RetentionWorker(storage, settings=settings)
    retention.start()

    yield

    await retention.stop()
    set_dispatcher(None)
    await dispatcher.aclose()
    set_storage(None)
    await storage.close()
    logger.info("AgilePM webhook API stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create a FastAPI application.

    Args:
        settings: Optional settings. Uses environment if None.

    Returns:
        Configured FastAPI application.

    Example:
        ```python
        from agilepm.api import create_app

        app = create_app()
        # Run with: uvicorn agilepm.api:app --reload
        ```
    """
    if settings is None:
        settings = Settings()

    app = FastAPI(
        title="AgilePM Webhooks",
        description="Outbound webhook delivery for AgilePM.",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings

    if settings.cors_enabled:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allow_origins,
            allow_methods=settings.cors_allow_methods,
            allow_headers=settings.cors_allow_headers,
        )

    register_exception_handlers(app)
    app.include_router(router, prefix="/api/v1")

    return app


def register_exception_handlers(app: FastAPI) -> None:
    """Map AgilePM exceptions to HTTP responses."""

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        """Handle validation errors with 400 status."""
        logger.warning(
            "Validation error", field=exc.field, error=exc.message, path=str(request.url)
        )
        return JSONResponse(status_code=400, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Malformed bodies and query parameters are 400s like any other bad input."""
        error = to_validation_error(exc)
        logger.warning(
            "Request validation error",
            field=error.field,
            error=error.message,
            path=str(request.url),
        )
        return JSONResponse(status_code=400, content=error.to_dict())

    @app.exception_handler(NotFoundError)
    async def not_found_error_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        """Handle not found errors with 404 status."""
        logger.info(
            "Resource not found",
            resource_type=exc.resource_type,
            resource_id=exc.resource_id,
            path=str(request.url),
        )
        return JSONResponse(status_code=404, content=exc.to_dict())

    @app.exception_handler(AuthenticationError)
    async def authentication_error_handler(
        request: Request, exc: AuthenticationError
    ) -> JSONResponse:
        logger.warning("Authentication failed", error=exc.message, path=str(request.url))
        return JSONResponse(status_code=401, content=exc.to_dict())

    @app.exception_handler(AuthorizationError)
    async def authorization_error_handler(
        request: Request, exc: AuthorizationError
    ) -> JSONResponse:
        logger.warning("Authorization failed", error=exc.message, path=str(request.url))
        return JSONResponse(status_code=403, content=exc.to_dict())

    @app.exception_handler(AgilePMError)
    async def agilepm_error_handler(request: Request, exc: AgilePMError) -> JSONResponse:
        """Handle all other AgilePM errors with 500 status."""
        logger.error("AgilePM error", error=exc.message, code=exc.code, path=str(request.url))
        return JSONResponse(status_code=500, content=exc.to_dict())


# Default app instance for uvicorn
app = create_app()
