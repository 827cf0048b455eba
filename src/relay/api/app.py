"""FastAPI application for Relay."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from relay import __version__
from relay.config import Settings
from relay.exceptions import NotFoundError, RelayError, ValidationError
from relay.logging import configure_logging, get_logger
from relay.service import RelayService

from .router import router, set_service

logger = get_logger(__name__)


def _lifespan_for(
    settings: Settings | None,
) -> Callable[[FastAPI], AbstractAsyncContextManager[None]]:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Manage application lifespan.

        Initializes the RelayService on startup and, when configured,
        runs the retry sweeper in-process until shutdown.
        """
        app_settings = settings or Settings()

        configure_logging(level=app_settings.log_level, format=app_settings.log_format)
        logger.info(
            "Starting Relay API",
            log_level=app_settings.log_level,
            dispatch_mode=app_settings.dispatch_mode,
        )

        service = RelayService.create(app_settings)
        await service.initialize()
        set_service(service)
        if app_settings.run_sweeper_in_api:
            service.sweeper.start()

        yield

        await service.close()
        set_service(None)
        logger.info("Relay API stopped")

    return lifespan


def register_exception_handlers(app: FastAPI) -> None:
    """Map Relay errors to JSON error responses."""

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Handle malformed request bodies and parameters with 400 status."""
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        error = ValidationError(field or "request", first.get("msg", "invalid request"))
        logger.warning("Request validation error", field=error.field, path=str(request.url))
        return JSONResponse(status_code=400, content=error.to_dict())

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        """Handle validation errors with 400 status."""
        logger.warning(
            "Validation error", field=exc.field, error=exc.message, path=str(request.url)
        )
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @app.exception_handler(NotFoundError)
    async def not_found_error_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        """Handle not found errors with 404 status."""
        logger.info(
            "Resource not found",
            resource_type=exc.resource_type,
            resource_id=exc.resource_id,
            path=str(request.url),
        )
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @app.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
        """Handle all other Relay errors with their HTTP status hint."""
        logger.error("Relay error", error=exc.message, code=exc.code, path=str(request.url))
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create a FastAPI application.

    Args:
        settings: Optional settings. Uses environment if None.

    Returns:
        Configured FastAPI application.

    Example:
        ```python
        from relay.api import create_app

        app = create_app()
        # Run with: uvicorn relay.api:app --reload
        ```
    """
    app = FastAPI(
        title="Relay",
        description="Signed, retried webhook delivery for tenant subscribers.",
        version=__version__,
        lifespan=_lifespan_for(settings),
        docs_url="/docs",
        redoc_url="/redoc",
    )

    register_exception_handlers(app)
    app.include_router(router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
