"""FastAPI application entry point.

Creates the FastAPI application instance with exception handlers,
middleware configuration and the service container lifespan.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.v1.router import api_router
from app.core.config import Settings, get_settings
from app.core.exceptions import AppException
from app.core.logging import get_logger
from app.services.container import ServiceContainer

logger = get_logger(__name__)


def create_app(
    settings: Settings | None = None,
    container: ServiceContainer | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    A prebuilt ``container`` (tests) is used as-is and left open; otherwise
    one is built on startup and closed on shutdown.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if container is not None:
            app.state.container = container
            yield
            return
        app.state.container = ServiceContainer.build(settings)
        logger.info("Service container ready (provider %s)", settings.PROVIDER_BASE_URL)
        try:
            yield
        finally:
            await app.state.container.aclose()

    app = FastAPI(
        title="Wallet Reconciliation Service",
        description="Wallet funding, provider webhooks, reconciliation and payouts",
        version="1.0.0",
        debug=settings.DEBUG,
        lifespan=lifespan,
    )
    if container is not None:
        app.state.container = container

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register exception handlers
    register_exception_handlers(app)

    # Register API routers
    app.include_router(api_router, prefix="/api/v1")

    return app


def register_exception_handlers(app: FastAPI) -> None:
    """Register custom exception handlers for the application."""

    @app.exception_handler(AppException)
    async def app_exception_handler(
        request: Request,
        exc: AppException,
    ) -> JSONResponse:
        """Handle all custom application exceptions.

        Returns a consistent JSON error response format.
        """
        if exc.status_code >= 500:
            logger.error("%s on %s: %s", exc.__class__.__name__, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": {
                    "type": exc.__class__.__name__,
                    "message": exc.message,
                    "status_code": exc.status_code,
                }
            },
        )


# Create the application instance
app = create_app()
