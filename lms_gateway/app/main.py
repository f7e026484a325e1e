import traceback
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from lms_gateway.app.api import admin_router, metrics_router
from lms_gateway.app.core.config import Settings, settings as default_settings
from lms_gateway.app.core.logging import get_logger, setup_logging
from lms_gateway.app.exceptions import GatewayException
from lms_gateway.app.middleware.rate_limit import RateLimitMiddleware
from lms_gateway.app.middleware.request_id import RequestIdMiddleware, get_request_id
from lms_gateway.app.services.rate_limit import AdmissionController, BucketSweeper


def create_app(
    settings: Optional[Settings] = None,
    controller: Optional[AdmissionController] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to build from (defaults to the environment)
        controller: Pre-built admission controller, mainly for tests

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or default_settings

    setup_logging(settings)
    logger = get_logger(__name__)

    # One controller per process, shared by the middleware and admin routes
    controller = controller or AdmissionController.from_settings(settings)
    sweeper = BucketSweeper(
        controller,
        interval_seconds=settings.rate_limit_sweep_interval_seconds,
        idle_seconds=settings.rate_limit_idle_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Start the idle bucket sweeper on startup and stop it on shutdown."""
        await sweeper.start()
        logger.info(
            "Application startup complete",
            extra={
                "rate_limit_enabled": controller.enabled,
                "debug_mode": settings.debug,
            },
        )

        yield

        await sweeper.stop()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="LMS Gateway",
        description="Admission control for the LMS REST API",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.admission_controller = controller
    app.state.bucket_sweeper = sweeper

    # Middleware order: last added = outermost.
    # Rate limiting runs inside the request ID middleware so that denials
    # are logged with the request ID and still carry X-Request-ID.
    app.add_middleware(RateLimitMiddleware, controller=controller)
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-RateLimit-Limit", "X-RateLimit-Remaining", "Retry-After"],
        max_age=600,
    )

    app.include_router(metrics_router)
    app.include_router(admin_router)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Health check with rate limiter status."""
        return {
            "status": "ok",
            "components": {
                "rate_limiter": {
                    "status": "ok",
                    "enabled": controller.enabled,
                    "buckets": len(controller.registry),
                    "sweeper_running": sweeper.running,
                },
            },
        }

    @app.exception_handler(GatewayException)
    async def gateway_exception_handler(request: Request, exc: GatewayException) -> JSONResponse:
        """Render gateway exceptions with their own status and error code."""
        headers = getattr(exc, "headers", None)
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response(),
            headers=headers or None,
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global handler for unhandled exceptions.

        The traceback is logged server-side and never returned to the client.
        """
        request_id = get_request_id(request)

        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={
                "request_id": request_id,
                "exception_type": type(exc).__name__,
                "traceback": traceback.format_exc(),
            },
        )

        content = {
            "error": "INTERNAL_ERROR",
            "message": "Internal server error",
            "request_id": request_id,
        }
        if settings.debug:
            content["message"] = str(exc)
            content["exception_type"] = type(exc).__name__

        return JSONResponse(status_code=500, content=content)

    return app


# Create the application instance
app = create_app()
