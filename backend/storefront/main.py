"""
FastAPI application entry point for the storefront order backend.

Provides the application instance with CORS configuration, request
correlation, health endpoints and the order routes. Startup ensures the
schema exists and creates the notification dispatcher; shutdown waits for
in-flight notifications and closes database connections.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Union

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storefront.api.v1.orders import router as orders_router
from storefront.core.config import get_settings
from storefront.core.logging import (
    clear_context,
    configure_logging,
    get_logger,
    get_request_id,
    log_performance,
    set_request_id,
)
from storefront.database.connection import (
    check_database_health,
    close_database_connections,
    create_all_tables,
)
from storefront.services.notifications.tasks import NotificationDispatcher

# Configure logging before application initialization
configure_logging()
logger = get_logger(__name__)

SHUTDOWN_DRAIN_SECONDS = 10.0


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan context manager for startup and shutdown events.

    Args:
        app: FastAPI application instance

    Yields:
        None during application runtime
    """
    settings = get_settings()

    logger.info(
        "Application starting",
        environment=settings.environment,
        debug=settings.debug,
        version=settings.app_version,
    )

    with log_performance(logger, "application_startup"):
        await create_all_tables()
        app.state.notifier = NotificationDispatcher()
        logger.info(
            "Resources initialized successfully",
            notification_mode=app.state.notifier.mode,
        )

    yield

    logger.info("Application shutting down")
    await app.state.notifier.drain(timeout=SHUTDOWN_DRAIN_SECONDS)
    await close_database_connections()
    logger.info("Resources cleaned up successfully")


settings = get_settings()
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Jewelry storefront order backend API",
    lifespan=lifespan,
    debug=settings.debug,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    """
    Middleware for request logging and correlation ID management.

    Args:
        request: Incoming HTTP request
        call_next: Next middleware or route handler

    Returns:
        HTTP response with X-Request-ID header
    """
    request_id = set_request_id(request.headers.get("X-Request-ID"))

    logger.info(
        "Request received",
        method=request.method,
        path=request.url.path,
        client_host=request.client.host if request.client else None,
    )

    try:
        with log_performance(
            logger,
            "request_processing",
            method=request.method,
            path=request.url.path,
        ):
            response = await call_next(request)

        response.headers["X-Request-ID"] = request_id
        logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
        )
        return response
    except Exception as e:
        logger.error(
            "Request failed",
            method=request.method,
            path=request.url.path,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    finally:
        clear_context()


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return request validation errors with the correlation ID."""
    logger.warning(
        "Request validation failed",
        method=request.method,
        path=request.url.path,
        errors=exc.errors(),
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Validation Error",
            "message": "Request validation failed",
            "details": jsonable_errors(exc),
            "request_id": get_request_id(),
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log unexpected exceptions and hide internal details from clients."""
    logger.error(
        "Unhandled exception",
        method=request.method,
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal Server Error",
            "message": "An unexpected error occurred",
            "request_id": get_request_id(),
        },
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    # ctx may hold exception instances that JSON cannot encode
    return [
        {key: value for key, value in error.items() if key != "ctx"}
        for error in exc.errors()
    ]


@app.get("/health", tags=["Health"], summary="Health check endpoint")
async def health_check() -> dict[str, str]:
    """Always 200 while the process is running."""
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }


@app.get(
    "/ready",
    tags=["Health"],
    summary="Readiness check endpoint",
    response_model=None,
)
async def readiness_check() -> Union[dict[str, str], JSONResponse]:
    """Ready once the database answers."""
    if not await check_database_health(max_retries=1):
        logger.warning("Readiness check failed")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not_ready", "database": "unhealthy"},
        )
    return {"status": "ready", "database": "healthy"}


app.include_router(orders_router, prefix=settings.api_v1_prefix)
