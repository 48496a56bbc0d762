"""
FastAPI application entry point.

Creates the application with CORS, request correlation logging, rate
limiting, the error envelope handlers, health endpoints and the order and
tracking routers. The lifespan starts the audit event writer and, when
configured, the periodic automated status sweep.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from storefront.api.v1 import api_router
from storefront.core.config import get_settings
from storefront.core.errors import StorefrontError
from storefront.core.logging import (
    clear_context,
    configure_logging,
    get_logger,
    get_request_id,
    log_performance,
    set_request_id,
)
from storefront.core.rate_limit import limiter
from storefront.database.connection import (
    check_database_health,
    close_database_connections,
    get_session,
)
from storefront.schemas.common import ErrorResponse
from storefront.services.audit.emitter import get_audit_emitter
from storefront.services.tracking.service import OrderTrackingService

# Configure logging before application initialization
configure_logging()
logger = get_logger(__name__)


async def run_automated_updates(interval_seconds: int) -> None:
    """
    Background task advancing orders past their dwell time.

    Runs the same sweep as ``POST /api/tracking/automated-updates`` every
    ``interval_seconds``.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            async with get_session() as session:
                updates = await OrderTrackingService(session).process_automated_updates()
            logger.info("Scheduled automated status sweep completed", count=len(updates))
        except Exception as e:
            logger.error(
                "Scheduled automated status sweep failed",
                error=str(e),
                error_type=type(e).__name__,
            )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan: start the audit writer and optional status sweep,
    then drain and dispose everything on shutdown.
    """
    settings = get_settings()
    audit = get_audit_emitter()

    logger.info(
        "Application starting",
        environment=settings.environment,
        debug=settings.debug,
        version=settings.app_version,
    )

    with log_performance(logger, "application_startup"):
        await audit.start()

    sweep_task: Optional[asyncio.Task] = None
    if settings.automated_updates_interval_seconds > 0:
        sweep_task = asyncio.create_task(
            run_automated_updates(settings.automated_updates_interval_seconds)
        )
        logger.info(
            "Automated status sweep scheduled",
            interval_seconds=settings.automated_updates_interval_seconds,
        )

    yield

    logger.info("Application shutting down")
    with log_performance(logger, "application_shutdown"):
        if sweep_task is not None:
            sweep_task.cancel()
            try:
                await sweep_task
            except asyncio.CancelledError:
                pass
        await audit.stop()
        await close_database_connections()


settings = get_settings()
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Storefront order lifecycle and tracking API",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    debug=settings.debug,
)

app.state.limiter = limiter

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
    Assign the request correlation id, log the request and its duration,
    and echo the id back in ``X-Request-ID``.
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
    finally:
        clear_context()


def _error_response(status_code: int, message: str, code: Optional[str], **extra) -> JSONResponse:
    body = ErrorResponse(message=message, code=code, request_id=get_request_id() or None)
    return JSONResponse(
        status_code=status_code,
        content={**body.model_dump(), **extra},
    )


@app.exception_handler(StorefrontError)
async def storefront_exception_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    log_method = logger.error if exc.status_code >= 500 else logger.warning
    log_method(
        "Request failed",
        method=request.method,
        path=request.url.path,
        status_code=exc.status_code,
        code=exc.code,
        error=exc.message,
        **{key: str(value) for key, value in exc.context.items()},
    )
    return _error_response(exc.status_code, exc.message, exc.code)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = jsonable_encoder(exc.errors())
    logger.warning(
        "Request validation failed",
        method=request.method,
        path=request.url.path,
        errors=errors,
    )
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", [])[1:])
    message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")
    return _error_response(
        status.HTTP_400_BAD_REQUEST,
        message,
        "VALIDATION_ERROR",
        errors=errors,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error_response(exc.status_code, str(exc.detail), None)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_exception_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning(
        "Rate limit exceeded",
        path=request.url.path,
        client_host=request.client.host if request.client else None,
        limit=str(exc.detail),
    )
    return _error_response(
        status.HTTP_429_TOO_MANY_REQUESTS,
        "Too many requests, please try again later",
        "RATE_LIMITED",
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log unexpected failures with traceback and hide their details."""
    logger.error(
        "Unhandled exception",
        method=request.method,
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "An unexpected error occurred",
        "INTERNAL_ERROR",
    )


@app.get("/health", tags=["Health"], summary="Health check endpoint")
async def health_check() -> dict[str, str]:
    """Liveness of the process; always 200 while the app is running."""
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }


@app.get("/ready", tags=["Health"], summary="Readiness check endpoint")
async def readiness_check():
    """Ready when the database answers; 503 otherwise."""
    database_ready = await check_database_health(max_retries=1)
    audit_running = get_audit_emitter().is_running

    body = {
        "status": "ready" if database_ready else "not_ready",
        "service": settings.app_name,
        "version": settings.app_version,
        "database": "healthy" if database_ready else "unhealthy",
        "audit_writer": "running" if audit_running else "stopped",
    }
    if not database_ready:
        logger.warning("Readiness check failed", database="unhealthy")
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body)
    return body


app.include_router(api_router, prefix=settings.api_prefix)
