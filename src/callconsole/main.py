"""
FastAPI application entry point.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from callconsole import __version__
from callconsole.calls.cache import RefreshingCache
from callconsole.calls.router import router as calls_router
from callconsole.config import get_settings
from callconsole.shared.correlation import CorrelationIdMiddleware
from callconsole.shared.database import get_database_manager
from callconsole.shared.exceptions import AppException
from callconsole.shared.logging import get_logger, setup_logging
from callconsole.telephony.factory import get_calling_platform
from callconsole.telephony.interface import PlatformError

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    setup_logging()
    settings = get_settings()

    logger.info("Application starting", extra={"env": settings.app_env})

    db_manager = get_database_manager()
    if settings.database_auto_create:
        await db_manager.create_all()
        logger.info("Database tables ensured")

    yield

    logger.info("Shutting down application")

    if get_calling_platform.cache_info().currsize:
        await get_calling_platform().close()

    await db_manager.close()
    logger.info("Application shutdown complete")


def _error_content(exc: AppException) -> dict:
    return {"detail": {"code": exc.code, "message": exc.message, **exc.details}}


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Call Console API",
        description="Outbound AI call triggering and status tracking",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # Shared by every reconciliation pass in this process
    app.state.failed_runs_cache = RefreshingCache(ttl_seconds=settings.failed_runs_cache_seconds)

    # Map domain exceptions to HTTP responses
    @app.exception_handler(AppException)
    async def _app_exception(request: Request, exc: AppException) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.info
        log(
            "Request failed",
            extra={
                "path": request.url.path,
                "code": exc.code,
                "status_code": exc.status_code,
                "error": exc.message,
            },
        )
        return JSONResponse(status_code=exc.status_code, content=_error_content(exc))

    @app.exception_handler(PlatformError)
    async def _platform_error(request: Request, exc: PlatformError) -> JSONResponse:
        logger.warning(
            "Calling platform error",
            extra={"path": request.url.path, "error_code": exc.error_code, "error": exc.message},
        )
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={
                "detail": {
                    "code": "PLATFORM_ERROR",
                    "message": exc.message,
                    "platform_error_code": exc.error_code,
                }
            },
        )

    # Request validation (FastAPI/Pydantic) -> consistent 422 payload
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        errors = []
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            errors.append(
                {
                    "field": field,
                    "message": error["msg"],
                    "type": error["type"],
                }
            )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "detail": {
                    "code": "VALIDATION_ERROR",
                    "message": "Request validation failed",
                    "errors": errors,
                }
            },
        )

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(
            "Unhandled error",
            extra={"path": request.url.path, "method": request.method},
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": {"code": "INTERNAL_ERROR", "message": "Internal server error"}},
        )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(CorrelationIdMiddleware)

    # Include routers
    app.include_router(calls_router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy"}

    return app


app = create_app()
