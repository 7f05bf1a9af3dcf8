"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ruleflow.api.deps import close_automation_service
from ruleflow.api.routes import automations, logs, notifications, rules
from ruleflow.core.config import get_settings
from ruleflow.core.errors import ManualInvocationError, RuleValidationError, StorageError
from ruleflow.core.logging import get_logger, setup_logging
from ruleflow.storage.redis_client import close_redis_pool, init_redis_pool

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager."""
    settings = get_settings()

    setup_logging()
    logger.info("Starting application", app_name=settings.app_name, version=settings.app_version)

    await init_redis_pool()
    logger.info("Redis connection pool initialized")

    yield

    logger.info("Shutting down application")
    await close_automation_service()
    await close_redis_pool()
    logger.info("Redis connection pool closed")


def _error(status_code: int, message: str, data: object = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"code": status_code, "message": message, "data": data},
    )


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Rule-based automation engine: trigger dispatch, scheduling and manual runs",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(rules.router, prefix="/api/v1")
    app.include_router(logs.router, prefix="/api/v1")
    app.include_router(automations.router, prefix="/api/v1")
    app.include_router(notifications.router, prefix="/api/v1")

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        detail = exc.detail
        if isinstance(detail, str):
            return _error(exc.status_code, detail)
        return _error(exc.status_code, "HTTP error", detail)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        return _error(422, "Validation error", exc.errors())

    @app.exception_handler(RuleValidationError)
    async def rule_validation_handler(request: Request, exc: RuleValidationError) -> JSONResponse:
        return _error(422, exc.message, exc.context or None)

    @app.exception_handler(ManualInvocationError)
    async def manual_invocation_handler(request: Request, exc: ManualInvocationError) -> JSONResponse:
        status_code = 404 if exc.reason == ManualInvocationError.NOT_FOUND else 400
        return _error(status_code, exc.message, exc.context)

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
        logger.error("Storage unavailable", path=request.url.path, error=exc.message)
        return _error(503, "Storage unavailable", exc.to_dict() if settings.debug else None)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
        )
        return _error(500, "Internal server error", str(exc) if settings.debug else None)

    @app.get("/health")
    async def health_check() -> dict:
        """Health check endpoint."""
        return {"status": "ok", "version": settings.app_version}

    return app


# Application instance for uvicorn
app = create_app()
