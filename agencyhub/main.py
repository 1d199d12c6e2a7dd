"""
FastAPI application factory.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from agencyhub.config import settings
from agencyhub.core.database import db_manager
from agencyhub.core.exceptions import (
    UNIFORM_AUTH_MESSAGE,
    AuthenticationError,
    GatewayUnavailableError,
    RateLimitExceededError,
    ResourceNotFoundError,
    ScopeDeniedError,
    too_many_requests,
)
from agencyhub.core.logging_config import get_logger, setup_logging
from agencyhub.core.metrics import app_info
from agencyhub.core.middleware import RequestContextMiddleware
from agencyhub.core.redis_client import redis_manager
from agencyhub.features.api_keys.dependencies import AuthComponents, build_auth_components

# Setup logging first
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan events."""
    logger.info(
        "application_starting",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
    )

    db_manager.init()
    if settings.rate_limit_backend == "redis":
        await redis_manager.init()

    app_info.info({
        "version": settings.app_version,
        "environment": settings.environment,
    })

    components: AuthComponents | None = getattr(app.state, "auth", None)
    if components is None:
        components = build_auth_components(settings, db_manager.session_factory)
        app.state.auth = components
    await components.start()

    logger.info("application_ready")

    yield

    logger.info("application_shutting_down")
    await components.stop()
    await redis_manager.close()
    await db_manager.close()
    logger.info("application_shutdown_complete")


def register_exception_handlers(app: FastAPI) -> None:
    """Map the domain exception taxonomy onto HTTP responses."""

    @app.exception_handler(AuthenticationError)
    async def authentication_error_handler(
        request: Request,
        exc: AuthenticationError,
    ) -> JSONResponse:
        # The specific reason is already in the audit trail
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": UNIFORM_AUTH_MESSAGE},
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(ScopeDeniedError)
    async def scope_denied_handler(
        request: Request,
        exc: ScopeDeniedError,
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content={"detail": exc.message},
        )

    @app.exception_handler(RateLimitExceededError)
    async def rate_limited_handler(
        request: Request,
        exc: RateLimitExceededError,
    ) -> JSONResponse:
        http_exc = too_many_requests(exc.retry_after_seconds, exc.limit)
        return JSONResponse(
            status_code=http_exc.status_code,
            content={"detail": http_exc.detail},
            headers=http_exc.headers,
        )

    @app.exception_handler(GatewayUnavailableError)
    async def gateway_unavailable_handler(
        request: Request,
        exc: GatewayUnavailableError,
    ) -> JSONResponse:
        logger.error(
            "key_store_unavailable",
            path=request.url.path,
            operation=exc.details.get("operation"),
        )
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Service temporarily unavailable"},
            headers={"Retry-After": "5"},
        )

    @app.exception_handler(ResourceNotFoundError)
    async def not_found_handler(
        request: Request,
        exc: ResourceNotFoundError,
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"detail": exc.message},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        logger.warning(
            "validation_error",
            path=request.url.path,
            errors=exc.errors(),
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        request_id = getattr(request.state, "request_id", "unknown")

        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=True,
        )

        if settings.is_production:
            detail = "An internal error occurred. Please contact support."
        else:
            detail = str(exc)

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": detail, "request_id": request_id},
        )


def create_application(auth_components: AuthComponents | None = None) -> FastAPI:
    """
    Application factory.

    Passing ``auth_components`` makes them available before, and instead
    of, the ones the lifespan would build. In-process test clients do not
    run the lifespan and rely on this.
    """
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Agency management API with programmatic API-key access",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    if auth_components is not None:
        app.state.auth = auth_components

    # Middleware (first added = innermost)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    from agencyhub.api.health_router import router as health_router
    from agencyhub.api.metrics_router import router as metrics_router
    from agencyhub.api.v1.router import v1_router

    app.include_router(health_router)
    if settings.metrics_enabled:
        app.include_router(metrics_router)
    app.include_router(v1_router, prefix="/api")

    @app.get("/", tags=["Root"])
    async def root() -> dict:
        return {
            "message": f"Welcome to {settings.app_name}",
            "version": settings.app_version,
            "docs": "/docs" if settings.is_development else "Disabled in production",
            "health": "/health/ready",
        }

    logger.info("application_configured")
    return app


app = create_application()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "agencyhub.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload and settings.is_development,
        log_level=settings.log_level.lower(),
        access_log=False,
    )
