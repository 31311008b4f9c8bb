"""
FastAPI application entry point.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rbac_admin.core.config import settings
from rbac_admin.core.authz.cache import build_snapshot_cache
from rbac_admin.core.exceptions import RBACError, UnauthenticatedError
from rbac_admin.core.logging import configure_logging
from rbac_admin.api.routes import router as api_router
from rbac_admin.api.middleware.logging import LoggingMiddleware
from rbac_admin.api.middleware.request_id import RequestIdMiddleware
from rbac_admin.models.database import close_db

logger = structlog.get_logger()


async def rbac_exception_handler(request: Request, exc: RBACError) -> JSONResponse:
    """Render typed failures with their status and stable code."""
    headers = None
    if isinstance(exc, UnauthenticatedError):
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=headers,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan events."""
    cache = getattr(app.state, "authz_cache", None)
    if cache is not None:
        await cache.connect()
    logger.info(
        "Application started",
        environment=settings.environment,
        authz_cache=settings.authz_cache.backend,
    )

    yield

    if cache is not None:
        await cache.close()
    await close_db()
    logger.info("Application stopped")


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    configure_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # Backends connect lazily, so the cache works without the lifespan running
    app.state.authz_cache = build_snapshot_cache(settings)

    # Middleware (order matters - last added is outermost)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routes
    app.include_router(api_router, prefix="/api")

    # Exception handlers
    app.add_exception_handler(RBACError, rbac_exception_handler)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler."""
        logger.exception("Unhandled error", path=request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "detail": str(exc) if settings.debug else "An error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Health checks
    @app.get("/health")
    async def health_check():
        """Quick health check endpoint (for load balancers)."""
        return {
            "status": "healthy",
            "version": settings.app_version,
            "environment": settings.environment,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "rbac_admin.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        workers=settings.workers,
    )
