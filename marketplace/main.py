"""
FastAPI Production Application

Main entry point for the Marketplace API.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from redis.exceptions import RedisError
import structlog

from marketplace.config import get_settings
from marketplace.config.logging import configure_logging
from marketplace.database.connection import init_database, close_database
from marketplace.errors import MarketplaceError
from marketplace.serving.cache import init_redis, close_redis
from marketplace.serving.api.middleware import (
    RequestLoggingMiddleware,
    RateLimitMiddleware,
    SecurityHeadersMiddleware,
)
from marketplace.serving.api.routes import (
    health_router,
    products_router,
    categories_router,
    orders_router,
    reviews_router,
    shops_router,
    notifications_router,
    engagement_router,
    assistant_router,
    admin_router,
)

settings = get_settings()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    configure_logging(settings.monitoring.log_level)

    logger.info("Starting Marketplace API", environment=settings.app_env)

    await init_database(create_tables=settings.is_development)
    logger.info("Database initialized")

    # Cache is optional
    try:
        await init_redis()
    except (RedisError, OSError) as e:
        logger.warning("Redis unavailable, caching disabled", error=str(e))

    yield

    logger.info("Shutting down...")
    await close_database()
    await close_redis()


async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    logger.info(
        "Request rejected",
        path=request.url.path,
        code=exc.code,
        status_code=exc.status_code,
    )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


def create_app(use_lifespan: bool = True) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        use_lifespan: Connect database and cache on startup. Tests pass
            False and override the session dependency instead.
    """
    app = FastAPI(
        title="Marketplace API",
        description="Multi-vendor marketplace: catalog, orders, reviews, follows and notifications",
        version=settings.version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan if use_lifespan else None,
    )

    app.add_exception_handler(MarketplaceError, marketplace_error_handler)

    # CORS Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.security.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Compression
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    # Custom middleware
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        max_requests=settings.security.rate_limit_requests,
        window_seconds=settings.security.rate_limit_window_seconds,
    )

    # API routes
    app.include_router(health_router, prefix="/api/v1", tags=["Health"])
    app.include_router(products_router, prefix="/api/v1/products", tags=["Products"])
    app.include_router(categories_router, prefix="/api/v1/categories", tags=["Categories"])
    app.include_router(orders_router, prefix="/api/v1/orders", tags=["Orders"])
    app.include_router(reviews_router, prefix="/api/v1/reviews", tags=["Reviews"])
    app.include_router(shops_router, prefix="/api/v1/shops", tags=["Shops"])
    app.include_router(notifications_router, prefix="/api/v1/notifications", tags=["Notifications"])
    app.include_router(engagement_router, prefix="/api/v1/me", tags=["Cart & Wishlist"])
    app.include_router(assistant_router, prefix="/api/v1/assistant", tags=["Assistant"])
    app.include_router(admin_router, prefix="/api/v1/admin", tags=["Admin"])

    if settings.monitoring.enable_metrics:
        app.mount("/metrics", make_asgi_app())

    @app.get("/api/v1/info")
    async def api_info():
        """API information endpoint."""
        return {
            "name": "Marketplace API",
            "version": settings.version,
            "environment": settings.app_env,
            "documentation": "/docs",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
