"""
FastAPI application for recurring appointment scheduling

Calendar, availability, checkout locks and occurrence exceptions
"""
import logging
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.routing import APIRoute
from contextlib import asynccontextmanager

from booking_scheduler.config.settings import get_settings
from booking_scheduler.core.middleware import (
    correlation_id_middleware,
    register_error_handlers,
    request_logging_middleware,
)
from booking_scheduler.core.monitoring import health_router
from booking_scheduler.api.v1.router import api_v1_router
from booking_scheduler.services.events.event_bus import get_event_bus
from booking_scheduler.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # Startup
    setup_logging()
    get_event_bus()  # wires cache invalidation before the first request
    routes = sum(1 for route in app.routes if isinstance(route, APIRoute))
    logger.info(f"{settings.APP_NAME} starting up with {routes} routes, timezone {settings.DEFAULT_TIMEZONE}")

    yield

    # Shutdown
    logger.info(f"{settings.APP_NAME} shutting down...")


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""

    app = FastAPI(
        title=settings.APP_NAME,
        description="Recurring appointment expansion, conflict checks and checkout slot locks",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["*"],
    )

    # Add custom middleware
    app.middleware("http")(request_logging_middleware)
    app.middleware("http")(correlation_id_middleware)

    register_error_handlers(app)

    # Include routers
    app.include_router(health_router, prefix="/health", tags=["monitoring"])
    app.include_router(api_v1_router, prefix="/api/v1", tags=["api"])

    @app.get("/")
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": "0.1.0",
            "status": "running",
            "endpoints": {
                "api": "/api/v1/",
                "health": "/health",
                "docs": "/docs" if settings.DEBUG else "disabled"
            }
        }

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "booking_scheduler.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info"
    )
