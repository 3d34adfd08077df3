"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from pymongo.errors import PyMongoError

from invitehub.api import health, invitations, monitoring
from invitehub.api.errors import register_exception_handlers
from invitehub.config import settings
from invitehub.core.logging import setup_logging
from invitehub.core.tracing import TracingContext
from invitehub.database.mongo import get_database
from invitehub.queues.delivery_queue import DeliveryQueue
from invitehub.repositories import InvitationRepository, UserRepository
from invitehub.services.geolocation import GeoLocator
from invitehub.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        db = get_database()
        InvitationRepository(db).ensure_indexes()
        UserRepository(db).ensure_indexes()
    except PyMongoError as exc:
        logger.warning(f"Skipping index creation: {exc}")
    yield
    app.state.geolocator.close()


def create_app(
    queue: Optional[DeliveryQueue] = None,
    geolocator: Optional[GeoLocator] = None,
    rate_limiter: Optional[RateLimiter] = None,
) -> FastAPI:
    setup_logging()

    app = FastAPI(
        title=f"{settings.APP_NAME} API",
        description="Invitation lifecycle and notification delivery",
        version=settings.APP_VERSION,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )

    # Long-lived collaborators, built once and shared by every request
    app.state.delivery_queue = queue or DeliveryQueue()
    app.state.geolocator = geolocator or GeoLocator()
    app.state.rate_limiter = rate_limiter or RateLimiter()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_BASE_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next):
        TracingContext.clear()
        TracingContext.set(correlation_id=request.headers.get("x-correlation-id", ""))
        correlation_id = TracingContext.get_or_create_correlation_id()
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response

    register_exception_handlers(app)

    app.include_router(health.router, prefix="/api", tags=["Health"])
    app.include_router(invitations.router, prefix="/api")
    app.include_router(monitoring.router, prefix="/api")

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "message": f"{settings.APP_NAME} API",
            "version": settings.APP_VERSION,
            "docs": "/api/docs",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("invitehub.main:app", host="0.0.0.0", port=8000, reload=True)
