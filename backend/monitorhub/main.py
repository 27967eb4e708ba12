"""Main FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .database import init_db, close_db
from .routers import monitors_router, incidents_router, cron_router, status_router
from .services.factory import build_services

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    logger.info("Starting MonitorHub")

    await init_db()
    logger.info("Database initialized")

    services = build_services(settings)
    app.state.services = services

    if settings.scheduler_enabled:
        services.scheduler.start()
    else:
        logger.info("In-process scheduler disabled, waiting for /api/cron/monitor triggers")

    yield

    # Shutdown
    await services.aclose()
    await close_db()
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="MonitorHub",
        description="Website uptime monitoring with incident tracking and alerts",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # In production, restrict to your domain
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(monitors_router)
    app.include_router(incidents_router)
    app.include_router(cron_router)
    app.include_router(status_router)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.web_port)
