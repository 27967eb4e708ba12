"""API routers."""
from .monitors import router as monitors_router
from .incidents import router as incidents_router
from .cron import router as cron_router
from .status import router as status_router

__all__ = ["monitors_router", "incidents_router", "cron_router", "status_router"]
