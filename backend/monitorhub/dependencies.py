"""FastAPI dependencies shared by the routers."""
from fastapi import Request

from .services.factory import MonitoringServices


def get_services(request: Request) -> MonitoringServices:
    """Service graph built during application startup."""
    return request.app.state.services
