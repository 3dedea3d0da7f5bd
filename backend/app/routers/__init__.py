"""API Routers for the maintenance desk."""

from app.routers.auth import router as auth_router
from app.routers.maintenance import router as maintenance_router

__all__ = [
    "auth_router",
    "maintenance_router",
]
