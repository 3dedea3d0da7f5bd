"""SQLAlchemy models for the maintenance desk."""

from app.models.user import User
from app.models.maintenance import MaintenanceRequest, MaintenanceRequestImage, MaintenanceComment
from app.models.audit import AuditLog

__all__ = [
    "User",
    "MaintenanceRequest",
    "MaintenanceRequestImage",
    "MaintenanceComment",
    "AuditLog",
]
