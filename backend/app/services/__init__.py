"""Services for the maintenance desk."""

from app.services.storage import StorageService, get_storage_service
from app.services.audit import AuditService
from app.services.notifications import NotificationService, get_notification_service
from app.services.lifecycle import MaintenanceLifecycle
from app.services.maintenance import MaintenanceRequestService

__all__ = [
    "StorageService",
    "get_storage_service",
    "AuditService",
    "NotificationService",
    "get_notification_service",
    "MaintenanceLifecycle",
    "MaintenanceRequestService",
]
