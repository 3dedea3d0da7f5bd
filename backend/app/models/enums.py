"""Enumeration types for the maintenance domain model."""

from enum import Enum


class UserRole(str, Enum):
    """Role of an application user."""
    ADMIN = "admin"
    STAFF = "staff"
    MAINTENANCE = "maintenance"
    RENTEE = "rentee"


# Roles that see internal comments and can be assigned work
STAFF_ROLES = frozenset({UserRole.ADMIN, UserRole.STAFF, UserRole.MAINTENANCE})


class MaintenanceStatus(str, Enum):
    """Status of a maintenance request."""
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({MaintenanceStatus.COMPLETED, MaintenanceStatus.CANCELLED})


class MaintenancePriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EMERGENCY = "emergency"


class ImageType(str, Enum):
    """When during the request's life an image was captured."""
    INITIAL = "initial"
    PROGRESS = "progress"
    COMPLETION = "completion"
    ADDITIONAL = "additional"
    GENERAL = "general"


class MaintenanceEvent(str, Enum):
    """Lifecycle events, also used as notification event types."""
    CREATE = "request_created"
    ASSIGN = "request_assigned"
    START_WORK = "work_started"
    COMPLETE = "request_completed"
    CANCEL = "request_cancelled"
    ADD_IMAGE = "images_added"
    ADD_COMMENT = "comment_added"


class AuditAction(str, Enum):
    """Actions tracked in audit log."""
    REQUEST_CREATED = "request_created"
    REQUEST_ASSIGNED = "request_assigned"
    WORK_STARTED = "work_started"
    REQUEST_COMPLETED = "request_completed"
    REQUEST_CANCELLED = "request_cancelled"
    IMAGES_ADDED = "images_added"
    COMMENT_ADDED = "comment_added"
