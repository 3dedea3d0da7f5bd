"""Progress view derived from a maintenance request's timestamps."""

from datetime import datetime
from typing import Optional

from app.models.enums import ImageType, MaintenanceStatus
from app.schemas.maintenance import (
    CancellationNotice,
    MaintenanceResponse,
    StatusStep,
    StatusTrackResponse,
)
from app.services.images import displayable_images, images_of_stage


def format_date(value: Optional[datetime]) -> str:
    return value.strftime("%b %d, %Y") if value else ""


def build_steps(request: MaintenanceResponse) -> list[StatusStep]:
    """The five progress steps. Each step reads only its own fields.

    Assigned and Scheduled both key off ``assigned_at``, which records the
    date the work was scheduled for when the request was assigned.
    """
    assigned_desc = "Not yet assigned"
    if request.assigned_to:
        assigned_desc = f"Assigned to {request.assignee_name or 'staff member'}"
        if request.assigned_at:
            assigned_desc += f"\nScheduled for: {format_date(request.assigned_at)}"

    in_progress = request.status in (MaintenanceStatus.IN_PROGRESS, MaintenanceStatus.COMPLETED)
    completed = request.status == MaintenanceStatus.COMPLETED

    return [
        StatusStep(
            key="created",
            label="Request Created",
            completed=True,
            date=request.created_at,
            description=f"Created on {format_date(request.created_at)}",
        ),
        StatusStep(
            key="assigned",
            label="Assigned to Staff",
            completed=request.assigned_to is not None,
            date=request.assigned_at,
            description=assigned_desc,
        ),
        StatusStep(
            key="scheduled",
            label="Scheduled",
            completed=request.assigned_at is not None,
            date=request.assigned_at,
            description=(
                f"Scheduled for {format_date(request.assigned_at)}"
                if request.assigned_at else "Not yet scheduled"
            ),
        ),
        StatusStep(
            key="in_progress",
            label="In Progress",
            completed=in_progress,
            date=request.started_at,
            description=(
                f"Started on {format_date(request.started_at)}"
                if request.started_at else "Work not yet started"
            ),
            images=images_of_stage(request.images, ImageType.PROGRESS) if in_progress else [],
        ),
        StatusStep(
            key="completed",
            label="Completed",
            completed=completed,
            date=request.completed_at,
            description=(
                f"Completed on {format_date(request.completed_at)}"
                if request.completed_at else "Not yet completed"
            ),
            notes=request.notes if completed else None,
            images=images_of_stage(request.images, ImageType.COMPLETION) if completed else [],
        ),
    ]


def track(request: MaintenanceResponse) -> StatusTrackResponse:
    """Build the progress view; cancelled requests get a notice instead of steps."""
    if request.status == MaintenanceStatus.CANCELLED:
        return StatusTrackResponse(
            request_id=request.id,
            status=request.status,
            cancellation=CancellationNotice(
                reason=request.cancellation_reason,
                cancelled_at=request.cancelled_at or request.updated_at,
                images=displayable_images(request.images),
            ),
        )

    return StatusTrackResponse(
        request_id=request.id,
        status=request.status,
        steps=build_steps(request),
    )
