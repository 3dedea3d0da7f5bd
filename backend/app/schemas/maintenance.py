"""Maintenance schemas."""

from datetime import datetime
from typing import Optional, List
from uuid import UUID

from pydantic import Field

from app.schemas.base import BaseSchema, IDMixin, TimestampMixin
from app.models.enums import ImageType, MaintenancePriority, MaintenanceStatus


class MaintenanceImageResponse(BaseSchema):
    """An image attached to a request."""

    id: Optional[UUID] = None
    image_url: str = ""
    image_type: Optional[ImageType] = None
    description: Optional[str] = None
    uploaded_by: Optional[UUID] = None
    uploaded_at: Optional[datetime] = None


class CommentAuthor(BaseSchema):
    name: str
    role: str


class CommentResponse(BaseSchema):
    """A comment on a request, as shown in the thread."""

    id: Optional[UUID] = None
    content: str
    created_by: CommentAuthor
    created_at: datetime
    is_internal: bool = False
    legacy: bool = False


class MaintenanceResponse(BaseSchema, IDMixin, TimestampMixin):
    """Maintenance request response.

    ``comments`` is already filtered for the role of the caller.
    """

    property_id: UUID
    rentee_id: UUID
    rentee_name: Optional[str] = None
    assigned_to: Optional[UUID] = None
    assignee_name: Optional[str] = None
    title: str
    description: str
    request_type: str = ""
    priority: MaintenancePriority
    status: MaintenanceStatus
    assigned_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    version: int
    images: List[MaintenanceImageResponse] = []
    comments: List[CommentResponse] = []


class StartWorkRequest(BaseSchema):
    expected_version: Optional[int] = None


class CancelRequest(BaseSchema):
    reason: str = ""
    expected_version: Optional[int] = None


class CommentCreate(BaseSchema):
    content: str = ""
    is_internal: bool = False
    expected_version: Optional[int] = None


class FailedUpload(BaseSchema):
    filename: str
    error: str


class ImageBatchResponse(BaseSchema):
    """Outcome of a multi-file upload: some files may fail independently."""

    request: MaintenanceResponse
    uploaded: int = 0
    failed: List[FailedUpload] = []


class ImageGroup(BaseSchema):
    """Images of one lifecycle stage, in upload order."""

    stage: ImageType
    label: str
    images: List[MaintenanceImageResponse] = Field(default_factory=list)


class StatusStep(BaseSchema):
    key: str
    label: str
    completed: bool
    date: Optional[datetime] = None
    description: str
    notes: Optional[str] = None
    images: List[MaintenanceImageResponse] = Field(default_factory=list)


class CancellationNotice(BaseSchema):
    reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    images: List[MaintenanceImageResponse] = Field(default_factory=list)


class StatusTrackResponse(BaseSchema):
    """Either the five progress steps or, for cancelled requests, a notice."""

    request_id: UUID
    status: MaintenanceStatus
    steps: List[StatusStep] = Field(default_factory=list)
    cancellation: Optional[CancellationNotice] = None


