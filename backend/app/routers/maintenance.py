"""Maintenance router."""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import get_db
from app.core.security import get_current_actor
from app.models.enums import ImageType, MaintenancePriority, MaintenanceStatus
from app.schemas.auth import Actor
from app.schemas.maintenance import (
    CancelRequest,
    CommentCreate,
    ImageBatchResponse,
    ImageGroup,
    MaintenanceResponse,
    StartWorkRequest,
    StatusTrackResponse,
)
from app.services.lifecycle import MaintenanceLifecycle
from app.services.maintenance import MaintenanceRequestService
from app.services.notifications import NotificationService, get_notification_service
from app.services.storage import StorageService, UploadedFile, get_storage_service

router = APIRouter(prefix="/maintenance", tags=["maintenance"])


def get_maintenance_service(
    db: AsyncSession = Depends(get_db),
    storage: StorageService = Depends(get_storage_service),
    notifier: NotificationService = Depends(get_notification_service),
) -> MaintenanceRequestService:
    lifecycle = MaintenanceLifecycle(
        db, storage, notifier, folder=get_settings().maintenance_folder
    )
    return MaintenanceRequestService(lifecycle)


async def read_uploads(
    files: Optional[List[UploadFile]],
    description: Optional[str] = None,
) -> list[UploadedFile]:
    """Read multipart files into memory for the storage layer."""
    uploads = []
    for file in files or []:
        uploads.append(
            UploadedFile(
                filename=file.filename or "upload",
                content=await file.read(),
                content_type=file.content_type or "application/octet-stream",
                description=description,
            )
        )
    return uploads


@router.post("", response_model=MaintenanceResponse, status_code=status.HTTP_201_CREATED)
async def create_maintenance_request(
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    property_id: Optional[UUID] = Form(None),
    priority: Optional[MaintenancePriority] = Form(None),
    request_type: Optional[str] = Form(None),
    rentee_id: Optional[UUID] = Form(None),
    files: Optional[List[UploadFile]] = File(None),
    actor: Actor = Depends(get_current_actor),
    service: MaintenanceRequestService = Depends(get_maintenance_service),
):
    """Report a maintenance issue, optionally with photos."""
    return await service.create(
        actor,
        title=title,
        description=description,
        property_id=property_id,
        priority=priority,
        request_type=request_type,
        rentee_id=rentee_id,
        files=await read_uploads(files),
    )


@router.get("", response_model=List[MaintenanceResponse])
async def list_maintenance_requests(
    status: Optional[MaintenanceStatus] = None,
    assigned_to_me: bool = False,
    actor: Actor = Depends(get_current_actor),
    service: MaintenanceRequestService = Depends(get_maintenance_service),
):
    """List maintenance requests, newest first."""
    return await service.list_requests(actor, status=status, assigned_to_me=assigned_to_me)


@router.get("/{request_id}", response_model=MaintenanceResponse)
async def get_maintenance_request(
    request_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: MaintenanceRequestService = Depends(get_maintenance_service),
):
    return await service.get_request(actor, request_id)


@router.post("/{request_id}/assign", response_model=MaintenanceResponse)
async def assign_maintenance_request(
    request_id: UUID,
    staff_id: Optional[UUID] = Form(None),
    scheduled_for: Optional[datetime] = Form(None),
    expected_version: Optional[int] = Form(None),
    files: Optional[List[UploadFile]] = File(None),
    actor: Actor = Depends(get_current_actor),
    service: MaintenanceRequestService = Depends(get_maintenance_service),
):
    """Assign a pending request to a staff member and schedule the work."""
    return await service.assign(
        actor,
        request_id,
        staff_id,
        scheduled_for=scheduled_for,
        files=await read_uploads(files),
        expected_version=expected_version,
    )


@router.post("/{request_id}/start", response_model=MaintenanceResponse)
async def start_maintenance_work(
    request_id: UUID,
    data: Optional[StartWorkRequest] = None,
    actor: Actor = Depends(get_current_actor),
    service: MaintenanceRequestService = Depends(get_maintenance_service),
):
    expected_version = data.expected_version if data else None
    return await service.start_work(actor, request_id, expected_version=expected_version)


@router.post("/{request_id}/complete", response_model=MaintenanceResponse)
async def complete_maintenance_request(
    request_id: UUID,
    notes: Optional[str] = Form(None),
    expected_version: Optional[int] = Form(None),
    files: Optional[List[UploadFile]] = File(None),
    actor: Actor = Depends(get_current_actor),
    service: MaintenanceRequestService = Depends(get_maintenance_service),
):
    """Complete the work with notes and completion photos."""
    return await service.complete(
        actor,
        request_id,
        notes,
        files=await read_uploads(files),
        expected_version=expected_version,
    )


@router.post("/{request_id}/cancel", response_model=MaintenanceResponse)
async def cancel_maintenance_request(
    request_id: UUID,
    data: CancelRequest,
    actor: Actor = Depends(get_current_actor),
    service: MaintenanceRequestService = Depends(get_maintenance_service),
):
    return await service.cancel(actor, request_id, data.reason, expected_version=data.expected_version)


@router.post("/{request_id}/comments", response_model=MaintenanceResponse, status_code=status.HTTP_201_CREATED)
async def add_maintenance_comment(
    request_id: UUID,
    data: CommentCreate,
    actor: Actor = Depends(get_current_actor),
    service: MaintenanceRequestService = Depends(get_maintenance_service),
):
    return await service.add_comment(
        actor,
        request_id,
        data.content,
        is_internal=data.is_internal,
        expected_version=data.expected_version,
    )


@router.post("/{request_id}/images", response_model=ImageBatchResponse)
async def add_maintenance_images(
    request_id: UUID,
    files: Optional[List[UploadFile]] = File(None),
    image_type: Optional[ImageType] = Form(None),
    description: Optional[str] = Form(None),
    expected_version: Optional[int] = Form(None),
    actor: Actor = Depends(get_current_actor),
    service: MaintenanceRequestService = Depends(get_maintenance_service),
):
    """Upload several images; each file is reported as stored or failed."""
    return await service.add_images(
        actor,
        request_id,
        await read_uploads(files, description),
        image_type=image_type,
        expected_version=expected_version,
    )


@router.get("/{request_id}/progress", response_model=StatusTrackResponse)
async def get_maintenance_progress(
    request_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: MaintenanceRequestService = Depends(get_maintenance_service),
):
    """Progress steps for the request, or the cancellation notice."""
    return await service.progress(actor, request_id)


@router.get("/{request_id}/images/organized", response_model=List[ImageGroup])
async def get_organized_images(
    request_id: UUID,
    actor: Actor = Depends(get_current_actor),
    service: MaintenanceRequestService = Depends(get_maintenance_service),
):
    return await service.organized_images(actor, request_id)
