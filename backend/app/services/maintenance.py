"""Maintenance request service.

The entry point routers call. Mutations are delegated to the lifecycle,
after which the request is read back so callers always see what was
committed. Reads are shaped for the caller's role.
"""

import logging
from datetime import datetime
from typing import Awaitable, Optional, Sequence, TypeVar
from uuid import UUID

from app.core.errors import MaintenanceError, StorageError
from app.models.enums import ImageType, MaintenancePriority, MaintenanceStatus
from app.models.maintenance import MaintenanceRequest
from app.schemas.auth import Actor
from app.schemas.maintenance import (
    ImageBatchResponse,
    ImageGroup,
    MaintenanceImageResponse,
    MaintenanceResponse,
    StatusTrackResponse,
)
from app.services import status_tracker
from app.services.comments import CommentLog, comment_from_row, parse_legacy_thread
from app.services.images import organize
from app.services.lifecycle import MaintenanceLifecycle, authorize_view
from app.services.storage import UploadedFile

logger = logging.getLogger(__name__)

T = TypeVar("T")


def build_response(request: MaintenanceRequest, role) -> MaintenanceResponse:
    """Shape a request for a reader with ``role``.

    Comments serialized into ``notes`` by older clients come first, followed
    by stored comments; internal ones are dropped for rentees.
    """
    legacy = parse_legacy_thread(request.notes)
    thread = CommentLog([*(legacy or []), *(comment_from_row(row) for row in request.comments)])

    return MaintenanceResponse(
        id=request.id,
        property_id=request.property_id,
        rentee_id=request.rentee_id,
        rentee_name=request.rentee.display_name if request.rentee else None,
        assigned_to=request.assigned_to,
        assignee_name=request.assignee.display_name if request.assignee else None,
        title=request.title,
        description=request.description,
        request_type=request.request_type or "",
        priority=request.priority,
        status=request.status,
        assigned_at=request.assigned_at,
        started_at=request.started_at,
        completed_at=request.completed_at,
        cancelled_at=request.cancelled_at,
        notes=None if legacy is not None else request.notes,
        cancellation_reason=request.cancellation_reason,
        version=request.version,
        images=[MaintenanceImageResponse.model_validate(img) for img in request.images],
        comments=thread.visible_to(role),
        created_at=request.created_at,
        updated_at=request.updated_at,
    )


class MaintenanceRequestService:
    """Service for maintenance request operations."""

    def __init__(self, lifecycle: MaintenanceLifecycle):
        self.lifecycle = lifecycle

    async def _run(self, operation: str, request_id: Optional[UUID], call: Awaitable[T]) -> T:
        try:
            return await call
        except StorageError as e:
            logger.error(f"[MAINTENANCE] {operation} {request_id or ''} failed: {e.message}")
            raise
        except MaintenanceError as e:
            logger.warning(f"[MAINTENANCE] {operation} {request_id or ''} rejected ({e.code}): {e.message}")
            raise

    async def _fetch(self, actor: Actor, request_id: UUID) -> MaintenanceRequest:
        request = await self.lifecycle.load(request_id)
        authorize_view(actor, request)
        return request

    async def get_request(self, actor: Actor, request_id: UUID) -> MaintenanceResponse:
        request = await self._run("get", request_id, self._fetch(actor, request_id))
        return build_response(request, actor.role)

    async def list_requests(
        self,
        actor: Actor,
        status: Optional[MaintenanceStatus] = None,
        assigned_to_me: bool = False,
    ) -> list[MaintenanceResponse]:
        """Rentees get their own requests; staff and admins get all. Newest first."""
        requests = await self._run("list", None, self.lifecycle.list_requests(actor, status, assigned_to_me))
        return [build_response(r, actor.role) for r in requests]

    async def create(
        self,
        actor: Actor,
        *,
        title: Optional[str],
        description: Optional[str],
        property_id: Optional[UUID],
        priority: Optional[MaintenancePriority] = None,
        request_type: Optional[str] = None,
        rentee_id: Optional[UUID] = None,
        files: Sequence[UploadedFile] = (),
    ) -> MaintenanceResponse:
        request = await self._run(
            "create",
            None,
            self.lifecycle.create(
                actor,
                title=title,
                description=description,
                property_id=property_id,
                priority=priority,
                request_type=request_type,
                rentee_id=rentee_id,
                files=files,
            ),
        )
        return await self.get_request(actor, request.id)

    async def assign(
        self,
        actor: Actor,
        request_id: UUID,
        staff_id: Optional[UUID],
        scheduled_for: Optional[datetime] = None,
        files: Sequence[UploadedFile] = (),
        expected_version: Optional[int] = None,
    ) -> MaintenanceResponse:
        await self._run(
            "assign",
            request_id,
            self.lifecycle.assign(actor, request_id, staff_id, scheduled_for, files, expected_version),
        )
        return await self.get_request(actor, request_id)

    async def start_work(
        self, actor: Actor, request_id: UUID, expected_version: Optional[int] = None
    ) -> MaintenanceResponse:
        await self._run("start", request_id, self.lifecycle.start_work(actor, request_id, expected_version))
        return await self.get_request(actor, request_id)

    async def complete(
        self,
        actor: Actor,
        request_id: UUID,
        notes: Optional[str],
        files: Sequence[UploadedFile] = (),
        expected_version: Optional[int] = None,
    ) -> MaintenanceResponse:
        await self._run(
            "complete",
            request_id,
            self.lifecycle.complete(actor, request_id, notes, files, expected_version),
        )
        return await self.get_request(actor, request_id)

    async def cancel(
        self,
        actor: Actor,
        request_id: UUID,
        reason: Optional[str],
        expected_version: Optional[int] = None,
    ) -> MaintenanceResponse:
        await self._run("cancel", request_id, self.lifecycle.cancel(actor, request_id, reason, expected_version))
        return await self.get_request(actor, request_id)

    async def add_comment(
        self,
        actor: Actor,
        request_id: UUID,
        content: Optional[str],
        is_internal: bool = False,
        expected_version: Optional[int] = None,
    ) -> MaintenanceResponse:
        await self._run(
            "comment",
            request_id,
            self.lifecycle.add_comment(actor, request_id, content, is_internal, expected_version),
        )
        return await self.get_request(actor, request_id)

    async def add_image(
        self,
        actor: Actor,
        request_id: UUID,
        file: UploadedFile,
        image_type: Optional[ImageType] = None,
        expected_version: Optional[int] = None,
    ) -> MaintenanceResponse:
        await self._run(
            "add image",
            request_id,
            self.lifecycle.add_image(actor, request_id, file, image_type, expected_version),
        )
        return await self.get_request(actor, request_id)

    async def add_images(
        self,
        actor: Actor,
        request_id: UUID,
        files: Sequence[UploadedFile],
        image_type: Optional[ImageType] = None,
        expected_version: Optional[int] = None,
    ) -> ImageBatchResponse:
        _, uploaded, failed = await self._run(
            "add images",
            request_id,
            self.lifecycle.add_images(actor, request_id, files, image_type, expected_version),
        )
        return ImageBatchResponse(
            request=await self.get_request(actor, request_id),
            uploaded=uploaded,
            failed=failed,
        )

    async def progress(self, actor: Actor, request_id: UUID) -> StatusTrackResponse:
        return status_tracker.track(await self.get_request(actor, request_id))

    async def organized_images(self, actor: Actor, request_id: UUID) -> list[ImageGroup]:
        request = await self.get_request(actor, request_id)
        return organize(request.images)
