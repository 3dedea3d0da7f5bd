"""Maintenance request lifecycle.

Owns the state machine of a request and is the only code that mutates it.
Every operation runs the same way: check the actor may do it, check the
request is in a state that allows it, check the input, then apply the
change and commit it together with its images, comments and audit entry.
Any failure happens before the commit, so nothing is half-written.

    pending --assign--> assigned --start--> in_progress --complete--> completed
       |                   |                     |
       +-------------------+------cancel---------+------------------> cancelled
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from app.core.errors import (
    Conflict,
    InvalidTransition,
    NotFound,
    StorageError,
    Unauthorized,
    ValidationError,
)
from app.models.enums import (
    STAFF_ROLES,
    TERMINAL_STATUSES,
    AuditAction,
    ImageType,
    MaintenanceEvent,
    MaintenancePriority,
    MaintenanceStatus,
    UserRole,
)
from app.models.maintenance import MaintenanceComment, MaintenanceRequest, MaintenanceRequestImage
from app.models.user import User
from app.schemas.auth import Actor
from app.schemas.maintenance import CommentAuthor, FailedUpload
from app.services.audit import AuditService
from app.services.comments import CommentLog, comment_from_row, parse_legacy_thread
from app.services.notifications import NotificationService, recipients_for
from app.services.storage import StorageService, UploadedFile

logger = logging.getLogger(__name__)

# Statuses each event may start from
ALLOWED_FROM: dict[MaintenanceEvent, frozenset[MaintenanceStatus]] = {
    MaintenanceEvent.ASSIGN: frozenset({MaintenanceStatus.PENDING}),
    MaintenanceEvent.START_WORK: frozenset({MaintenanceStatus.ASSIGNED}),
    MaintenanceEvent.COMPLETE: frozenset({MaintenanceStatus.IN_PROGRESS}),
    MaintenanceEvent.CANCEL: frozenset({
        MaintenanceStatus.PENDING,
        MaintenanceStatus.ASSIGNED,
        MaintenanceStatus.IN_PROGRESS,
    }),
    MaintenanceEvent.ADD_IMAGE: frozenset(MaintenanceStatus) - TERMINAL_STATUSES,
    MaintenanceEvent.ADD_COMMENT: frozenset(MaintenanceStatus),
}

TARGET_STATUS: dict[MaintenanceEvent, MaintenanceStatus] = {
    MaintenanceEvent.ASSIGN: MaintenanceStatus.ASSIGNED,
    MaintenanceEvent.START_WORK: MaintenanceStatus.IN_PROGRESS,
    MaintenanceEvent.COMPLETE: MaintenanceStatus.COMPLETED,
    MaintenanceEvent.CANCEL: MaintenanceStatus.CANCELLED,
}

EVENT_VERBS = {
    MaintenanceEvent.ASSIGN: "assign",
    MaintenanceEvent.START_WORK: "start work on",
    MaintenanceEvent.COMPLETE: "complete",
    MaintenanceEvent.CANCEL: "cancel",
    MaintenanceEvent.ADD_IMAGE: "add images to",
    MaintenanceEvent.ADD_COMMENT: "comment on",
}

# Stages a rentee may upload; progress and completion evidence comes from staff
RENTEE_IMAGE_TYPES = frozenset({ImageType.INITIAL, ImageType.ADDITIONAL, ImageType.GENERAL})


def is_staff(actor: Actor) -> bool:
    return actor.role in (UserRole.STAFF, UserRole.MAINTENANCE)


def authorize(
    actor: Actor,
    request: MaintenanceRequest,
    event: MaintenanceEvent,
    *,
    staff_id: Optional[UUID] = None,
    is_internal: bool = False,
    image_type: Optional[ImageType] = None,
) -> None:
    """Raise Unauthorized unless ``actor`` may perform ``event`` on ``request``."""
    if actor.role == UserRole.ADMIN:
        return

    if is_staff(actor):
        if event == MaintenanceEvent.ASSIGN:
            if request.assigned_to is None and staff_id == actor.id:
                return
            raise Unauthorized("Staff members can only assign unassigned requests to themselves")
        if request.assigned_to != actor.id:
            raise Unauthorized("This request is not assigned to you")
        return

    if request.rentee_id != actor.id:
        raise Unauthorized("You can only act on your own maintenance requests")
    if event == MaintenanceEvent.CANCEL:
        # Terminal states fall through to the transition check
        if request.status not in TERMINAL_STATUSES and request.status != MaintenanceStatus.PENDING:
            raise Unauthorized("Work has started; ask the maintenance team to cancel this request")
        return
    if event == MaintenanceEvent.ADD_COMMENT:
        if is_internal:
            raise Unauthorized("Internal comments are reserved for staff")
        return
    if event == MaintenanceEvent.ADD_IMAGE:
        if image_type not in RENTEE_IMAGE_TYPES:
            raise Unauthorized("Progress and completion photos are added by staff")
        return
    raise Unauthorized()


def authorize_view(actor: Actor, request: MaintenanceRequest) -> None:
    if actor.role == UserRole.RENTEE and request.rentee_id != actor.id:
        raise Unauthorized("You can only view your own maintenance requests")


def ensure_transition(request: MaintenanceRequest, event: MaintenanceEvent) -> None:
    if request.status not in ALLOWED_FROM[event]:
        raise InvalidTransition(
            f"Cannot {EVENT_VERBS[event]} a request that is {request.status.value.replace('_', ' ')}",
            status=request.status.value,
            event=event.value,
        )


def ensure_version(request: MaintenanceRequest, expected_version: Optional[int]) -> None:
    if expected_version is not None and expected_version != request.version:
        raise Conflict(expected_version=expected_version, current_version=request.version)


def require_text(value: Optional[str], field: str, message: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(message, field=field)
    return text


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class MaintenanceLifecycle:
    """Validates and executes lifecycle transitions for maintenance requests."""

    def __init__(
        self,
        db: AsyncSession,
        storage: StorageService,
        notifier: NotificationService,
        folder: str = "maintenance",
    ):
        self.db = db
        self.storage = storage
        self.notifier = notifier
        self.folder = folder
        self.audit = AuditService(db)

    # === Reads ===

    def _query(self):
        return (
            select(MaintenanceRequest)
            .options(
                selectinload(MaintenanceRequest.images),
                selectinload(MaintenanceRequest.comments),
                selectinload(MaintenanceRequest.rentee),
                selectinload(MaintenanceRequest.assignee),
            )
            .execution_options(populate_existing=True)
        )

    async def load(self, request_id: UUID) -> MaintenanceRequest:
        """Read the aggregate fresh from the database."""
        result = await self.db.execute(self._query().where(MaintenanceRequest.id == request_id))
        request = result.scalar_one_or_none()
        if not request:
            raise NotFound(request_id=request_id)
        return request

    async def list_requests(
        self,
        actor: Actor,
        status: Optional[MaintenanceStatus] = None,
        assigned_to_me: bool = False,
    ) -> Sequence[MaintenanceRequest]:
        query = self._query().order_by(MaintenanceRequest.created_at.desc())
        if actor.role == UserRole.RENTEE:
            query = query.where(MaintenanceRequest.rentee_id == actor.id)
        if status:
            query = query.where(MaintenanceRequest.status == status)
        if assigned_to_me:
            query = query.where(MaintenanceRequest.assigned_to == actor.id)

        result = await self.db.execute(query)
        return result.scalars().all()

    # === Operations ===

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
    ) -> MaintenanceRequest:
        """Open a new pending request; attached files become initial images."""
        if actor.role == UserRole.RENTEE:
            if rentee_id is not None and rentee_id != actor.id:
                raise Unauthorized("Rentees can only report requests for themselves")
            rentee_id = actor.id
        elif rentee_id is None:
            raise ValidationError("Choose the rentee this request is for", field="rentee_id")

        title = require_text(title, "title", "Title is required")
        description = require_text(description, "description", "Description is required")
        if property_id is None:
            raise ValidationError("Property is required", field="property_id")

        if actor.role != UserRole.RENTEE:
            rentee = await self.db.get(User, rentee_id)
            if not rentee or rentee.role != UserRole.RENTEE or not rentee.is_active:
                raise ValidationError("Rentee not found", field="rentee_id")

        now = datetime.utcnow()
        request = MaintenanceRequest(
            id=uuid.uuid4(),
            property_id=property_id,
            rentee_id=rentee_id,
            title=title,
            description=description,
            request_type=(request_type or "").strip(),
            priority=priority or MaintenancePriority.MEDIUM,
            status=MaintenanceStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        images = await self._upload_all(request.id, files, ImageType.INITIAL, actor.id)

        self.db.add(request)
        await self._persist(request, actor, AuditAction.REQUEST_CREATED, images, images=len(images))
        logger.info(f"[MAINTENANCE] Request {request.id} created by {actor.role.value} {actor.id}")
        await self._notify(MaintenanceEvent.CREATE, request, actor)
        return request

    async def assign(
        self,
        actor: Actor,
        request_id: UUID,
        staff_id: Optional[UUID],
        scheduled_for: Optional[datetime] = None,
        files: Sequence[UploadedFile] = (),
        expected_version: Optional[int] = None,
    ) -> MaintenanceRequest:
        """Assign a pending request; ``scheduled_for`` is stored as ``assigned_at``."""
        request = await self.load(request_id)
        authorize(actor, request, MaintenanceEvent.ASSIGN, staff_id=staff_id)
        ensure_version(request, expected_version)
        ensure_transition(request, MaintenanceEvent.ASSIGN)

        if staff_id is None:
            raise ValidationError("Choose a staff member to assign", field="staff_id")
        staff = await self.db.get(User, staff_id)
        if not staff or not staff.is_active or staff.role not in STAFF_ROLES:
            raise ValidationError("Selected staff member is not available", field="staff_id")

        images = await self._upload_all(request.id, files, ImageType.ADDITIONAL, actor.id)

        now = datetime.utcnow()
        request.assigned_to = staff_id
        request.assigned_at = naive_utc(scheduled_for) or now
        request.status = TARGET_STATUS[MaintenanceEvent.ASSIGN]
        request.updated_at = now

        await self._persist(
            request, actor, AuditAction.REQUEST_ASSIGNED, images,
            staff_id=staff_id, scheduled_for=request.assigned_at,
        )
        logger.info(f"[MAINTENANCE] Request {request.id} assigned to {staff_id}")
        await self._notify(MaintenanceEvent.ASSIGN, request, actor)
        return request

    async def start_work(
        self,
        actor: Actor,
        request_id: UUID,
        expected_version: Optional[int] = None,
    ) -> MaintenanceRequest:
        request = await self.load(request_id)
        authorize(actor, request, MaintenanceEvent.START_WORK)
        ensure_version(request, expected_version)
        ensure_transition(request, MaintenanceEvent.START_WORK)

        now = datetime.utcnow()
        request.status = TARGET_STATUS[MaintenanceEvent.START_WORK]
        request.started_at = now
        request.updated_at = now

        await self._persist(request, actor, AuditAction.WORK_STARTED)
        logger.info(f"[MAINTENANCE] Work started on request {request.id}")
        await self._notify(MaintenanceEvent.START_WORK, request, actor)
        return request

    async def complete(
        self,
        actor: Actor,
        request_id: UUID,
        notes: Optional[str],
        files: Sequence[UploadedFile] = (),
        expected_version: Optional[int] = None,
    ) -> MaintenanceRequest:
        """Close the request with completion notes and completion photos."""
        request = await self.load(request_id)
        authorize(actor, request, MaintenanceEvent.COMPLETE)
        ensure_version(request, expected_version)
        ensure_transition(request, MaintenanceEvent.COMPLETE)
        notes = require_text(notes, "notes", "Completion notes are required")

        images = await self._upload_all(request.id, files, ImageType.COMPLETION, actor.id)
        # notes is about to hold the narrative; keep any thread stored there
        adopted = self._adopt_legacy_thread(request)

        now = datetime.utcnow()
        request.status = TARGET_STATUS[MaintenanceEvent.COMPLETE]
        request.completed_at = now
        request.notes = notes
        request.updated_at = now

        await self._persist(
            request, actor, AuditAction.REQUEST_COMPLETED, [*adopted, *images],
            images=len(images), legacy_comments=len(adopted),
        )
        logger.info(f"[MAINTENANCE] Request {request.id} completed")
        await self._notify(MaintenanceEvent.COMPLETE, request, actor)
        return request

    async def cancel(
        self,
        actor: Actor,
        request_id: UUID,
        reason: Optional[str],
        expected_version: Optional[int] = None,
    ) -> MaintenanceRequest:
        request = await self.load(request_id)
        authorize(actor, request, MaintenanceEvent.CANCEL)
        ensure_version(request, expected_version)
        ensure_transition(request, MaintenanceEvent.CANCEL)
        reason = require_text(reason, "reason", "A cancellation reason is required")

        now = datetime.utcnow()
        request.status = TARGET_STATUS[MaintenanceEvent.CANCEL]
        request.cancelled_at = now
        request.cancellation_reason = reason
        request.updated_at = now

        await self._persist(request, actor, AuditAction.REQUEST_CANCELLED, reason=reason)
        logger.info(f"[MAINTENANCE] Request {request.id} cancelled by {actor.role.value}")
        await self._notify(MaintenanceEvent.CANCEL, request, actor, reason=reason)
        return request

    async def add_comment(
        self,
        actor: Actor,
        request_id: UUID,
        content: Optional[str],
        is_internal: bool = False,
        expected_version: Optional[int] = None,
    ) -> MaintenanceRequest:
        request = await self.load(request_id)
        authorize(actor, request, MaintenanceEvent.ADD_COMMENT, is_internal=is_internal)
        ensure_version(request, expected_version)
        ensure_transition(request, MaintenanceEvent.ADD_COMMENT)

        thread = CommentLog(comment_from_row(row) for row in request.comments)
        comment = thread.append(
            content,
            CommentAuthor(name=actor.name or actor.role.value, role=actor.role.value),
            is_internal=is_internal,
        )
        row = MaintenanceComment(
            request_id=request.id,
            seq=len(request.comments),
            content=comment.content,
            author_id=actor.id,
            author_name=comment.created_by.name,
            author_role=actor.role,
            is_internal=comment.is_internal,
            created_at=comment.created_at,
        )
        request.updated_at = comment.created_at

        await self._persist(request, actor, AuditAction.COMMENT_ADDED, [row], internal=is_internal)
        await self._notify(
            MaintenanceEvent.ADD_COMMENT, request, actor,
            author_role=actor.role.value, is_internal=is_internal,
        )
        return request

    async def add_images(
        self,
        actor: Actor,
        request_id: UUID,
        files: Sequence[UploadedFile],
        image_type: Optional[ImageType] = None,
        expected_version: Optional[int] = None,
    ) -> tuple[MaintenanceRequest, int, list[FailedUpload]]:
        """Upload a batch of images; each file succeeds or fails on its own.

        Returns the request, the number of stored images and the failures.
        """
        image_type = image_type or ImageType.ADDITIONAL
        request = await self.load(request_id)
        authorize(actor, request, MaintenanceEvent.ADD_IMAGE, image_type=image_type)
        ensure_version(request, expected_version)
        ensure_transition(request, MaintenanceEvent.ADD_IMAGE)
        if not files:
            raise ValidationError("Select at least one image to upload", field="files")

        images: list[MaintenanceRequestImage] = []
        failed: list[FailedUpload] = []
        for file in files:
            try:
                images.append(await self._upload_one(request.id, file, image_type, actor.id))
            except (ValidationError, StorageError) as e:
                failed.append(FailedUpload(filename=file.filename, error=e.message))

        if images:
            request.updated_at = datetime.utcnow()
            await self._persist(
                request, actor, AuditAction.IMAGES_ADDED, images,
                image_type=image_type.value, images=len(images),
            )
        logger.info(
            f"[MAINTENANCE] {len(images)} image(s) added to request {request.id}, {len(failed)} failed"
        )
        return request, len(images), failed

    async def add_image(
        self,
        actor: Actor,
        request_id: UUID,
        file: UploadedFile,
        image_type: Optional[ImageType] = None,
        expected_version: Optional[int] = None,
    ) -> MaintenanceRequest:
        """Single-file form of ``add_images``; raises when the upload fails."""
        image_type = image_type or ImageType.ADDITIONAL
        request = await self.load(request_id)
        authorize(actor, request, MaintenanceEvent.ADD_IMAGE, image_type=image_type)
        ensure_version(request, expected_version)
        ensure_transition(request, MaintenanceEvent.ADD_IMAGE)

        image = await self._upload_one(request.id, file, image_type, actor.id)
        request.updated_at = datetime.utcnow()
        await self._persist(
            request, actor, AuditAction.IMAGES_ADDED, [image],
            image_type=image_type.value, images=1,
        )
        return request

    # === Helpers ===

    def _folder(self, request_id: UUID) -> str:
        return f"{self.folder}/{request_id}"

    def _adopt_legacy_thread(self, request: MaintenanceRequest) -> list[MaintenanceComment]:
        """Turn a comment thread serialized into ``notes`` into comment rows.

        The legacy comments take the first positions, ahead of the stored ones.
        """
        legacy = parse_legacy_thread(request.notes)
        if not legacy:
            return []

        for row in request.comments:
            row.seq += len(legacy)

        rows = []
        for seq, comment in enumerate(legacy):
            try:
                role = UserRole(comment.created_by.role)
            except ValueError:
                role = UserRole.RENTEE
            rows.append(
                MaintenanceComment(
                    request_id=request.id,
                    seq=seq,
                    content=comment.content,
                    author_id=None,
                    author_name=comment.created_by.name,
                    author_role=role,
                    is_internal=comment.is_internal,
                    created_at=comment.created_at,
                )
            )
        logger.info(f"[MAINTENANCE] Moved {len(rows)} legacy comments out of notes on request {request.id}")
        return rows

    async def _upload_one(
        self,
        request_id: UUID,
        file: UploadedFile,
        image_type: ImageType,
        uploaded_by: UUID,
    ) -> MaintenanceRequestImage:
        url = await self.storage.upload(file, self._folder(request_id))
        return MaintenanceRequestImage(
            request_id=request_id,
            image_url=url,
            image_type=image_type,
            description=file.description,
            uploaded_by=uploaded_by,
            uploaded_at=datetime.utcnow(),
        )

    async def _upload_all(
        self,
        request_id: UUID,
        files: Iterable[UploadedFile],
        image_type: ImageType,
        uploaded_by: UUID,
    ) -> list[MaintenanceRequestImage]:
        """Upload files that belong to a transition: all of them or none."""
        files = list(files)
        for file in files:
            self.storage.validate(file)
        return [await self._upload_one(request_id, f, image_type, uploaded_by) for f in files]

    async def _persist(
        self,
        request: MaintenanceRequest,
        actor: Actor,
        action: AuditAction,
        new_rows: Sequence[Any] = (),
        **details: Any,
    ) -> None:
        """Commit the request, its new rows and an audit entry in one transaction."""
        try:
            self.db.add_all(list(new_rows))
            await self.audit.log_request_action(action, request.id, actor.id, actor.role.value, **details)
            await self.db.commit()
        except StaleDataError as e:
            await self.db.rollback()
            logger.warning(f"[MAINTENANCE] Concurrent update on request {request.id}: {e}")
            raise Conflict(request_id=request.id) from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"[MAINTENANCE] Persisting {action.value} for {request.id} failed: {e}")
            raise StorageError(request_id=request.id) from e

    async def _notify(
        self,
        event: MaintenanceEvent,
        request: MaintenanceRequest,
        actor: Actor,
        author_role: Optional[str] = None,
        is_internal: bool = False,
        **extra: Any,
    ) -> None:
        recipients = [
            r for r in recipients_for(event, request, author_role=author_role, is_internal=is_internal)
            if r != str(actor.id)
        ]
        payload = {
            "request_id": str(request.id),
            "title": request.title,
            "status": request.status.value,
            "actor_id": str(actor.id),
            "recipients": recipients,
            **extra,
        }
        try:
            await self.notifier.emit(event.value, payload)
        except Exception as e:
            logger.error(f"[NOTIFY] {event.value} for {request.id} raised: {e}")
