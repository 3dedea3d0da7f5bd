"""MaintenanceRequest aggregate: the request, its images and its comments."""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, DateTime, ForeignKey, Enum as SQLEnum, Text, Integer, Boolean, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.models.enums import MaintenanceStatus, MaintenancePriority, ImageType, UserRole

if TYPE_CHECKING:
    from app.models.user import User


class MaintenanceRequest(Base):
    """A maintenance request reported by a rentee."""

    __tablename__ = "maintenance_requests"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    # Properties are managed elsewhere; the id is kept opaque here
    property_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    rentee_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("app_users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    assigned_to: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("app_users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    request_type: Mapped[str] = mapped_column(String(50), default="")
    priority: Mapped[MaintenancePriority] = mapped_column(
        SQLEnum(MaintenancePriority),
        default=MaintenancePriority.MEDIUM,
        nullable=False,
    )
    status: Mapped[MaintenanceStatus] = mapped_column(
        SQLEnum(MaintenanceStatus),
        default=MaintenanceStatus.PENDING,
        nullable=False,
        index=True,
    )

    # assigned_at doubles as the "scheduled for" date
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Completion narrative
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    rentee: Mapped["User"] = relationship("User", foreign_keys=[rentee_id])
    assignee: Mapped[Optional["User"]] = relationship("User", foreign_keys=[assigned_to])
    images: Mapped[List["MaintenanceRequestImage"]] = relationship(
        "MaintenanceRequestImage",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="MaintenanceRequestImage.uploaded_at",
    )
    comments: Mapped[List["MaintenanceComment"]] = relationship(
        "MaintenanceComment",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="MaintenanceComment.seq",
    )


class MaintenanceRequestImage(Base):
    """An image attached to a maintenance request. Never mutated once stored."""

    __tablename__ = "maintenance_request_images"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("maintenance_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    image_url: Mapped[str] = mapped_column(String(1000), nullable=False)
    image_type: Mapped[Optional[ImageType]] = mapped_column(
        SQLEnum(ImageType),
        default=ImageType.INITIAL,
        nullable=True,
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    uploaded_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("app_users.id", ondelete="SET NULL"),
        nullable=True,
    )
    uploaded_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=datetime.utcnow)

    request: Mapped["MaintenanceRequest"] = relationship("MaintenanceRequest", back_populates="images")


class MaintenanceComment(Base):
    """Append-only comment on a maintenance request."""

    __tablename__ = "maintenance_comments"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("maintenance_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Insertion position within the request
    seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    content: Mapped[str] = mapped_column(Text, nullable=False)
    author_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("app_users.id", ondelete="SET NULL"),
        nullable=True,
    )
    author_name: Mapped[str] = mapped_column(String(255), nullable=False)
    author_role: Mapped[UserRole] = mapped_column(SQLEnum(UserRole), nullable=False)
    is_internal: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    request: Mapped["MaintenanceRequest"] = relationship("MaintenanceRequest", back_populates="comments")
