"""Auth schemas."""

from uuid import UUID

from app.models.enums import UserRole
from app.schemas.base import BaseSchema


class Actor(BaseSchema):
    """The authenticated party invoking a lifecycle operation."""

    id: UUID
    role: UserRole
    name: str = ""


class CurrentUserResponse(BaseSchema):
    """Current authenticated user info."""

    uid: str
    email: str | None = None
    email_verified: bool = False
    db_user_id: UUID | None = None
    role: UserRole | None = None
    full_name: str | None = None
