"""Auth router."""

from fastapi import APIRouter, Depends

from app.core.security import get_current_user, AuthenticatedUser
from app.schemas.auth import CurrentUserResponse

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/me", response_model=CurrentUserResponse)
async def get_me(
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Current user info, including the linked account and role if any."""
    return CurrentUserResponse(
        uid=current_user.uid,
        email=current_user.email,
        email_verified=current_user.email_verified,
        db_user_id=current_user.db_user_id,
        role=current_user.role,
        full_name=current_user.full_name,
    )
