"""Category and profile lookups."""

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from ..core import CurrentUserDep, SessionDep, get_settings
from ..schemas import CategoryRef, ProfileOut
from ..services.complaints import ComplaintService

router = APIRouter(tags=["reference"])


class HealthResponse(BaseModel):
    status: str
    version: str


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check():
    """Health check endpoint."""
    return HealthResponse(status="healthy", version=get_settings().app_version)


@router.get("/categories", response_model=list[CategoryRef])
async def list_categories(session: SessionDep):
    """All complaint categories, alphabetically."""
    categories = await ComplaintService(session).list_categories()
    return [CategoryRef.model_validate(c) for c in categories]


@router.get("/profile/{auth_user_id}", response_model=ProfileOut)
async def get_profile(
    auth_user_id: str,
    current_user: CurrentUserDep,
    session: SessionDep,
):
    """Profile for an identity-provider user id.

    Students may only read their own profile.
    """
    if not current_user.is_admin and auth_user_id != current_user.auth_user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cannot read another user's profile",
        )

    user = await ComplaintService(session).get_profile(auth_user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Profile not found",
        )
    return ProfileOut.model_validate(user)
