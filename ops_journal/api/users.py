"""API routes for the authenticated user."""

from fastapi import APIRouter

from ..core import CurrentUserDep
from ..schemas import UserRef

router = APIRouter(prefix="/me", tags=["user"])


@router.get("", response_model=UserRef)
async def get_me(current_user: CurrentUserDep):
    return current_user.user
