from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from helpportal.auth import SessionUser, get_session_user
from helpportal.database import get_db
from helpportal.handlers.onboarding import get_onboarding_status
from helpportal.schemas.onboarding import OnboardingStatus

router = APIRouter(tags=["onboarding"])


@router.get("/onboarding/status", response_model=OnboardingStatus)
async def onboarding_status(
    user: SessionUser = Depends(get_session_user),
    db: AsyncSession = Depends(get_db),
) -> OnboardingStatus:
    """Works before a tenant exists; falls back to the user's first tenant."""
    return await get_onboarding_status(db, user.user_id, user.tenant_id)
