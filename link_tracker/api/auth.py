"""Authentication API routes.

Sign-in is handled by the identity provider in front of this service; the
dev-login endpoint issues tokens for local development and tooling only.
"""

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, EmailStr
from sqlalchemy import select

from ..core import CurrentUserDep, SessionDep, allowed_actions, get_settings
from ..core.security import create_access_token
from ..models import Profile

router = APIRouter(prefix="/auth", tags=["authentication"])


# =============================================================================
# REQUEST/RESPONSE SCHEMAS
# =============================================================================


class DevLoginRequest(BaseModel):
    """Dev login request - just email (no password check)."""
    email: EmailStr


class TokenResponse(BaseModel):
    """Token response after successful login."""
    access_token: str
    token_type: str = "bearer"
    user_id: str
    user_name: str
    role: str


class MeResponse(BaseModel):
    """The signed-in profile and what its role may do."""
    id: str
    full_name: str
    email: str | None
    role: str
    providers: list[str]
    capabilities: list[str]


# =============================================================================
# ENDPOINTS
# =============================================================================


@router.post("/dev-login", response_model=TokenResponse)
async def dev_login(
    request: DevLoginRequest,
    session: SessionDep,
):
    """Development login - issues a token for an existing profile by email."""
    if get_settings().environment == "production":
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Not found",
        )

    result = await session.execute(select(Profile).where(Profile.email == request.email))
    profile = result.scalar_one_or_none()

    if not profile:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown profile",
        )

    token = create_access_token(profile_id=profile.id, role=profile.role.value)

    return TokenResponse(
        access_token=token,
        user_id=str(profile.id),
        user_name=profile.full_name,
        role=profile.role.value,
    )


@router.get("/me", response_model=MeResponse)
async def get_me(current_user: CurrentUserDep):
    """Get the current profile."""
    profile = current_user.profile
    return MeResponse(
        id=str(profile.id),
        full_name=profile.full_name,
        email=profile.email,
        role=profile.role.value,
        providers=profile.providers or [],
        capabilities=[action.value for action in allowed_actions(profile.role)],
    )
