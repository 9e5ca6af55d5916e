from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from crm.config import settings
from crm.database import get_db
from crm.middleware.auth import get_current_user, user_uuid
from crm.models.user import User
from crm.routes.users import _to_response
from crm.schemas.auth import (
    LoginRequest,
    RefreshTokenRequest,
    TokenResponse,
    UserResponse,
)
from crm.services.auth_service import (
    create_access_token,
    create_refresh_token,
    verify_password,
    verify_refresh_token,
)

logger = structlog.get_logger()

router = APIRouter()


def _issue_tokens(user: User) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(
            user_id=str(user.id), role=user.role, email=user.email
        ),
        refresh_token=create_refresh_token(user_id=str(user.id)),
        token_type="Bearer",
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, db: AsyncSession = Depends(get_db)):
    """Authenticate user and return JWT tokens."""
    result = await db.execute(
        select(User).where(User.email == body.email, User.is_active == True)  # noqa: E712
    )
    user = result.scalar_one_or_none()

    if not user or not verify_password(body.password, user.password_hash):
        logger.warning("login_failed", email=body.email)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": {
                    "code": "AUTH_INVALID_CREDENTIALS",
                    "message": "Invalid email or password",
                }
            },
        )

    # naive UTC to match DateTime columns
    user.last_login_at = datetime.utcnow()

    logger.info("user_logged_in", user_id=str(user.id), role=user.role)
    return _issue_tokens(user)


@router.post("/refresh", response_model=TokenResponse)
async def refresh(body: RefreshTokenRequest, db: AsyncSession = Depends(get_db)):
    """Refresh access token using a valid refresh token."""
    try:
        payload = verify_refresh_token(body.refresh_token)
        user_id = user_uuid({"user_id": payload["sub"]})
    except Exception:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": {
                    "code": "AUTH_REFRESH_INVALID",
                    "message": "Invalid or expired refresh token",
                }
            },
        )

    result = await db.execute(
        select(User).where(User.id == user_id, User.is_active == True)  # noqa: E712
    )
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": {
                    "code": "AUTH_USER_NOT_FOUND",
                    "message": "User no longer exists or is deactivated",
                }
            },
        )

    logger.info("token_refreshed", user_id=str(user.id))
    return _issue_tokens(user)


@router.get("/me", response_model=UserResponse)
async def me(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(User).where(User.id == user_uuid(current_user)))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return _to_response(user)
