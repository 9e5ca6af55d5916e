from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from crm.database import get_db
from crm.middleware.auth import get_current_user, user_uuid
from crm.models.user import User
from crm.routes.users import _to_response
from crm.schemas.auth import AccountUpdateRequest, ChangePasswordRequest, UserResponse
from crm.schemas.common import MessageResponse, update_values
from crm.services.auth_service import hash_password, verify_password

logger = structlog.get_logger()
router = APIRouter()


async def _current_account(db: AsyncSession, current_user: dict) -> User:
    result = await db.execute(
        select(User).where(User.id == user_uuid(current_user), User.is_active == True)  # noqa: E712
    )
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.get("", response_model=UserResponse)
async def get_account(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return _to_response(await _current_account(db, current_user))


@router.patch("", response_model=UserResponse)
async def update_account(
    body: AccountUpdateRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Update the caller's own profile. Role and status stay admin-managed."""
    user = await _current_account(db, current_user)
    updates = update_values(body, required=("email",))

    if "email" in updates:
        taken = await db.execute(
            select(User.id).where(
                func.lower(User.email) == updates["email"].lower(), User.id != user.id
            )
        )
        if taken.first():
            raise HTTPException(status_code=409, detail="Email already registered")

    for field, value in updates.items():
        setattr(user, field, value)

    await db.flush()
    await db.refresh(user)
    logger.info("account_updated", user_id=str(user.id), fields=sorted(updates))
    return _to_response(user)


@router.patch("/password", response_model=MessageResponse)
async def change_password(
    body: ChangePasswordRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Change the authenticated user's password."""
    user = await _current_account(db, current_user)

    if not verify_password(body.current_password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Incorrect current password",
        )

    user.password_hash = hash_password(body.new_password)
    await db.flush()

    logger.info("password_changed", user_id=str(user.id))
    return MessageResponse(message="Password changed")
