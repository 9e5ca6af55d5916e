import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from crm.database import get_db
from crm.middleware.auth import get_current_user, user_uuid
from crm.middleware.authorization import ADMIN, require_roles
from crm.models.user import User
from crm.schemas.auth import UserCreateRequest, UserResponse, UserUpdateRequest
from crm.schemas.common import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    MessageResponse,
    PaginatedResponse,
    build_pagination,
    iso,
    update_values,
)
from crm.services.auth_service import hash_password

logger = structlog.get_logger()
router = APIRouter()


def _to_response(u: User) -> UserResponse:
    return UserResponse(
        id=str(u.id),
        email=u.email,
        name=u.name,
        phone=u.phone,
        role=u.role,
        is_active=u.is_active,
        last_login_at=u.last_login_at.isoformat() if u.last_login_at else None,
        created_at=iso(u.created_at),
    )


async def _get_user(db: AsyncSession, user_id: uuid.UUID) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


async def _ensure_email_free(db: AsyncSession, email: str, exclude_id=None) -> None:
    q = select(User.id).where(func.lower(User.email) == email.lower())
    if exclude_id is not None:
        q = q.where(User.id != exclude_id)
    if (await db.execute(q)).first():
        raise HTTPException(status_code=409, detail="Email already registered")


@router.get("", response_model=PaginatedResponse[UserResponse])
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    search: str = Query(None),
    role: str = Query(None),
    is_active: bool = Query(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    q = select(User)
    count_q = select(func.count(User.id))
    if search:
        pattern = f"%{search}%"
        cond = or_(User.name.ilike(pattern), User.email.ilike(pattern))
        q = q.where(cond)
        count_q = count_q.where(cond)
    if role:
        q = q.where(User.role == role)
        count_q = count_q.where(User.role == role)
    if is_active is not None:
        q = q.where(User.is_active == is_active)
        count_q = count_q.where(User.is_active == is_active)

    total = (await db.execute(count_q)).scalar() or 0
    result = await db.execute(q.order_by(User.email).offset((page - 1) * limit).limit(limit))
    items = [_to_response(u) for u in result.scalars().all()]
    return PaginatedResponse(data=items, pagination=build_pagination(page, limit, total))


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return _to_response(await _get_user(db, user_id))


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    body: UserCreateRequest,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    await _ensure_email_free(db, body.email)

    user = User(
        email=body.email,
        password_hash=hash_password(body.password),
        name=body.name,
        phone=body.phone,
        role=body.role,
        is_active=True,
    )
    db.add(user)
    await db.flush()
    await db.refresh(user)

    logger.info("user_created", user_id=str(user.id), role=user.role, by=current_user["user_id"])
    return _to_response(user)


@router.patch("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: uuid.UUID,
    body: UserUpdateRequest,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    user = await _get_user(db, user_id)
    updates = update_values(body, required=("email", "role", "is_active"))

    if "email" in updates:
        await _ensure_email_free(db, updates["email"], exclude_id=user.id)
    password = updates.pop("password", None)
    if password:
        user.password_hash = hash_password(password)

    for field, value in updates.items():
        setattr(user, field, value)

    await db.flush()
    await db.refresh(user)
    logger.info("user_updated", user_id=str(user.id), fields=sorted(updates))
    return _to_response(user)


@router.delete("/{user_id}", response_model=MessageResponse)
async def delete_user(
    user_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    if user_id == user_uuid(current_user):
        raise HTTPException(status_code=400, detail="You cannot delete your own account")

    user = await _get_user(db, user_id)
    await db.delete(user)
    await db.flush()

    logger.info("user_deleted", user_id=str(user_id), by=current_user["user_id"])
    return MessageResponse(message="User deleted")
