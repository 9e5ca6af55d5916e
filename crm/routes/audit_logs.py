from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from crm.database import get_db
from crm.middleware.auth import get_current_user
from crm.models.audit_log import AuditLog
from crm.models.user import User
from crm.schemas.audit_log import AuditActor, AuditLogResponse, FieldChangeResponse
from crm.schemas.common import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, PaginatedResponse, build_pagination, iso
from crm.services.audit_service import decode_value
from crm.services.labels import format_value, get_field_display_name

router = APIRouter()


def _change_response(entity_type: str, change: dict) -> FieldChangeResponse:
    field = change.get("field", "")
    return FieldChangeResponse(
        field=field,
        field_label=get_field_display_name(entity_type, field),
        old_value=change.get("old_value"),
        new_value=change.get("new_value"),
        old_display=format_value(change.get("old_value"), field),
        new_display=format_value(change.get("new_value"), field),
    )


def _to_response(log: AuditLog, user: Optional[User]) -> AuditLogResponse:
    changes = None
    if log.changes:
        changes = [_change_response(log.entity_type, c) for c in log.changes]
    return AuditLogResponse(
        id=str(log.id),
        entity_type=log.entity_type,
        entity_id=log.entity_id,
        action=log.action,
        field=log.field,
        field_label=get_field_display_name(log.entity_type, log.field) if log.field else None,
        old_value=decode_value(log.old_value),
        new_value=decode_value(log.new_value),
        multiple_changes=changes,
        user=AuditActor(id=str(user.id), name=user.name, email=user.email) if user else None,
        created_at=iso(log.created_at),
    )


@router.get("", response_model=PaginatedResponse[AuditLogResponse])
async def list_audit_logs(
    entity_type: str = Query(..., min_length=1),
    entity_id: str = Query(..., min_length=1),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """History of one entity, newest first."""
    filters = (AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)

    total = (await db.execute(select(func.count(AuditLog.id)).where(*filters))).scalar() or 0
    result = await db.execute(
        select(AuditLog, User)
        .outerjoin(User, User.id == AuditLog.user_id)
        .where(*filters)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = [_to_response(log, user) for log, user in result.all()]
    return PaginatedResponse(data=items, pagination=build_pagination(page, limit, total))
