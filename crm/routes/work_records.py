import json
import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from crm.database import get_db
from crm.middleware.auth import get_current_user, user_uuid
from crm.middleware.authorization import ADMIN, EDITORS, require_roles
from crm.models.company import Company
from crm.models.equipment import Equipment
from crm.models.inspection_record import InspectionRecord
from crm.models.user import User
from crm.schemas.common import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    MessageResponse,
    PaginatedResponse,
    build_pagination,
    iso,
    update_values,
)
from crm.schemas.work_record import (
    Judgment,
    WorkRecordCreate,
    WorkRecordResponse,
    WorkRecordUpdate,
    WorkType,
)
from crm.services.audit_service import (
    compute_changes,
    record_changes,
    record_create,
    record_delete,
)
from crm.services.template_data import parse_checklist

logger = structlog.get_logger()
router = APIRouter()

ENTITY_TYPE = "WorkRecord"

_COLUMNS = (InspectionRecord, Equipment.name, Company.name, User.name)


def _joined(q):
    return (
        q.join(Equipment, Equipment.id == InspectionRecord.equipment_id)
        .join(Company, Company.id == Equipment.company_id)
        .join(User, User.id == InspectionRecord.user_id)
    )


def _dump_json(value) -> Optional[str]:
    return json.dumps(value, ensure_ascii=False) if value is not None else None


def _photos(raw: Optional[str]) -> list:
    if not raw:
        return []
    try:
        photos = json.loads(raw)
    except ValueError:
        return []
    return photos if isinstance(photos, list) else []


def _to_response(r: InspectionRecord, equipment_name=None, company_name=None, user_name=None):
    return WorkRecordResponse(
        id=str(r.id),
        equipment_id=str(r.equipment_id),
        equipment_name=equipment_name,
        company_name=company_name,
        user_id=str(r.user_id),
        user_name=user_name,
        work_type=r.work_type,
        inspection_date=iso(r.inspection_date),
        overall_judgment=r.overall_judgment,
        findings=r.findings,
        summary=r.summary,
        additional_notes=r.additional_notes,
        checklist_data=parse_checklist(r.checklist_data) if r.checklist_data else None,
        photos=_photos(r.photos),
        document_number=r.document_number,
        installation_factory=r.installation_factory,
        created_at=iso(r.created_at),
        updated_at=iso(r.updated_at),
    )


async def _get_record(db: AsyncSession, record_id: uuid.UUID):
    result = await db.execute(_joined(select(*_COLUMNS)).where(InspectionRecord.id == record_id))
    row = result.first()
    if not row:
        raise HTTPException(status_code=404, detail="Work record not found")
    return row


async def _check_references(db: AsyncSession, values: dict) -> None:
    if values.get("equipment_id") is not None:
        found = await db.execute(select(Equipment.id).where(Equipment.id == values["equipment_id"]))
        if not found.first():
            raise HTTPException(status_code=404, detail="Equipment not found")
    if values.get("user_id") is not None:
        found = await db.execute(select(User.id).where(User.id == values["user_id"]))
        if not found.first():
            raise HTTPException(status_code=404, detail="User not found")


def _serialize(values: dict) -> dict:
    """checklist_data and photos are stored as JSON text."""
    for key in ("checklist_data", "photos"):
        if key in values:
            values[key] = _dump_json(values[key])
    return values


@router.get("", response_model=PaginatedResponse[WorkRecordResponse])
async def list_work_records(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    search: str = Query(None),
    equipment_id: Optional[uuid.UUID] = Query(None),
    user_id: Optional[uuid.UUID] = Query(None),
    work_type: Optional[WorkType] = Query(None),
    overall_judgment: Optional[Judgment] = Query(None),
    inspection_date_after: Optional[datetime] = Query(None),
    inspection_date_before: Optional[datetime] = Query(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    filters = []
    if search:
        pattern = f"%{search}%"
        filters.append(
            or_(
                InspectionRecord.findings.ilike(pattern),
                InspectionRecord.summary.ilike(pattern),
                InspectionRecord.additional_notes.ilike(pattern),
                Equipment.name.ilike(pattern),
                Company.name.ilike(pattern),
            )
        )
    if equipment_id:
        filters.append(InspectionRecord.equipment_id == equipment_id)
    if user_id:
        filters.append(InspectionRecord.user_id == user_id)
    if work_type:
        filters.append(InspectionRecord.work_type == work_type)
    if overall_judgment:
        filters.append(InspectionRecord.overall_judgment == overall_judgment)
    if inspection_date_after:
        filters.append(InspectionRecord.inspection_date >= inspection_date_after)
    if inspection_date_before:
        filters.append(InspectionRecord.inspection_date <= inspection_date_before)

    count_q = _joined(select(func.count(InspectionRecord.id)).select_from(InspectionRecord))
    total = (await db.execute(count_q.where(*filters))).scalar() or 0
    result = await db.execute(
        _joined(select(*_COLUMNS))
        .where(*filters)
        .order_by(InspectionRecord.inspection_date.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = [_to_response(*row) for row in result.all()]
    return PaginatedResponse(data=items, pagination=build_pagination(page, limit, total))


@router.get("/{record_id}", response_model=WorkRecordResponse)
async def get_work_record(
    record_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return _to_response(*await _get_record(db, record_id))


@router.post("", response_model=WorkRecordResponse, status_code=status.HTTP_201_CREATED)
async def create_work_record(
    body: WorkRecordCreate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*EDITORS)),
    db: AsyncSession = Depends(get_db),
):
    values = body.model_dump()
    if values["user_id"] is None:
        values["user_id"] = user_uuid(current_user)
    await _check_references(db, values)

    record = InspectionRecord(**_serialize(values))
    db.add(record)
    await db.flush()
    await db.refresh(record)

    await record_create(db, ENTITY_TYPE, record, user_id=current_user["user_id"])

    logger.info("work_record_created", record_id=str(record.id))
    return _to_response(*await _get_record(db, record.id))


@router.patch("/{record_id}", response_model=WorkRecordResponse)
async def update_work_record(
    record_id: uuid.UUID,
    body: WorkRecordUpdate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*EDITORS)),
    db: AsyncSession = Depends(get_db),
):
    record, *_ = await _get_record(db, record_id)
    updates = _serialize(
        update_values(body, required=("equipment_id", "user_id", "work_type", "inspection_date"))
    )
    await _check_references(db, updates)

    changes = compute_changes(record, updates)
    for field, value in updates.items():
        setattr(record, field, value)
    await db.flush()
    await db.refresh(record)

    await record_changes(db, ENTITY_TYPE, record.id, changes, user_id=current_user["user_id"])
    return _to_response(*await _get_record(db, record.id))


@router.delete("/{record_id}", response_model=MessageResponse)
async def delete_work_record(
    record_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    record, *_ = await _get_record(db, record_id)
    await db.delete(record)
    await db.flush()

    await record_delete(db, ENTITY_TYPE, record_id, user_id=current_user["user_id"])
    return MessageResponse(message="Work record deleted")
