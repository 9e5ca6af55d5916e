import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from crm.database import get_db
from crm.middleware.auth import get_current_user
from crm.middleware.authorization import ADMIN, EDITORS, require_roles
from crm.models.company import Company
from crm.models.equipment import Equipment
from crm.models.project import Project
from crm.schemas.common import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    MessageResponse,
    PaginatedResponse,
    build_pagination,
    iso,
    update_values,
)
from crm.schemas.equipment import EquipmentCreate, EquipmentResponse, EquipmentUpdate
from crm.services.audit_service import (
    compute_changes,
    record_changes,
    record_create,
    record_delete,
)

logger = structlog.get_logger()
router = APIRouter()

ENTITY_TYPE = "Equipment"


def _to_response(e: Equipment, company_name: Optional[str] = None) -> EquipmentResponse:
    return EquipmentResponse(
        id=str(e.id),
        company_id=str(e.company_id),
        company_name=company_name,
        project_id=str(e.project_id) if e.project_id else None,
        name=e.name,
        model=e.model,
        serial_number=e.serial_number,
        location=e.location,
        specifications=e.specifications,
        notes=e.notes,
        created_at=iso(e.created_at),
        updated_at=iso(e.updated_at),
    )


async def _get_equipment(db: AsyncSession, equipment_id: uuid.UUID):
    result = await db.execute(
        select(Equipment, Company.name)
        .join(Company, Company.id == Equipment.company_id)
        .where(Equipment.id == equipment_id)
    )
    row = result.first()
    if not row:
        raise HTTPException(status_code=404, detail="Equipment not found")
    return row


async def _check_references(db: AsyncSession, values: dict) -> None:
    if values.get("company_id") is not None:
        found = await db.execute(select(Company.id).where(Company.id == values["company_id"]))
        if not found.first():
            raise HTTPException(status_code=404, detail="Company not found")
    if values.get("project_id") is not None:
        found = await db.execute(select(Project.id).where(Project.id == values["project_id"]))
        if not found.first():
            raise HTTPException(status_code=404, detail="Project not found")


@router.get("", response_model=PaginatedResponse[EquipmentResponse])
async def list_equipment(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    search: str = Query(None),
    company_id: Optional[uuid.UUID] = Query(None),
    project_id: Optional[uuid.UUID] = Query(None),
    model: str = Query(None),
    serial_number: str = Query(None),
    location: str = Query(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    filters = []
    if search:
        pattern = f"%{search}%"
        filters.append(
            or_(
                Equipment.name.ilike(pattern),
                Equipment.model.ilike(pattern),
                Equipment.serial_number.ilike(pattern),
                Equipment.location.ilike(pattern),
                Company.name.ilike(pattern),
            )
        )
    if company_id:
        filters.append(Equipment.company_id == company_id)
    if project_id:
        filters.append(Equipment.project_id == project_id)
    if model:
        filters.append(Equipment.model.ilike(f"%{model}%"))
    if serial_number:
        filters.append(Equipment.serial_number.ilike(f"%{serial_number}%"))
    if location:
        filters.append(Equipment.location.ilike(f"%{location}%"))

    count_q = (
        select(func.count(Equipment.id))
        .select_from(Equipment)
        .join(Company, Company.id == Equipment.company_id)
        .where(*filters)
    )
    total = (await db.execute(count_q)).scalar() or 0
    result = await db.execute(
        select(Equipment, Company.name)
        .join(Company, Company.id == Equipment.company_id)
        .where(*filters)
        .order_by(Equipment.updated_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = [_to_response(e, name) for e, name in result.all()]
    return PaginatedResponse(data=items, pagination=build_pagination(page, limit, total))


@router.get("/{equipment_id}", response_model=EquipmentResponse)
async def get_equipment(
    equipment_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return _to_response(*await _get_equipment(db, equipment_id))


@router.post("", response_model=EquipmentResponse, status_code=status.HTTP_201_CREATED)
async def create_equipment(
    body: EquipmentCreate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*EDITORS)),
    db: AsyncSession = Depends(get_db),
):
    values = body.model_dump()
    await _check_references(db, values)

    equipment = Equipment(**values)
    db.add(equipment)
    await db.flush()
    await db.refresh(equipment)

    await record_create(db, ENTITY_TYPE, equipment, user_id=current_user["user_id"])

    logger.info("equipment_created", equipment_id=str(equipment.id))
    return _to_response(*await _get_equipment(db, equipment.id))


@router.patch("/{equipment_id}", response_model=EquipmentResponse)
async def update_equipment(
    equipment_id: uuid.UUID,
    body: EquipmentUpdate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*EDITORS)),
    db: AsyncSession = Depends(get_db),
):
    equipment, _ = await _get_equipment(db, equipment_id)
    updates = update_values(body, required=("company_id", "name"))
    await _check_references(db, updates)

    changes = compute_changes(equipment, updates)
    for field, value in updates.items():
        setattr(equipment, field, value)
    await db.flush()
    await db.refresh(equipment)

    await record_changes(
        db, ENTITY_TYPE, equipment.id, changes, user_id=current_user["user_id"]
    )
    return _to_response(*await _get_equipment(db, equipment.id))


@router.delete("/{equipment_id}", response_model=MessageResponse)
async def delete_equipment(
    equipment_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    equipment, _ = await _get_equipment(db, equipment_id)
    # Work records of the equipment cascade
    await db.delete(equipment)
    await db.flush()

    await record_delete(db, ENTITY_TYPE, equipment_id, user_id=current_user["user_id"])
    return MessageResponse(message="Equipment deleted")
