import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from crm.database import get_db
from crm.middleware.auth import get_current_user
from crm.middleware.authorization import ADMIN, EDITORS, require_roles
from crm.models.company import Company
from crm.models.contact import Contact
from crm.models.equipment import Equipment
from crm.models.project import Project
from crm.models.sales_opportunity import SalesOpportunity
from crm.schemas.common import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    MessageResponse,
    PaginatedResponse,
    build_pagination,
    iso,
    update_values,
)
from crm.schemas.company import (
    CompanyCreate,
    CompanyDetailResponse,
    CompanyResponse,
    CompanyUpdate,
)
from crm.services.audit_service import (
    compute_changes,
    record_changes,
    record_create,
    record_delete,
)

logger = structlog.get_logger()
router = APIRouter()

ENTITY_TYPE = "Company"


def _to_response(c: Company) -> CompanyResponse:
    return CompanyResponse(
        id=str(c.id),
        name=c.name,
        postal_code=c.postal_code,
        address=c.address,
        phone=c.phone,
        email=c.email,
        industry_type=c.industry_type,
        billing_flag=bool(c.billing_flag),
        notes=c.notes,
        created_at=iso(c.created_at),
        updated_at=iso(c.updated_at),
    )


async def _get_company(db: AsyncSession, company_id: uuid.UUID) -> Company:
    result = await db.execute(select(Company).where(Company.id == company_id))
    company = result.scalar_one_or_none()
    if not company:
        raise HTTPException(status_code=404, detail="Company not found")
    return company


async def _count(db: AsyncSession, column, company_id: uuid.UUID) -> int:
    return (await db.execute(select(func.count()).where(column == company_id))).scalar() or 0


@router.get("", response_model=PaginatedResponse[CompanyResponse])
async def list_companies(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    search: str = Query(None),
    industry_type: str = Query(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    q = select(Company)
    count_q = select(func.count(Company.id))

    if search:
        pattern = f"%{search}%"
        cond = or_(
            Company.name.ilike(pattern),
            Company.address.ilike(pattern),
            Company.email.ilike(pattern),
        )
        q = q.where(cond)
        count_q = count_q.where(cond)
    if industry_type:
        q = q.where(Company.industry_type == industry_type)
        count_q = count_q.where(Company.industry_type == industry_type)

    total = (await db.execute(count_q)).scalar() or 0
    result = await db.execute(
        q.order_by(Company.updated_at.desc()).offset((page - 1) * limit).limit(limit)
    )
    items = [_to_response(c) for c in result.scalars().all()]
    return PaginatedResponse(data=items, pagination=build_pagination(page, limit, total))


@router.get("/{company_id}", response_model=CompanyDetailResponse)
async def get_company(
    company_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    company = await _get_company(db, company_id)
    return CompanyDetailResponse(
        **_to_response(company).model_dump(),
        contacts_count=await _count(db, Contact.company_id, company.id),
        sales_opportunities_count=await _count(db, SalesOpportunity.company_id, company.id),
        equipment_count=await _count(db, Equipment.company_id, company.id),
        projects_count=await _count(db, Project.company_id, company.id),
    )


@router.post("", response_model=CompanyResponse, status_code=status.HTTP_201_CREATED)
async def create_company(
    body: CompanyCreate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*EDITORS)),
    db: AsyncSession = Depends(get_db),
):
    company = Company(**body.model_dump())
    db.add(company)
    await db.flush()
    await db.refresh(company)

    await record_create(db, ENTITY_TYPE, company, user_id=current_user["user_id"])

    logger.info("company_created", company_id=str(company.id))
    return _to_response(company)


@router.patch("/{company_id}", response_model=CompanyResponse)
@router.put("/{company_id}", response_model=CompanyResponse, include_in_schema=False)
async def update_company(
    company_id: uuid.UUID,
    body: CompanyUpdate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*EDITORS)),
    db: AsyncSession = Depends(get_db),
):
    company = await _get_company(db, company_id)
    updates = update_values(body, required=("name", "billing_flag"))

    changes = compute_changes(company, updates)
    for field, value in updates.items():
        setattr(company, field, value)
    await db.flush()
    await db.refresh(company)

    await record_changes(db, ENTITY_TYPE, company.id, changes, user_id=current_user["user_id"])
    return _to_response(company)


@router.delete("/{company_id}", response_model=MessageResponse)
async def delete_company(
    company_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    company = await _get_company(db, company_id)

    # Contacts cascade; deals, equipment and projects must be removed first
    for column, label in (
        (SalesOpportunity.company_id, "sales opportunities"),
        (Equipment.company_id, "equipment"),
        (Project.company_id, "projects"),
    ):
        if await _count(db, column, company.id):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Company still has {label}",
            )

    await db.delete(company)
    await db.flush()

    await record_delete(db, ENTITY_TYPE, company_id, user_id=current_user["user_id"])

    logger.info("company_deleted", company_id=str(company_id))
    return MessageResponse(message="Company deleted")
