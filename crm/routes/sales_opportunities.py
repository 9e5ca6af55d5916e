import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import exists, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from crm.database import get_db
from crm.middleware.auth import get_current_user
from crm.middleware.authorization import ADMIN, EDITORS, require_roles
from crm.models.company import Company
from crm.models.contract import Contract
from crm.models.quote import Quote
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
from crm.schemas.sales_opportunity import (
    OpportunityStatus,
    SalesOpportunityCreate,
    SalesOpportunityResponse,
    SalesOpportunityUpdate,
)
from crm.services.audit_service import (
    compute_changes,
    record_changes,
    record_create,
    record_delete,
)

logger = structlog.get_logger()
router = APIRouter()

ENTITY_TYPE = "SalesOpportunity"

_quotes_count = (
    select(func.count(Quote.id))
    .where(Quote.sales_opportunity_id == SalesOpportunity.id)
    .correlate(SalesOpportunity)
    .scalar_subquery()
)
_has_contract = exists().where(Contract.sales_opportunity_id == SalesOpportunity.id)

_DETAIL_COLUMNS = (SalesOpportunity, Company.name, _quotes_count, _has_contract)


def _to_response(
    o: SalesOpportunity, company_name=None, quotes_count: int = 0, has_contract: bool = False
) -> SalesOpportunityResponse:
    return SalesOpportunityResponse(
        id=str(o.id),
        company_id=str(o.company_id),
        company_name=company_name,
        title=o.title,
        status=o.status,
        estimated_amount=float(o.estimated_amount) if o.estimated_amount is not None else None,
        crane_count=o.crane_count,
        crane_info=o.crane_info,
        occurred_at=o.occurred_at.isoformat() if o.occurred_at else None,
        notes=o.notes,
        quotes_count=quotes_count or 0,
        has_contract=bool(has_contract),
        created_at=iso(o.created_at),
        updated_at=iso(o.updated_at),
    )


async def get_opportunity(db: AsyncSession, opportunity_id: uuid.UUID) -> SalesOpportunity:
    result = await db.execute(
        select(SalesOpportunity).where(SalesOpportunity.id == opportunity_id)
    )
    opportunity = result.scalar_one_or_none()
    if not opportunity:
        raise HTTPException(status_code=404, detail="Sales opportunity not found")
    return opportunity


async def _detail(db: AsyncSession, opportunity_id: uuid.UUID) -> SalesOpportunityResponse:
    result = await db.execute(
        select(*_DETAIL_COLUMNS)
        .join(Company, Company.id == SalesOpportunity.company_id)
        .where(SalesOpportunity.id == opportunity_id)
    )
    row = result.first()
    if not row:
        raise HTTPException(status_code=404, detail="Sales opportunity not found")
    return _to_response(*row)


async def _ensure_company(db: AsyncSession, company_id: uuid.UUID) -> None:
    if not (await db.execute(select(Company.id).where(Company.id == company_id))).first():
        raise HTTPException(status_code=404, detail="Company not found")


@router.get("", response_model=PaginatedResponse[SalesOpportunityResponse])
async def list_sales_opportunities(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    search: str = Query(None),
    opportunity_status: Optional[OpportunityStatus] = Query(None, alias="status"),
    company_id: Optional[uuid.UUID] = Query(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    filters = []
    if search:
        pattern = f"%{search}%"
        filters.append(
            or_(
                SalesOpportunity.title.ilike(pattern),
                SalesOpportunity.crane_info.ilike(pattern),
                SalesOpportunity.notes.ilike(pattern),
                Company.name.ilike(pattern),
            )
        )
    if opportunity_status:
        filters.append(SalesOpportunity.status == opportunity_status)
    if company_id:
        filters.append(SalesOpportunity.company_id == company_id)

    count_q = (
        select(func.count(SalesOpportunity.id))
        .select_from(SalesOpportunity)
        .join(Company, Company.id == SalesOpportunity.company_id)
        .where(*filters)
    )
    total = (await db.execute(count_q)).scalar() or 0

    result = await db.execute(
        select(*_DETAIL_COLUMNS)
        .join(Company, Company.id == SalesOpportunity.company_id)
        .where(*filters)
        .order_by(SalesOpportunity.updated_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = [_to_response(*row) for row in result.all()]
    return PaginatedResponse(data=items, pagination=build_pagination(page, limit, total))


@router.get("/{opportunity_id}", response_model=SalesOpportunityResponse)
async def get_sales_opportunity(
    opportunity_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await _detail(db, opportunity_id)


@router.post("", response_model=SalesOpportunityResponse, status_code=status.HTTP_201_CREATED)
async def create_sales_opportunity(
    body: SalesOpportunityCreate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*EDITORS)),
    db: AsyncSession = Depends(get_db),
):
    await _ensure_company(db, body.company_id)

    opportunity = SalesOpportunity(**body.model_dump())
    db.add(opportunity)
    await db.flush()
    await db.refresh(opportunity)

    await record_create(db, ENTITY_TYPE, opportunity, user_id=current_user["user_id"])

    logger.info("sales_opportunity_created", opportunity_id=str(opportunity.id))
    return await _detail(db, opportunity.id)


@router.patch("/{opportunity_id}", response_model=SalesOpportunityResponse)
async def update_sales_opportunity(
    opportunity_id: uuid.UUID,
    body: SalesOpportunityUpdate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*EDITORS)),
    db: AsyncSession = Depends(get_db),
):
    opportunity = await get_opportunity(db, opportunity_id)
    updates = update_values(body, required=("company_id", "title", "status"))
    if "company_id" in updates:
        await _ensure_company(db, updates["company_id"])

    changes = compute_changes(opportunity, updates)
    for field, value in updates.items():
        setattr(opportunity, field, value)
    await db.flush()
    await db.refresh(opportunity)

    await record_changes(
        db, ENTITY_TYPE, opportunity.id, changes, user_id=current_user["user_id"]
    )
    return await _detail(db, opportunity.id)


@router.delete("/{opportunity_id}", response_model=MessageResponse)
async def delete_sales_opportunity(
    opportunity_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    opportunity = await get_opportunity(db, opportunity_id)
    # Quotes and the contract cascade; a linked project is detached
    await db.delete(opportunity)
    await db.flush()

    await record_delete(db, ENTITY_TYPE, opportunity_id, user_id=current_user["user_id"])

    logger.info("sales_opportunity_deleted", opportunity_id=str(opportunity_id))
    return MessageResponse(message="Sales opportunity deleted")
