import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from crm.database import get_db
from crm.middleware.auth import get_current_user, user_uuid
from crm.middleware.authorization import ADMIN, EDITORS, require_roles
from crm.models.contract import Contract, ContractItem
from crm.models.quote import Quote
from crm.routes.quotes import item_response
from crm.routes.sales_opportunities import get_opportunity
from crm.schemas.common import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    MessageResponse,
    PaginatedResponse,
    build_pagination,
    iso,
    update_values,
)
from crm.schemas.contract import ContractCreate, ContractResponse, ContractUpdate
from crm.services.audit_service import (
    FieldChange,
    compute_changes,
    record_changes,
    record_create,
    record_delete,
)
from crm.services.line_item_service import (
    item_snapshot,
    items_total,
    load_items,
    replace_items,
    round_yen,
)
from crm.services.numbering_service import next_contract_number

logger = structlog.get_logger()
router = APIRouter()

ENTITY_TYPE = "Contract"


def _to_response(c: Contract, items: list) -> ContractResponse:
    return ContractResponse(
        id=str(c.id),
        sales_opportunity_id=str(c.sales_opportunity_id),
        sales_quote_id=str(c.sales_quote_id) if c.sales_quote_id else None,
        contract_number=c.contract_number,
        contract_date=c.contract_date.isoformat(),
        amount=c.amount,
        conditions=c.conditions,
        status=c.status,
        created_by_id=str(c.created_by_id) if c.created_by_id else None,
        items=[item_response(i) for i in items],
        created_at=iso(c.created_at),
        updated_at=iso(c.updated_at),
    )


async def get_contract(
    db: AsyncSession, opportunity_id: uuid.UUID, contract_id: uuid.UUID
) -> Contract:
    result = await db.execute(
        select(Contract).where(
            Contract.id == contract_id, Contract.sales_opportunity_id == opportunity_id
        )
    )
    contract = result.scalar_one_or_none()
    if not contract:
        raise HTTPException(status_code=404, detail="Contract not found")
    return contract


async def _check_quote(
    db: AsyncSession, opportunity_id: uuid.UUID, quote_id: Optional[uuid.UUID]
) -> None:
    """The accepted quote, when given, must belong to the same opportunity."""
    if quote_id is None:
        return
    result = await db.execute(select(Quote.sales_opportunity_id).where(Quote.id == quote_id))
    owner = result.scalar_one_or_none()
    if owner is None:
        raise HTTPException(status_code=404, detail="Quote not found")
    if owner != opportunity_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Quote belongs to a different sales opportunity",
        )


@router.get("/{opportunity_id}/contracts", response_model=PaginatedResponse[ContractResponse])
async def list_contracts(
    opportunity_id: uuid.UUID,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await get_opportunity(db, opportunity_id)

    count_q = select(func.count(Contract.id)).where(
        Contract.sales_opportunity_id == opportunity_id
    )
    total = (await db.execute(count_q)).scalar() or 0
    result = await db.execute(
        select(Contract)
        .where(Contract.sales_opportunity_id == opportunity_id)
        .order_by(Contract.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = [
        _to_response(c, await load_items(db, ContractItem, c.id))
        for c in result.scalars().all()
    ]
    return PaginatedResponse(data=items, pagination=build_pagination(page, limit, total))


@router.get("/{opportunity_id}/contracts/{contract_id}", response_model=ContractResponse)
async def get_contract_detail(
    opportunity_id: uuid.UUID,
    contract_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    contract = await get_contract(db, opportunity_id, contract_id)
    return _to_response(contract, await load_items(db, ContractItem, contract.id))


@router.post(
    "/{opportunity_id}/contracts",
    response_model=ContractResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_contract(
    opportunity_id: uuid.UUID,
    body: ContractCreate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*EDITORS)),
    db: AsyncSession = Depends(get_db),
):
    opportunity = await get_opportunity(db, opportunity_id)

    existing = await db.execute(
        select(Contract.id).where(Contract.sales_opportunity_id == opportunity.id)
    )
    if existing.first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A contract already exists for this sales opportunity",
        )
    await _check_quote(db, opportunity.id, body.sales_quote_id)

    amount = round_yen(body.amount) if body.amount is not None else items_total(body.items)
    contract = Contract(
        sales_opportunity_id=opportunity.id,
        sales_quote_id=body.sales_quote_id,
        contract_number=await next_contract_number(db),
        contract_date=body.contract_date,
        amount=amount,
        conditions=body.conditions,
        status=body.status,
        created_by_id=user_uuid(current_user),
    )
    db.add(contract)
    await db.flush()
    items = await replace_items(db, ContractItem, contract.id, body.items)
    await db.refresh(contract)

    await record_create(db, ENTITY_TYPE, contract, user_id=current_user["user_id"])

    logger.info(
        "contract_created",
        contract_id=str(contract.id),
        contract_number=contract.contract_number,
        items=len(items),
    )
    return _to_response(contract, items)


@router.patch("/{opportunity_id}/contracts/{contract_id}", response_model=ContractResponse)
async def update_contract(
    opportunity_id: uuid.UUID,
    contract_id: uuid.UUID,
    body: ContractUpdate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*EDITORS)),
    db: AsyncSession = Depends(get_db),
):
    contract = await get_contract(db, opportunity_id, contract_id)
    updates = update_values(body, required=("contract_date", "amount", "status", "items"))
    updates.pop("items", None)
    if "sales_quote_id" in updates:
        await _check_quote(db, opportunity_id, updates["sales_quote_id"])

    if "amount" in updates:
        updates["amount"] = round_yen(updates["amount"])
    elif body.items is not None:
        # Without an explicit amount the total follows the new items
        updates["amount"] = items_total(body.items)

    changes = compute_changes(contract, updates)
    for field, value in updates.items():
        setattr(contract, field, value)

    items = await load_items(db, ContractItem, contract.id)
    if body.items is not None:
        old_items = item_snapshot(items)
        items = await replace_items(db, ContractItem, contract.id, body.items)
        new_items = item_snapshot(items)
        if old_items != new_items:
            changes.append(FieldChange(field="items", old_value=old_items, new_value=new_items))

    await db.flush()
    await db.refresh(contract)

    await record_changes(db, ENTITY_TYPE, contract.id, changes, user_id=current_user["user_id"])
    return _to_response(contract, items)


@router.delete("/{opportunity_id}/contracts/{contract_id}", response_model=MessageResponse)
async def delete_contract(
    opportunity_id: uuid.UUID,
    contract_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    contract = await get_contract(db, opportunity_id, contract_id)
    await db.delete(contract)
    await db.flush()

    await record_delete(db, ENTITY_TYPE, contract_id, user_id=current_user["user_id"])
    return MessageResponse(message="Contract deleted")
