import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from crm.database import get_db
from crm.middleware.auth import get_current_user
from crm.middleware.authorization import ADMIN, EDITORS, require_roles
from crm.models.quote import Quote, QuoteItem
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
from crm.schemas.quote import LineItemResponse, QuoteCreate, QuoteResponse, QuoteUpdate
from crm.services.audit_service import (
    FieldChange,
    compute_changes,
    record_changes,
    record_create,
    record_delete,
)
from crm.services.line_item_service import item_snapshot, load_items, replace_items, round_yen
from crm.services.numbering_service import next_quote_number

logger = structlog.get_logger()
router = APIRouter()

ENTITY_TYPE = "Quote"


def item_response(item) -> LineItemResponse:
    return LineItemResponse(
        id=str(item.id),
        item_number=item.item_number,
        description=item.description,
        quantity=item.quantity,
        unit_price=item.unit_price,
        amount=item.amount,
        notes=item.notes,
    )


def _to_response(q: Quote, items: list) -> QuoteResponse:
    return QuoteResponse(
        id=str(q.id),
        sales_opportunity_id=str(q.sales_opportunity_id),
        quote_number=q.quote_number,
        amount=q.amount,
        conditions=q.conditions,
        status=q.status,
        valid_until=q.valid_until.isoformat() if q.valid_until else None,
        notes=q.notes,
        items=[item_response(i) for i in items],
        created_at=iso(q.created_at),
        updated_at=iso(q.updated_at),
    )


async def get_quote(db: AsyncSession, opportunity_id: uuid.UUID, quote_id: uuid.UUID) -> Quote:
    result = await db.execute(
        select(Quote).where(Quote.id == quote_id, Quote.sales_opportunity_id == opportunity_id)
    )
    quote = result.scalar_one_or_none()
    if not quote:
        raise HTTPException(status_code=404, detail="Quote not found")
    return quote


@router.get("/{opportunity_id}/quotes", response_model=PaginatedResponse[QuoteResponse])
async def list_quotes(
    opportunity_id: uuid.UUID,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await get_opportunity(db, opportunity_id)

    count_q = select(func.count(Quote.id)).where(Quote.sales_opportunity_id == opportunity_id)
    total = (await db.execute(count_q)).scalar() or 0
    result = await db.execute(
        select(Quote)
        .where(Quote.sales_opportunity_id == opportunity_id)
        .order_by(Quote.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = [
        _to_response(q, await load_items(db, QuoteItem, q.id)) for q in result.scalars().all()
    ]
    return PaginatedResponse(data=items, pagination=build_pagination(page, limit, total))


@router.get("/{opportunity_id}/quotes/{quote_id}", response_model=QuoteResponse)
async def get_quote_detail(
    opportunity_id: uuid.UUID,
    quote_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    quote = await get_quote(db, opportunity_id, quote_id)
    return _to_response(quote, await load_items(db, QuoteItem, quote.id))


@router.post(
    "/{opportunity_id}/quotes",
    response_model=QuoteResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_quote(
    opportunity_id: uuid.UUID,
    body: QuoteCreate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*EDITORS)),
    db: AsyncSession = Depends(get_db),
):
    opportunity = await get_opportunity(db, opportunity_id)

    quote = Quote(
        sales_opportunity_id=opportunity.id,
        quote_number=await next_quote_number(db),
        amount=round_yen(body.amount),
        conditions=body.conditions,
        status=body.status,
        valid_until=body.valid_until,
        notes=body.notes,
    )
    db.add(quote)
    await db.flush()
    items = await replace_items(db, QuoteItem, quote.id, body.items)
    await db.refresh(quote)

    await record_create(db, ENTITY_TYPE, quote, user_id=current_user["user_id"])

    logger.info(
        "quote_created",
        quote_id=str(quote.id),
        quote_number=quote.quote_number,
        items=len(items),
    )
    return _to_response(quote, items)


@router.patch("/{opportunity_id}/quotes/{quote_id}", response_model=QuoteResponse)
async def update_quote(
    opportunity_id: uuid.UUID,
    quote_id: uuid.UUID,
    body: QuoteUpdate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*EDITORS)),
    db: AsyncSession = Depends(get_db),
):
    quote = await get_quote(db, opportunity_id, quote_id)
    updates = update_values(body, required=("amount", "status", "items"))
    updates.pop("items", None)
    if "amount" in updates:
        updates["amount"] = round_yen(updates["amount"])

    changes = compute_changes(quote, updates)
    for field, value in updates.items():
        setattr(quote, field, value)

    items = await load_items(db, QuoteItem, quote.id)
    if body.items is not None:
        old_items = item_snapshot(items)
        items = await replace_items(db, QuoteItem, quote.id, body.items)
        new_items = item_snapshot(items)
        if old_items != new_items:
            changes.append(FieldChange(field="items", old_value=old_items, new_value=new_items))

    await db.flush()
    await db.refresh(quote)

    await record_changes(db, ENTITY_TYPE, quote.id, changes, user_id=current_user["user_id"])
    return _to_response(quote, items)


@router.delete("/{opportunity_id}/quotes/{quote_id}", response_model=MessageResponse)
async def delete_quote(
    opportunity_id: uuid.UUID,
    quote_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    quote = await get_quote(db, opportunity_id, quote_id)
    await db.delete(quote)
    await db.flush()

    await record_delete(db, ENTITY_TYPE, quote_id, user_id=current_user["user_id"])
    return MessageResponse(message="Quote deleted")
