import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from crm.database import get_db
from crm.middleware.auth import get_current_user
from crm.middleware.authorization import ADMIN, EDITORS, require_roles
from crm.models.company import Company
from crm.models.contact import Contact
from crm.schemas.common import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    MessageResponse,
    PaginatedResponse,
    build_pagination,
    iso,
    update_values,
)
from crm.schemas.contact import ContactCreate, ContactResponse, ContactUpdate
from crm.services.audit_service import (
    compute_changes,
    record_changes,
    record_create,
    record_delete,
)

logger = structlog.get_logger()
router = APIRouter()

ENTITY_TYPE = "Contact"


def _to_response(c: Contact, company_name: Optional[str] = None) -> ContactResponse:
    return ContactResponse(
        id=str(c.id),
        company_id=str(c.company_id),
        company_name=company_name,
        name=c.name,
        position=c.position,
        phone=c.phone,
        email=c.email,
        notes=c.notes,
        created_at=iso(c.created_at),
        updated_at=iso(c.updated_at),
    )


async def _get_contact(db: AsyncSession, contact_id: uuid.UUID):
    result = await db.execute(
        select(Contact, Company.name)
        .join(Company, Company.id == Contact.company_id)
        .where(Contact.id == contact_id)
    )
    row = result.first()
    if not row:
        raise HTTPException(status_code=404, detail="Contact not found")
    return row


async def _ensure_company(db: AsyncSession, company_id: uuid.UUID) -> None:
    if not (await db.execute(select(Company.id).where(Company.id == company_id))).first():
        raise HTTPException(status_code=404, detail="Company not found")


@router.get("", response_model=PaginatedResponse[ContactResponse])
async def list_contacts(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    search: str = Query(None),
    company_id: Optional[uuid.UUID] = Query(None),
    position: str = Query(None),
    phone: str = Query(None),
    email: str = Query(None),
    updated_after: Optional[datetime] = Query(None),
    updated_before: Optional[datetime] = Query(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    filters = []
    if search:
        pattern = f"%{search}%"
        filters.append(
            or_(
                Contact.name.ilike(pattern),
                Contact.position.ilike(pattern),
                Contact.email.ilike(pattern),
                Contact.notes.ilike(pattern),
                Company.name.ilike(pattern),
            )
        )
    if company_id:
        filters.append(Contact.company_id == company_id)
    if position:
        filters.append(Contact.position.ilike(f"%{position}%"))
    if phone:
        filters.append(Contact.phone.ilike(f"%{phone}%"))
    if email:
        filters.append(Contact.email.ilike(f"%{email}%"))
    if updated_after:
        filters.append(Contact.updated_at >= updated_after)
    if updated_before:
        filters.append(Contact.updated_at <= updated_before)

    base = select(Contact, Company.name).join(Company, Company.id == Contact.company_id)
    count_q = (
        select(func.count(Contact.id))
        .select_from(Contact)
        .join(Company, Company.id == Contact.company_id)
        .where(*filters)
    )

    total = (await db.execute(count_q)).scalar() or 0
    result = await db.execute(
        base.where(*filters)
        .order_by(Contact.updated_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = [_to_response(contact, name) for contact, name in result.all()]
    return PaginatedResponse(data=items, pagination=build_pagination(page, limit, total))


@router.get("/{contact_id}", response_model=ContactResponse)
async def get_contact(
    contact_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    contact, company_name = await _get_contact(db, contact_id)
    return _to_response(contact, company_name)


@router.post("", response_model=ContactResponse, status_code=status.HTTP_201_CREATED)
async def create_contact(
    body: ContactCreate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*EDITORS)),
    db: AsyncSession = Depends(get_db),
):
    await _ensure_company(db, body.company_id)

    contact = Contact(**body.model_dump())
    db.add(contact)
    await db.flush()
    await db.refresh(contact)

    await record_create(db, ENTITY_TYPE, contact, user_id=current_user["user_id"])
    contact, company_name = await _get_contact(db, contact.id)
    return _to_response(contact, company_name)


@router.patch("/{contact_id}", response_model=ContactResponse)
async def update_contact(
    contact_id: uuid.UUID,
    body: ContactUpdate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*EDITORS)),
    db: AsyncSession = Depends(get_db),
):
    contact, _ = await _get_contact(db, contact_id)
    updates = update_values(body, required=("company_id", "name"))
    if "company_id" in updates:
        await _ensure_company(db, updates["company_id"])

    changes = compute_changes(contact, updates)
    for field, value in updates.items():
        setattr(contact, field, value)
    await db.flush()
    await db.refresh(contact)

    await record_changes(db, ENTITY_TYPE, contact.id, changes, user_id=current_user["user_id"])
    contact, company_name = await _get_contact(db, contact.id)
    return _to_response(contact, company_name)


@router.delete("/{contact_id}", response_model=MessageResponse)
async def delete_contact(
    contact_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    contact, _ = await _get_contact(db, contact_id)
    await db.delete(contact)
    await db.flush()

    await record_delete(db, ENTITY_TYPE, contact_id, user_id=current_user["user_id"])
    return MessageResponse(message="Contact deleted")
