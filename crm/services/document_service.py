"""
Document generation: loads the entity graph and template, builds the
placeholder dictionary and renders it off the event loop.
"""

import asyncio
import io
import uuid
import zipfile
from dataclasses import dataclass
from typing import Optional, Sequence

from fastapi import HTTPException
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import undefer
import structlog

from crm.models.company import Company
from crm.models.contract import Contract, ContractItem
from crm.models.document_template import DocumentTemplate
from crm.models.equipment import Equipment
from crm.models.inspection_record import InspectionRecord
from crm.models.project import Project
from crm.models.quote import Quote, QuoteItem
from crm.models.sales_opportunity import SalesOpportunity
from crm.models.user import User
from crm.services.document_renderer import extension_for, render_document
from crm.services.errors import TemplateRenderError
from crm.services.line_item_service import load_items
from crm.services.template_data import (
    BULK_ARCHIVE_NAME,
    build_contract_template_data,
    build_quote_template_data,
    build_work_record_template_data,
    contract_file_name,
    quote_file_name,
    work_record_file_name,
)

logger = structlog.get_logger()

ZIP_MIME_TYPE = "application/zip"


@dataclass
class GeneratedDocument:
    content: bytes
    file_name: str
    mime_type: str


async def _get_or_404(db: AsyncSession, model, entity_id, label: str):
    if entity_id is None:
        return None
    entity = await db.get(model, entity_id)
    if entity is None:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return entity


async def get_usable_template(
    db: AsyncSession, template_id: uuid.UUID, template_type: str, user_id: uuid.UUID
) -> DocumentTemplate:
    """Active template of ``template_type`` owned by the caller or marked default."""
    result = await db.execute(
        select(DocumentTemplate)
        .options(undefer(DocumentTemplate.file_data))
        .where(
            DocumentTemplate.id == template_id,
            DocumentTemplate.template_type == template_type,
            DocumentTemplate.is_active == True,  # noqa: E712
            or_(DocumentTemplate.user_id == user_id, DocumentTemplate.is_default == True),  # noqa: E712
        )
    )
    template = result.scalar_one_or_none()
    if template is None:
        raise HTTPException(status_code=404, detail="Template not found")
    return template


async def _render(template: DocumentTemplate, data: dict) -> bytes:
    return await asyncio.to_thread(render_document, template.mime_type, template.file_data, data)


async def _opportunity_context(db: AsyncSession, opportunity_id: uuid.UUID):
    opportunity = await _get_or_404(db, SalesOpportunity, opportunity_id, "Sales opportunity")
    company = await db.get(Company, opportunity.company_id)
    project = (
        await db.execute(select(Project).where(Project.sales_opportunity_id == opportunity.id))
    ).scalar_one_or_none()
    return opportunity, company, project


async def generate_quote_document(
    db: AsyncSession,
    opportunity_id: uuid.UUID,
    template_id: uuid.UUID,
    user_id: uuid.UUID,
    quote_id: Optional[uuid.UUID] = None,
) -> GeneratedDocument:
    opportunity, company, project = await _opportunity_context(db, opportunity_id)
    template = await get_usable_template(db, template_id, "QUOTE", user_id)

    quote = await _get_or_404(db, Quote, quote_id, "Quote")
    if quote is not None and quote.sales_opportunity_id != opportunity.id:
        raise HTTPException(status_code=404, detail="Quote not found")
    items = await load_items(db, QuoteItem, quote.id) if quote else []

    quote_count = (
        await db.execute(
            select(func.count(Quote.id)).where(Quote.sales_opportunity_id == opportunity.id)
        )
    ).scalar() or 0
    contract = (
        await db.execute(select(Contract).where(Contract.sales_opportunity_id == opportunity.id))
    ).scalar_one_or_none()

    data = build_quote_template_data(
        opportunity,
        company,
        quote=quote,
        items=items,
        quote_count=quote_count,
        contract=contract,
        project=project,
    )
    content = await _render(template, data)
    extension = extension_for(template.mime_type)

    logger.info(
        "quote_document_generated",
        opportunity_id=str(opportunity.id),
        quote_id=str(quote.id) if quote else None,
        template_id=str(template.id),
    )
    return GeneratedDocument(content, quote_file_name(company.name, extension), template.mime_type)


async def generate_contract_document(
    db: AsyncSession,
    opportunity_id: uuid.UUID,
    template_id: uuid.UUID,
    user_id: uuid.UUID,
    contract_id: Optional[uuid.UUID] = None,
) -> GeneratedDocument:
    opportunity, company, project = await _opportunity_context(db, opportunity_id)
    template = await get_usable_template(db, template_id, "CONTRACT", user_id)

    contract = await _get_or_404(db, Contract, contract_id, "Contract")
    if contract is not None and contract.sales_opportunity_id != opportunity.id:
        raise HTTPException(status_code=404, detail="Contract not found")
    items = await load_items(db, ContractItem, contract.id) if contract else []
    created_by = await db.get(User, contract.created_by_id) if contract and contract.created_by_id else None

    contract_count = (
        await db.execute(
            select(func.count(Contract.id)).where(Contract.sales_opportunity_id == opportunity.id)
        )
    ).scalar() or 0

    data = build_contract_template_data(
        opportunity,
        company,
        contract=contract,
        items=items,
        created_by=created_by,
        contract_count=contract_count,
        project=project,
    )
    content = await _render(template, data)
    extension = extension_for(template.mime_type)

    logger.info(
        "contract_document_generated",
        opportunity_id=str(opportunity.id),
        contract_id=str(contract.id) if contract else None,
        template_id=str(template.id),
    )
    return GeneratedDocument(
        content, contract_file_name(company.name, extension), template.mime_type
    )


async def _work_record_context(db: AsyncSession, record: InspectionRecord):
    equipment = await db.get(Equipment, record.equipment_id)
    company = await db.get(Company, equipment.company_id)
    project = await db.get(Project, equipment.project_id) if equipment.project_id else None
    user = await db.get(User, record.user_id)
    return equipment, company, project, user


async def _render_work_record(db: AsyncSession, record, template) -> GeneratedDocument:
    equipment, company, project, user = await _work_record_context(db, record)
    data = build_work_record_template_data(record, equipment, company, project=project, user=user)
    content = await _render(template, data)
    name = work_record_file_name(
        company.name, equipment.name, record.inspection_date, extension_for(template.mime_type)
    )
    return GeneratedDocument(content, name, template.mime_type)


async def generate_work_record_document(
    db: AsyncSession, record_id: uuid.UUID, template_id: uuid.UUID, user_id: uuid.UUID
) -> GeneratedDocument:
    record = await _get_or_404(db, InspectionRecord, record_id, "Work record")
    template = await get_usable_template(db, template_id, "REPORT", user_id)
    document = await _render_work_record(db, record, template)
    logger.info("work_record_document_generated", record_id=str(record.id))
    return document


def _unique_name(name: str, used: set) -> str:
    if name not in used:
        return name
    stem, dot, extension = name.rpartition(".")
    n = 2
    while f"{stem}_{n}{dot}{extension}" in used:
        n += 1
    return f"{stem}_{n}{dot}{extension}"


async def generate_work_record_archive(
    db: AsyncSession,
    record_ids: Sequence[uuid.UUID],
    template_id: uuid.UUID,
    user_id: uuid.UUID,
) -> GeneratedDocument:
    """
    Render one document per work record into a ZIP archive.

    Records that fail to render are skipped and logged; the request fails
    only when nothing could be rendered.
    """
    template = await get_usable_template(db, template_id, "REPORT", user_id)
    extension_for(template.mime_type)

    result = await db.execute(
        select(InspectionRecord)
        .where(InspectionRecord.id.in_(list(record_ids)))
        .order_by(InspectionRecord.inspection_date)
    )
    records = result.scalars().all()
    if not records:
        raise HTTPException(status_code=404, detail="Work records not found")

    buffer = io.BytesIO()
    used_names: set = set()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for record in records:
            try:
                document = await _render_work_record(db, record, template)
            except TemplateRenderError as e:
                logger.warning("work_record_render_skipped", record_id=str(record.id), error=str(e))
                continue
            name = _unique_name(document.file_name, used_names)
            used_names.add(name)
            archive.writestr(name, document.content)

    if not used_names:
        raise TemplateRenderError("No work record could be rendered with this template")

    logger.info(
        "work_record_archive_generated",
        requested=len(record_ids),
        rendered=len(used_names),
        template_id=str(template.id),
    )
    return GeneratedDocument(buffer.getvalue(), BULK_ARCHIVE_NAME, ZIP_MIME_TYPE)
