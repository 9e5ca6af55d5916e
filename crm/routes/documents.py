import uuid

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from crm.database import get_db
from crm.middleware.auth import get_current_user, user_uuid
from crm.middleware.authorization import EDITORS, require_roles
from crm.routes.document_templates import attachment_headers
from crm.schemas.document import (
    BulkGenerateRequest,
    GenerateContractRequest,
    GenerateQuoteRequest,
    GenerateWorkRecordDocumentRequest,
)
from crm.services.document_service import (
    GeneratedDocument,
    generate_contract_document,
    generate_quote_document,
    generate_work_record_archive,
    generate_work_record_document,
)

router = APIRouter()


def _file_response(document: GeneratedDocument) -> Response:
    return Response(
        content=document.content,
        media_type=document.mime_type,
        headers=attachment_headers(document.file_name),
    )


@router.post("/sales-opportunities/{opportunity_id}/generate-quote")
async def generate_quote(
    opportunity_id: uuid.UUID,
    body: GenerateQuoteRequest,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*EDITORS)),
    db: AsyncSession = Depends(get_db),
):
    document = await generate_quote_document(
        db, opportunity_id, body.template_id, user_uuid(current_user), quote_id=body.quote_id
    )
    return _file_response(document)


@router.post("/sales-opportunities/{opportunity_id}/generate-contract")
async def generate_contract(
    opportunity_id: uuid.UUID,
    body: GenerateContractRequest,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*EDITORS)),
    db: AsyncSession = Depends(get_db),
):
    document = await generate_contract_document(
        db, opportunity_id, body.template_id, user_uuid(current_user), contract_id=body.contract_id
    )
    return _file_response(document)


# Registered before /{record_id}/... so the literal path is never read as an id
@router.post("/work-records/bulk-generate-documents")
async def bulk_generate_work_record_documents(
    body: BulkGenerateRequest,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*EDITORS)),
    db: AsyncSession = Depends(get_db),
):
    document = await generate_work_record_archive(
        db, body.work_record_ids, body.template_id, user_uuid(current_user)
    )
    return _file_response(document)


@router.post("/work-records/{record_id}/generate-document")
async def generate_work_record(
    record_id: uuid.UUID,
    body: GenerateWorkRecordDocumentRequest,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*EDITORS)),
    db: AsyncSession = Depends(get_db),
):
    document = await generate_work_record_document(
        db, record_id, body.template_id, user_uuid(current_user)
    )
    return _file_response(document)
