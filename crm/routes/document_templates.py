import uuid
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Response, UploadFile, status
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import undefer
import structlog

from crm.config import settings
from crm.database import get_db
from crm.middleware.auth import get_current_user, user_uuid
from crm.middleware.authorization import ADMIN, EDITORS, require_roles
from crm.models.document_template import DocumentTemplate
from crm.schemas.common import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    MessageResponse,
    PaginatedResponse,
    build_pagination,
    iso,
)
from crm.schemas.document import DocumentTemplateResponse, TemplateType
from crm.services.document_renderer import (
    DOCX_MIME_TYPE,
    SUPPORTED_MIME_TYPES,
    XLSX_MIME_TYPE,
    extension_for,
)

logger = structlog.get_logger()
router = APIRouter()

_MIME_BY_EXTENSION = {"docx": DOCX_MIME_TYPE, "xlsx": XLSX_MIME_TYPE}


def _to_response(t: DocumentTemplate) -> DocumentTemplateResponse:
    return DocumentTemplateResponse(
        id=str(t.id),
        user_id=str(t.user_id) if t.user_id else None,
        template_type=t.template_type,
        name=t.name,
        description=t.description,
        file_size=t.file_size,
        mime_type=t.mime_type,
        is_active=t.is_active,
        is_default=t.is_default,
        created_at=iso(t.created_at),
        updated_at=iso(t.updated_at),
    )


def _visible_to(user_id: uuid.UUID):
    return (
        DocumentTemplate.is_active == True,  # noqa: E712
        or_(DocumentTemplate.user_id == user_id, DocumentTemplate.is_default == True),  # noqa: E712
    )


def _resolve_mime_type(file: UploadFile) -> str:
    """Browsers often send a generic content type for Office files; fall back to the extension."""
    if file.content_type in SUPPORTED_MIME_TYPES:
        return file.content_type
    name = file.filename or ""
    extension = name.rsplit(".", 1)[-1].lower() if "." in name else ""
    mime_type = _MIME_BY_EXTENSION.get(extension, file.content_type or "")
    # Raises UnsupportedTemplateTypeError for anything but docx/xlsx
    extension_for(mime_type)
    return mime_type


def attachment_headers(file_name: str) -> dict:
    return {"Content-Disposition": f"attachment; filename*=UTF-8''{quote(file_name)}"}


async def _get_template(
    db: AsyncSession, template_id: uuid.UUID, user_id: uuid.UUID, with_data: bool = False
) -> DocumentTemplate:
    q = select(DocumentTemplate).where(DocumentTemplate.id == template_id, *_visible_to(user_id))
    if with_data:
        q = q.options(undefer(DocumentTemplate.file_data))
    template = (await db.execute(q)).scalar_one_or_none()
    if not template:
        raise HTTPException(status_code=404, detail="Template not found")
    return template


@router.get("", response_model=PaginatedResponse[DocumentTemplateResponse])
async def list_templates(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    template_type: Optional[TemplateType] = Query(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    filters = list(_visible_to(user_uuid(current_user)))
    if template_type:
        filters.append(DocumentTemplate.template_type == template_type)

    total = (
        await db.execute(select(func.count(DocumentTemplate.id)).where(*filters))
    ).scalar() or 0
    result = await db.execute(
        select(DocumentTemplate)
        .where(*filters)
        .order_by(DocumentTemplate.is_default.desc(), DocumentTemplate.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = [_to_response(t) for t in result.scalars().all()]
    return PaginatedResponse(data=items, pagination=build_pagination(page, limit, total))


@router.post("", response_model=DocumentTemplateResponse, status_code=status.HTTP_201_CREATED)
async def upload_template(
    name: str = Form(..., min_length=1, max_length=255),
    template_type: TemplateType = Form(...),
    description: Optional[str] = Form(None),
    is_default: bool = Form(False),
    file: UploadFile = File(...),
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*EDITORS)),
    db: AsyncSession = Depends(get_db),
):
    mime_type = _resolve_mime_type(file)
    file_bytes = await file.read()
    if not file_bytes:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Template file is empty")
    if len(file_bytes) > settings.TEMPLATE_MAX_BYTES:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File too large. Max size: {settings.TEMPLATE_MAX_BYTES // (1024 * 1024)} MB",
        )

    if is_default:
        # Only one default per template type
        await db.execute(
            update(DocumentTemplate)
            .where(
                DocumentTemplate.template_type == template_type,
                DocumentTemplate.is_default == True,  # noqa: E712
            )
            .values(is_default=False)
        )

    template = DocumentTemplate(
        user_id=user_uuid(current_user),
        template_type=template_type,
        name=name,
        description=description,
        file_data=file_bytes,
        file_size=len(file_bytes),
        mime_type=mime_type,
        is_default=is_default,
    )
    db.add(template)
    await db.flush()
    await db.refresh(template)

    logger.info(
        "template_uploaded",
        template_id=str(template.id),
        template_type=template_type,
        size_bytes=len(file_bytes),
        is_default=is_default,
    )
    return _to_response(template)


@router.get("/{template_id}")
async def download_template(
    template_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    template = await _get_template(db, template_id, user_uuid(current_user), with_data=True)
    file_name = f"{template.name}.{extension_for(template.mime_type)}"
    return Response(
        content=template.file_data,
        media_type=template.mime_type,
        headers=attachment_headers(file_name),
    )


@router.delete("/{template_id}", response_model=MessageResponse)
async def delete_template(
    template_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*EDITORS)),
    db: AsyncSession = Depends(get_db),
):
    user_id = user_uuid(current_user)
    template = await _get_template(db, template_id, user_id)
    if template.user_id != user_id and current_user["role"] != ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": {
                    "code": "INSUFFICIENT_PERMISSIONS",
                    "message": "Only an administrator can delete a shared default template",
                }
            },
        )

    template.is_active = False
    template.is_default = False
    await db.flush()

    logger.info("template_deleted", template_id=str(template.id))
    return MessageResponse(message="Template deleted")
