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
from crm.models.project import Project
from crm.models.sales_opportunity import SalesOpportunity
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
from crm.schemas.project import ProjectCreate, ProjectResponse, ProjectStatus, ProjectUpdate
from crm.services.audit_service import (
    compute_changes,
    record_changes,
    record_create,
    record_delete,
)

logger = structlog.get_logger()
router = APIRouter()

ENTITY_TYPE = "Project"


def _to_response(p: Project, company_name: Optional[str] = None) -> ProjectResponse:
    return ProjectResponse(
        id=str(p.id),
        company_id=str(p.company_id),
        company_name=company_name,
        sales_opportunity_id=str(p.sales_opportunity_id) if p.sales_opportunity_id else None,
        assigned_user_id=str(p.assigned_user_id) if p.assigned_user_id else None,
        title=p.title,
        status=p.status,
        start_date=p.start_date.isoformat() if p.start_date else None,
        end_date=p.end_date.isoformat() if p.end_date else None,
        amount=float(p.amount) if p.amount is not None else None,
        notes=p.notes,
        created_at=iso(p.created_at),
        updated_at=iso(p.updated_at),
    )


async def _get_project(db: AsyncSession, project_id: uuid.UUID):
    result = await db.execute(
        select(Project, Company.name)
        .join(Company, Company.id == Project.company_id)
        .where(Project.id == project_id)
    )
    row = result.first()
    if not row:
        raise HTTPException(status_code=404, detail="Project not found")
    return row


async def _check_references(db: AsyncSession, values: dict, project_id=None) -> None:
    if values.get("company_id") is not None:
        found = await db.execute(select(Company.id).where(Company.id == values["company_id"]))
        if not found.first():
            raise HTTPException(status_code=404, detail="Company not found")
    if values.get("assigned_user_id") is not None:
        found = await db.execute(select(User.id).where(User.id == values["assigned_user_id"]))
        if not found.first():
            raise HTTPException(status_code=404, detail="User not found")
    if values.get("sales_opportunity_id") is not None:
        opportunity_id = values["sales_opportunity_id"]
        found = await db.execute(
            select(SalesOpportunity.id).where(SalesOpportunity.id == opportunity_id)
        )
        if not found.first():
            raise HTTPException(status_code=404, detail="Sales opportunity not found")
        # One project per opportunity
        taken = select(Project.id).where(Project.sales_opportunity_id == opportunity_id)
        if project_id is not None:
            taken = taken.where(Project.id != project_id)
        if (await db.execute(taken)).first():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="A project already exists for this sales opportunity",
            )


@router.get("", response_model=PaginatedResponse[ProjectResponse])
async def list_projects(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    search: str = Query(None),
    project_status: Optional[ProjectStatus] = Query(None, alias="status"),
    company_id: Optional[uuid.UUID] = Query(None),
    assigned_user_id: Optional[uuid.UUID] = Query(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    filters = []
    if search:
        pattern = f"%{search}%"
        filters.append(
            or_(
                Project.title.ilike(pattern),
                Project.notes.ilike(pattern),
                Company.name.ilike(pattern),
            )
        )
    if project_status:
        filters.append(Project.status == project_status)
    if company_id:
        filters.append(Project.company_id == company_id)
    if assigned_user_id:
        filters.append(Project.assigned_user_id == assigned_user_id)

    count_q = (
        select(func.count(Project.id))
        .select_from(Project)
        .join(Company, Company.id == Project.company_id)
        .where(*filters)
    )
    total = (await db.execute(count_q)).scalar() or 0
    result = await db.execute(
        select(Project, Company.name)
        .join(Company, Company.id == Project.company_id)
        .where(*filters)
        .order_by(Project.updated_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = [_to_response(p, name) for p, name in result.all()]
    return PaginatedResponse(data=items, pagination=build_pagination(page, limit, total))


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return _to_response(*await _get_project(db, project_id))


@router.post("", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def create_project(
    body: ProjectCreate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*EDITORS)),
    db: AsyncSession = Depends(get_db),
):
    values = body.model_dump()
    await _check_references(db, values)

    project = Project(**values)
    db.add(project)
    await db.flush()
    await db.refresh(project)

    await record_create(db, ENTITY_TYPE, project, user_id=current_user["user_id"])

    logger.info("project_created", project_id=str(project.id))
    return _to_response(*await _get_project(db, project.id))


@router.patch("/{project_id}", response_model=ProjectResponse)
async def update_project(
    project_id: uuid.UUID,
    body: ProjectUpdate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*EDITORS)),
    db: AsyncSession = Depends(get_db),
):
    project, _ = await _get_project(db, project_id)
    updates = update_values(body, required=("company_id", "title", "status"))
    await _check_references(db, updates, project_id=project.id)

    start = updates.get("start_date", project.start_date)
    end = updates.get("end_date", project.end_date)
    if start and end and end < start:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="end_date must not be before start_date",
        )

    changes = compute_changes(project, updates)
    for field, value in updates.items():
        setattr(project, field, value)
    await db.flush()
    await db.refresh(project)

    await record_changes(db, ENTITY_TYPE, project.id, changes, user_id=current_user["user_id"])
    return _to_response(*await _get_project(db, project.id))


@router.delete("/{project_id}", response_model=MessageResponse)
async def delete_project(
    project_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    project, _ = await _get_project(db, project_id)
    # Equipment assigned to the project is detached, not deleted
    await db.delete(project)
    await db.flush()

    await record_delete(db, ENTITY_TYPE, project_id, user_id=current_user["user_id"])
    return MessageResponse(message="Project deleted")
