import uuid
from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field

WorkType = Literal["INSPECTION", "REPAIR", "MAINTENANCE", "OTHER"]
Judgment = Literal["GOOD", "CAUTION", "BAD", "REPAIR"]


class WorkRecordCreate(BaseModel):
    equipment_id: uuid.UUID
    # Defaults to the caller
    user_id: Optional[uuid.UUID] = None
    work_type: WorkType = "INSPECTION"
    inspection_date: datetime
    overall_judgment: Optional[Judgment] = None
    findings: Optional[str] = None
    summary: Optional[str] = None
    additional_notes: Optional[str] = None
    # {section: {category: {item: symbol, "<item>_defect": code}}}
    checklist_data: Optional[dict[str, Any]] = None
    photos: Optional[List[str]] = None
    document_number: Optional[str] = Field(None, max_length=100)
    installation_factory: Optional[str] = Field(None, max_length=255)


class WorkRecordUpdate(BaseModel):
    equipment_id: Optional[uuid.UUID] = None
    user_id: Optional[uuid.UUID] = None
    work_type: Optional[WorkType] = None
    inspection_date: Optional[datetime] = None
    overall_judgment: Optional[Judgment] = None
    findings: Optional[str] = None
    summary: Optional[str] = None
    additional_notes: Optional[str] = None
    checklist_data: Optional[dict[str, Any]] = None
    photos: Optional[List[str]] = None
    document_number: Optional[str] = Field(None, max_length=100)
    installation_factory: Optional[str] = Field(None, max_length=255)


class WorkRecordResponse(BaseModel):
    id: str
    equipment_id: str
    equipment_name: Optional[str] = None
    company_name: Optional[str] = None
    user_id: str
    user_name: Optional[str] = None
    work_type: str
    inspection_date: str
    overall_judgment: Optional[str] = None
    findings: Optional[str] = None
    summary: Optional[str] = None
    additional_notes: Optional[str] = None
    checklist_data: Optional[dict[str, Any]] = None
    photos: List[str] = []
    document_number: Optional[str] = None
    installation_factory: Optional[str] = None
    created_at: str
    updated_at: str

    model_config = {"from_attributes": True}
