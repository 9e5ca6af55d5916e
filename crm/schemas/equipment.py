import uuid
from typing import Optional

from pydantic import BaseModel, Field


class EquipmentCreate(BaseModel):
    company_id: uuid.UUID
    project_id: Optional[uuid.UUID] = None
    name: str = Field(..., min_length=1, max_length=200)
    model: Optional[str] = Field(None, max_length=100)
    serial_number: Optional[str] = Field(None, max_length=100)
    location: Optional[str] = Field(None, max_length=255)
    specifications: Optional[str] = None
    notes: Optional[str] = None


class EquipmentUpdate(BaseModel):
    company_id: Optional[uuid.UUID] = None
    project_id: Optional[uuid.UUID] = None
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    model: Optional[str] = Field(None, max_length=100)
    serial_number: Optional[str] = Field(None, max_length=100)
    location: Optional[str] = Field(None, max_length=255)
    specifications: Optional[str] = None
    notes: Optional[str] = None


class EquipmentResponse(BaseModel):
    id: str
    company_id: str
    company_name: Optional[str] = None
    project_id: Optional[str] = None
    name: str
    model: Optional[str] = None
    serial_number: Optional[str] = None
    location: Optional[str] = None
    specifications: Optional[str] = None
    notes: Optional[str] = None
    created_at: str
    updated_at: str

    model_config = {"from_attributes": True}
