import uuid
from typing import Optional

from pydantic import BaseModel, Field

from crm.schemas.common import OptionalEmail


class ContactCreate(BaseModel):
    company_id: uuid.UUID
    name: str = Field(..., min_length=1, max_length=100)
    position: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=30)
    email: OptionalEmail = None
    notes: Optional[str] = None


class ContactUpdate(BaseModel):
    company_id: Optional[uuid.UUID] = None
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    position: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=30)
    email: OptionalEmail = None
    notes: Optional[str] = None


class ContactResponse(BaseModel):
    id: str
    company_id: str
    company_name: Optional[str] = None
    name: str
    position: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    notes: Optional[str] = None
    created_at: str
    updated_at: str

    model_config = {"from_attributes": True}
