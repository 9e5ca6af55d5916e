from typing import Optional

from pydantic import BaseModel, Field

from crm.schemas.common import OptionalEmail


class CompanyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    postal_code: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = Field(None, max_length=500)
    phone: Optional[str] = Field(None, max_length=30)
    email: OptionalEmail = None
    industry_type: Optional[str] = Field(None, max_length=100)
    billing_flag: bool = False
    notes: Optional[str] = None


class CompanyUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    postal_code: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = Field(None, max_length=500)
    phone: Optional[str] = Field(None, max_length=30)
    email: OptionalEmail = None
    industry_type: Optional[str] = Field(None, max_length=100)
    billing_flag: Optional[bool] = None
    notes: Optional[str] = None


class CompanyResponse(BaseModel):
    id: str
    name: str
    postal_code: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    industry_type: Optional[str] = None
    billing_flag: bool = False
    notes: Optional[str] = None
    created_at: str
    updated_at: str

    model_config = {"from_attributes": True}


class CompanyDetailResponse(CompanyResponse):
    contacts_count: int = 0
    sales_opportunities_count: int = 0
    equipment_count: int = 0
    projects_count: int = 0
