import uuid
from datetime import date
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field

OpportunityStatus = Literal["ESTIMATING", "WON", "LOST"]


class SalesOpportunityCreate(BaseModel):
    company_id: uuid.UUID
    title: str = Field(..., min_length=1, max_length=255)
    status: OpportunityStatus = "ESTIMATING"
    estimated_amount: Optional[Decimal] = Field(None, ge=0, max_digits=14, decimal_places=2)
    crane_count: Optional[int] = Field(None, ge=0)
    crane_info: Optional[str] = None
    occurred_at: Optional[date] = None
    notes: Optional[str] = None


class SalesOpportunityUpdate(BaseModel):
    company_id: Optional[uuid.UUID] = None
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    status: Optional[OpportunityStatus] = None
    estimated_amount: Optional[Decimal] = Field(None, ge=0, max_digits=14, decimal_places=2)
    crane_count: Optional[int] = Field(None, ge=0)
    crane_info: Optional[str] = None
    occurred_at: Optional[date] = None
    notes: Optional[str] = None


class SalesOpportunityResponse(BaseModel):
    id: str
    company_id: str
    company_name: Optional[str] = None
    title: str
    status: str
    estimated_amount: Optional[float] = None
    crane_count: Optional[int] = None
    crane_info: Optional[str] = None
    occurred_at: Optional[str] = None
    notes: Optional[str] = None
    quotes_count: int = 0
    has_contract: bool = False
    created_at: str
    updated_at: str

    model_config = {"from_attributes": True}
