import uuid
from datetime import date
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator

ProjectStatus = Literal["PLANNING", "IN_PROGRESS", "ON_HOLD", "COMPLETED"]


class ProjectCreate(BaseModel):
    company_id: uuid.UUID
    sales_opportunity_id: Optional[uuid.UUID] = None
    assigned_user_id: Optional[uuid.UUID] = None
    title: str = Field(..., min_length=1, max_length=255)
    status: ProjectStatus = "PLANNING"
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    amount: Optional[Decimal] = Field(None, ge=0, max_digits=14, decimal_places=2)
    notes: Optional[str] = None

    @model_validator(mode="after")
    def check_dates(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class ProjectUpdate(BaseModel):
    company_id: Optional[uuid.UUID] = None
    sales_opportunity_id: Optional[uuid.UUID] = None
    assigned_user_id: Optional[uuid.UUID] = None
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    status: Optional[ProjectStatus] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    amount: Optional[Decimal] = Field(None, ge=0, max_digits=14, decimal_places=2)
    notes: Optional[str] = None


class ProjectResponse(BaseModel):
    id: str
    company_id: str
    company_name: Optional[str] = None
    sales_opportunity_id: Optional[str] = None
    assigned_user_id: Optional[str] = None
    title: str
    status: str
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    amount: Optional[float] = None
    notes: Optional[str] = None
    created_at: str
    updated_at: str

    model_config = {"from_attributes": True}
