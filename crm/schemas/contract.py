import uuid
from datetime import date
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from crm.schemas.quote import LineItemIn, LineItemResponse

ContractStatus = Literal["DRAFT", "CONFIRMED", "CANCELLED"]


class ContractCreate(BaseModel):
    sales_quote_id: Optional[uuid.UUID] = None
    contract_date: date
    # Defaults to the sum of the line items
    amount: Optional[Decimal] = Field(None, ge=0)
    conditions: Optional[str] = None
    status: ContractStatus = "DRAFT"
    items: List[LineItemIn] = []


class ContractUpdate(BaseModel):
    sales_quote_id: Optional[uuid.UUID] = None
    contract_date: Optional[date] = None
    amount: Optional[Decimal] = Field(None, ge=0)
    conditions: Optional[str] = None
    status: Optional[ContractStatus] = None
    items: Optional[List[LineItemIn]] = None


class ContractResponse(BaseModel):
    id: str
    sales_opportunity_id: str
    sales_quote_id: Optional[str] = None
    contract_number: str
    contract_date: str
    amount: int
    conditions: Optional[str] = None
    status: str
    created_by_id: Optional[str] = None
    items: List[LineItemResponse] = []
    created_at: str
    updated_at: str

    model_config = {"from_attributes": True}
