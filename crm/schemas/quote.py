from datetime import date
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

QuoteStatus = Literal["DRAFT", "SENT", "ACCEPTED", "REJECTED"]


class LineItemIn(BaseModel):
    item_number: int = Field(..., gt=0)
    description: str = Field(..., min_length=1)
    quantity: Optional[int] = Field(None, ge=0)
    unit_price: Optional[int] = Field(None, ge=0)
    amount: int = Field(..., gt=0)
    notes: Optional[str] = None


class LineItemResponse(BaseModel):
    id: str
    item_number: int
    description: str
    quantity: Optional[int] = None
    unit_price: Optional[int] = None
    amount: int
    notes: Optional[str] = None

    model_config = {"from_attributes": True}


class QuoteCreate(BaseModel):
    # Accepts "12000.4" style input from the form; rounded to whole yen
    amount: Decimal = Field(..., ge=0)
    conditions: Optional[str] = None
    status: QuoteStatus = "DRAFT"
    valid_until: Optional[date] = None
    notes: Optional[str] = None
    items: List[LineItemIn] = Field(..., min_length=1)


class QuoteUpdate(BaseModel):
    amount: Optional[Decimal] = Field(None, ge=0)
    conditions: Optional[str] = None
    status: Optional[QuoteStatus] = None
    valid_until: Optional[date] = None
    notes: Optional[str] = None
    items: Optional[List[LineItemIn]] = Field(None, min_length=1)


class QuoteResponse(BaseModel):
    id: str
    sales_opportunity_id: str
    quote_number: str
    amount: int
    conditions: Optional[str] = None
    status: str
    valid_until: Optional[str] = None
    notes: Optional[str] = None
    items: List[LineItemResponse] = []
    created_at: str
    updated_at: str

    model_config = {"from_attributes": True}
