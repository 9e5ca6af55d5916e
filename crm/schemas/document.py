import uuid
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

TemplateType = Literal["QUOTE", "CONTRACT", "REPORT"]


class DocumentTemplateResponse(BaseModel):
    id: str
    user_id: Optional[str] = None
    template_type: str
    name: str
    description: Optional[str] = None
    file_size: int
    mime_type: str
    is_active: bool
    is_default: bool
    created_at: str
    updated_at: str

    model_config = {"from_attributes": True}


class GenerateQuoteRequest(BaseModel):
    template_id: uuid.UUID
    quote_id: Optional[uuid.UUID] = None


class GenerateContractRequest(BaseModel):
    template_id: uuid.UUID
    contract_id: Optional[uuid.UUID] = None


class GenerateWorkRecordDocumentRequest(BaseModel):
    template_id: uuid.UUID


class BulkGenerateRequest(BaseModel):
    template_id: uuid.UUID
    work_record_ids: List[uuid.UUID] = Field(..., min_length=1)
