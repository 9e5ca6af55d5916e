from typing import Any, List, Optional

from pydantic import BaseModel


class AuditActor(BaseModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None


class FieldChangeResponse(BaseModel):
    field: str
    field_label: str
    old_value: Any = None
    new_value: Any = None
    old_display: str
    new_display: str


class AuditLogResponse(BaseModel):
    id: str
    entity_type: str
    entity_id: str
    action: str
    field: Optional[str] = None
    field_label: Optional[str] = None
    old_value: Any = None
    new_value: Any = None
    multiple_changes: Optional[List[FieldChangeResponse]] = None
    user: Optional[AuditActor] = None
    created_at: str

    model_config = {"from_attributes": True}
