"""
Inspection (work) record: one visit to a piece of equipment.

checklist_data holds the nested inspection sheet as JSON text:
{section_id: {category_id: {item_id: symbol, "<item_id>_defect": code}}}
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from crm.database import Base


class InspectionRecord(Base):
    __tablename__ = "inspection_records"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    equipment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("equipment.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    work_type: Mapped[str] = mapped_column(String(20), default="INSPECTION")
    inspection_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    overall_judgment: Mapped[Optional[str]] = mapped_column(String(20))
    findings: Mapped[Optional[str]] = mapped_column(Text)
    summary: Mapped[Optional[str]] = mapped_column(Text)
    additional_notes: Mapped[Optional[str]] = mapped_column(Text)
    checklist_data: Mapped[Optional[str]] = mapped_column(Text)
    photos: Mapped[Optional[str]] = mapped_column(Text)
    document_number: Mapped[Optional[str]] = mapped_column(String(100))
    installation_factory: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        Index("idx_inspection_records_equipment", "equipment_id"),
        Index("idx_inspection_records_user", "user_id"),
        Index("idx_inspection_records_date", "inspection_date"),
    )
