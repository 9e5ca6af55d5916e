"""
Sales opportunity: a potential deal with a company.

Status: ESTIMATING → WON / LOST
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from crm.database import Base


class SalesOpportunity(Base):
    __tablename__ = "sales_opportunities"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("companies.id"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="ESTIMATING")
    estimated_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2))
    crane_count: Mapped[Optional[int]] = mapped_column(Integer)
    crane_info: Mapped[Optional[str]] = mapped_column(Text)
    occurred_at: Mapped[Optional[date]] = mapped_column(Date)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        Index("idx_sales_opps_company", "company_id"),
        Index("idx_sales_opps_status", "status"),
    )
