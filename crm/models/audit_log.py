import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON, BigInteger, DateTime, ForeignKey, Index, Integer, String, Text, Uuid, desc,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from crm.database import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    # Insertion order; breaks created_at ties when listing history
    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    # CREATE / UPDATE / DELETE
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    # Single-field change: field + JSON-encoded old/new values
    field: Mapped[Optional[str]] = mapped_column(String(100))
    old_value: Mapped[Optional[str]] = mapped_column(Text)
    new_value: Mapped[Optional[str]] = mapped_column(Text)
    # Multi-field change: [{"field", "old_value", "new_value"}, ...]
    changes: Mapped[Optional[list]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql")
    )
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL")
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_user", "user_id"),
        Index("idx_audit_created", desc("created_at")),
    )
