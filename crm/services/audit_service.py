"""
Audit logging service: records entity changes for the history timeline.

An update produces at most one row: a single-field entry (field, old_value,
new_value) when one field changed, or a multi-field entry whose ``changes``
column lists every changed field. Uses session.flush(); caller owns the
transaction.
"""

import json
import uuid
from dataclasses import dataclass, asdict
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Mapping, Optional

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from crm.models.audit_log import AuditLog

logger = structlog.get_logger()

_MISSING = object()

# Never copied into audit snapshots
_EXCLUDED_FIELDS = {"password_hash", "file_data"}


@dataclass
class FieldChange:
    field: str
    old_value: Any
    new_value: Any

    def as_dict(self) -> dict:
        return asdict(self)


def _to_uuid(value: Optional[str], field_name: str) -> Optional[uuid.UUID]:
    if value is None:
        return None
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        logger.warning("audit_invalid_uuid", field=field_name, value=str(value))
        return None


def normalize_value(value: Any) -> Any:
    """Convert a column value to the JSON-compatible form used for comparison and storage."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


def _read(existing: Any, key: str) -> Any:
    if isinstance(existing, Mapping):
        return existing.get(key)
    return getattr(existing, key, None)


def compute_changes(existing: Any, updates: Mapping[str, Any]) -> list[FieldChange]:
    """
    Diff the candidate values in ``updates`` against ``existing``.

    Only keys present in ``updates`` are compared. ``existing`` may be a dict
    or an ORM instance.
    """
    changes = []
    for key, candidate in updates.items():
        old_value = normalize_value(_read(existing, key))
        new_value = normalize_value(candidate)
        if old_value != new_value:
            changes.append(FieldChange(field=key, old_value=old_value, new_value=new_value))
    return changes


def to_state(instance: Any) -> dict:
    """Snapshot an ORM instance's loaded column values for a CREATE entry."""
    state = inspect(instance)
    snapshot = {}
    for attr in state.mapper.column_attrs:
        if attr.key in _EXCLUDED_FIELDS or attr.key in state.unloaded:
            continue
        snapshot[attr.key] = normalize_value(getattr(instance, attr.key))
    return snapshot


def _encode(value: Any) -> Optional[str]:
    if value is _MISSING:
        return None
    return json.dumps(normalize_value(value), ensure_ascii=False, default=str)


async def create_audit_log(
    session: AsyncSession,
    entity_type: str,
    entity_id: Any,
    action: str,
    user_id: Optional[str] = None,
    field: Optional[str] = None,
    old_value: Any = _MISSING,
    new_value: Any = _MISSING,
    multiple_changes: Optional[list[FieldChange]] = None,
) -> AuditLog:
    """Append one audit row."""
    if multiple_changes:
        audit = AuditLog(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action,
            field=None,
            old_value=None,
            new_value=None,
            changes=[c.as_dict() for c in multiple_changes],
            user_id=_to_uuid(user_id, "user_id"),
            created_at=datetime.utcnow(),
        )
    else:
        audit = AuditLog(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action,
            field=field,
            old_value=_encode(old_value),
            new_value=_encode(new_value),
            changes=None,
            user_id=_to_uuid(user_id, "user_id"),
            created_at=datetime.utcnow(),
        )
    session.add(audit)
    await session.flush()

    logger.info(
        "audit_log_created",
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        user_id=user_id,
        changed_fields=[c.field for c in multiple_changes] if multiple_changes else field,
    )
    return audit


async def record_changes(
    session: AsyncSession,
    entity_type: str,
    entity_id: Any,
    changes: list[FieldChange],
    user_id: Optional[str] = None,
) -> Optional[AuditLog]:
    """Persist an UPDATE entry for ``changes``; nothing is written when the list is empty."""
    if not changes:
        return None
    if len(changes) == 1:
        change = changes[0]
        return await create_audit_log(
            session,
            entity_type,
            entity_id,
            "UPDATE",
            user_id=user_id,
            field=change.field,
            old_value=change.old_value,
            new_value=change.new_value,
        )
    return await create_audit_log(
        session,
        entity_type,
        entity_id,
        "UPDATE",
        user_id=user_id,
        multiple_changes=changes,
    )


async def record_create(
    session: AsyncSession, entity_type: str, instance: Any, user_id: Optional[str] = None
) -> AuditLog:
    return await create_audit_log(
        session, entity_type, instance.id, "CREATE", user_id=user_id, new_value=to_state(instance)
    )


async def record_delete(
    session: AsyncSession, entity_type: str, entity_id: Any, user_id: Optional[str] = None
) -> AuditLog:
    return await create_audit_log(
        session, entity_type, entity_id, "DELETE", user_id=user_id, new_value={"deleted": True}
    )


def decode_value(raw: Optional[str]) -> Any:
    """Inverse of the JSON encoding used for old_value/new_value."""
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return raw
