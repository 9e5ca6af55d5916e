"""
Unit tests for crm/services/audit_service.py

Uses AsyncMock to isolate from database.
Tests: compute_changes, record_changes, record_create, record_delete,
       normalize_value, decode_value.
"""

import json
import uuid
from datetime import date, datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from crm.models.audit_log import AuditLog
from crm.models.company import Company
from crm.services.audit_service import (
    FieldChange,
    compute_changes,
    decode_value,
    normalize_value,
    record_changes,
    record_create,
    record_delete,
)


def _mock_session() -> AsyncMock:
    session = AsyncMock()
    session.flush = AsyncMock()
    session.add = MagicMock()
    return session


def _added(session) -> AuditLog:
    return session.add.call_args[0][0]


# ---------------------------------------------------------------------------
# compute_changes
# ---------------------------------------------------------------------------


def test_single_changed_field():
    changes = compute_changes({"a": 1, "b": 2}, {"a": 1, "b": 3})
    assert changes == [FieldChange(field="b", old_value=2, new_value=3)]


def test_two_changed_fields():
    changes = compute_changes({"a": 1, "b": 2}, {"a": 5, "b": 9})
    assert [c.field for c in changes] == ["a", "b"]


def test_identical_values_produce_no_changes():
    assert compute_changes({"a": 1, "b": 2}, {"a": 1, "b": 2}) == []


def test_only_keys_in_update_are_compared():
    changes = compute_changes({"a": 1, "b": 2, "c": 3}, {"c": 4})
    assert [c.field for c in changes] == ["c"]


def test_dates_and_decimals_compare_by_normalized_value():
    existing = {"occurred_at": date(2024, 11, 5), "estimated_amount": Decimal("1000.00")}
    updates = {"occurred_at": date(2024, 11, 5), "estimated_amount": Decimal("1000")}
    assert compute_changes(existing, updates) == []


def test_changes_from_orm_instance():
    company = Company(name="Old Name", phone=None)
    changes = compute_changes(company, {"name": "New Name", "phone": "03-0000-0000"})
    assert changes == [
        FieldChange(field="name", old_value="Old Name", new_value="New Name"),
        FieldChange(field="phone", old_value=None, new_value="03-0000-0000"),
    ]


def test_normalize_value():
    some_id = uuid.uuid4()
    assert normalize_value(Decimal("12.50")) == 12.5
    assert normalize_value(Decimal("12.00")) == 12
    assert normalize_value(datetime(2024, 1, 2, 3, 4)) == "2024-01-02T03:04:00"
    assert normalize_value(some_id) == str(some_id)
    assert normalize_value("text") == "text"


# ---------------------------------------------------------------------------
# record_changes
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_record_changes_writes_nothing_for_empty_list():
    session = _mock_session()
    result = await record_changes(session, "Company", uuid.uuid4(), [])
    assert result is None
    session.add.assert_not_called()


@pytest.mark.asyncio
async def test_record_changes_single_field_entry():
    session = _mock_session()
    entity_id = uuid.uuid4()
    user_id = str(uuid.uuid4())

    await record_changes(
        session,
        "Company",
        entity_id,
        [FieldChange(field="b", old_value=2, new_value=3)],
        user_id=user_id,
    )

    log = _added(session)
    assert log.action == "UPDATE"
    assert log.entity_id == str(entity_id)
    assert log.field == "b"
    assert json.loads(log.old_value) == 2
    assert json.loads(log.new_value) == 3
    assert log.changes is None
    assert log.user_id == uuid.UUID(user_id)
    session.flush.assert_awaited_once()


@pytest.mark.asyncio
async def test_record_changes_multi_field_entry():
    session = _mock_session()
    changes = [
        FieldChange(field="a", old_value=1, new_value=5),
        FieldChange(field="b", old_value=2, new_value=9),
    ]

    await record_changes(session, "Company", uuid.uuid4(), changes)

    log = _added(session)
    assert session.add.call_count == 1
    assert log.field is None
    assert log.old_value is None
    assert log.new_value is None
    assert log.changes == [
        {"field": "a", "old_value": 1, "new_value": 5},
        {"field": "b", "old_value": 2, "new_value": 9},
    ]


@pytest.mark.asyncio
async def test_invalid_user_id_is_dropped():
    session = _mock_session()
    await record_changes(
        session,
        "Company",
        uuid.uuid4(),
        [FieldChange(field="a", old_value=1, new_value=2)],
        user_id="not-a-uuid",
    )
    assert _added(session).user_id is None


# ---------------------------------------------------------------------------
# record_create / record_delete
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_record_create_snapshots_instance():
    session = _mock_session()
    company = Company(id=uuid.uuid4(), name="Acme", billing_flag=True)

    await record_create(session, "Company", company)

    log = _added(session)
    assert log.action == "CREATE"
    snapshot = json.loads(log.new_value)
    assert snapshot["name"] == "Acme"
    assert snapshot["billing_flag"] is True
    assert snapshot["id"] == str(company.id)


@pytest.mark.asyncio
async def test_record_delete_marks_deleted():
    session = _mock_session()
    entity_id = uuid.uuid4()

    await record_delete(session, "Contact", entity_id)

    log = _added(session)
    assert log.action == "DELETE"
    assert log.entity_type == "Contact"
    assert json.loads(log.new_value) == {"deleted": True}


def test_decode_value():
    assert decode_value(None) is None
    assert decode_value('"ESTIMATING"') == "ESTIMATING"
    assert decode_value("1000") == 1000
    assert decode_value("not json") == "not json"
