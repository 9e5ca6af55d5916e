"""
Unit tests for crm/services/numbering_service.py

Uses AsyncMock sessions for allocate_number; the prefix/format helpers are
pure functions. The last section runs against the in-memory SQLite engine.
"""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from crm.models.document_sequence import DocumentSequence
from crm.services import numbering_service
from crm.services.numbering_service import (
    allocate_number,
    build_prefix,
    format_number,
    next_contract_number,
    next_quote_number,
    parse_sequence,
)

NOV_2024 = datetime(2024, 11, 5, 10, 30)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _execute_result(value):
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    return result


def _mock_session(*results) -> AsyncMock:
    session = AsyncMock()
    session.execute = AsyncMock(side_effect=list(results))
    session.flush = AsyncMock()
    session.add = MagicMock()
    # begin_nested() is used as an async context manager
    session.begin_nested = MagicMock()
    return session


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def test_build_prefix_pads_month():
    assert build_prefix("Q", datetime(2024, 3, 1)) == "Q-202403"
    assert build_prefix("C", NOV_2024) == "C-202411"


def test_format_number_pads_to_four_digits():
    assert format_number("Q-202411", 1) == "Q-202411-0001"
    assert format_number("Q-202411", 42) == "Q-202411-0042"


def test_format_number_keeps_overflow_digits():
    assert format_number("Q-202411", 12345) == "Q-202411-12345"


@pytest.mark.parametrize(
    "number,expected",
    [
        ("Q-202411-0007", 7),
        ("C-202411-0120", 120),
        ("Q-202411", 0),
        ("Q-202411-abcd", 0),
    ],
)
def test_parse_sequence(number, expected):
    assert parse_sequence(number) == expected


# ---------------------------------------------------------------------------
# allocate_number
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_allocate_increments_existing_counter():
    counter = DocumentSequence(prefix="Q-202411", last_value=7)
    session = _mock_session(_execute_result(counter))

    number = await allocate_number(session, "Q", now=NOV_2024)

    assert number == "Q-202411-0008"
    assert counter.last_value == 8
    session.add.assert_not_called()
    session.flush.assert_awaited_once()


@pytest.mark.asyncio
async def test_allocate_seeds_new_month_from_highest_issued():
    # No counter row yet; the highest issued quote this month is 0004
    session = _mock_session(_execute_result(None), _execute_result("Q-202411-0004"))

    number = await allocate_number(session, "Q", now=NOV_2024)

    assert number == "Q-202411-0005"
    created = session.add.call_args[0][0]
    assert isinstance(created, DocumentSequence)
    assert created.prefix == "Q-202411"
    assert created.last_value == 5


@pytest.mark.asyncio
async def test_allocate_first_number_of_month_is_0001():
    session = _mock_session(_execute_result(None), _execute_result(None))

    number = await allocate_number(session, "C", now=datetime(2025, 1, 1))

    assert number == "C-202501-0001"


@pytest.mark.asyncio
async def test_allocate_unknown_letter_starts_from_zero():
    # Letters without a numbered table skip the seed query
    session = _mock_session(_execute_result(None))

    number = await allocate_number(session, "X", now=NOV_2024)

    assert number == "X-202411-0001"
    assert session.execute.await_count == 1


@pytest.mark.asyncio
async def test_next_quote_and_contract_use_their_letters():
    quote_session = _mock_session(_execute_result(DocumentSequence(prefix="Q-202411", last_value=0)))
    contract_session = _mock_session(
        _execute_result(DocumentSequence(prefix="C-202411", last_value=9))
    )

    assert await next_quote_number(quote_session, now=NOV_2024) == "Q-202411-0001"
    assert await next_contract_number(contract_session, now=NOV_2024) == "C-202411-0010"


# ---------------------------------------------------------------------------
# allocate_number against a real database
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_allocate_retries_when_counter_row_appears_concurrently(session_factory, monkeypatch):
    # Another request already created this month's counter
    async with session_factory() as session:
        session.add(DocumentSequence(prefix="C-202411", last_value=7))
        await session.commit()

    real_lock_counter = numbering_service._lock_counter
    calls = []

    async def _lock_counter_missing_once(session, prefix):
        calls.append(prefix)
        if len(calls) == 1:
            return None
        return await real_lock_counter(session, prefix)

    monkeypatch.setattr(numbering_service, "_lock_counter", _lock_counter_missing_once)

    async with session_factory() as session:
        number = await allocate_number(session, "C", now=NOV_2024)
        await session.commit()

    assert number == "C-202411-0008"
    assert calls == ["C-202411", "C-202411"]

    async with session_factory() as session:
        counter = await session.get(DocumentSequence, "C-202411")
        assert counter.last_value == 8


@pytest.mark.asyncio
async def test_allocate_restarts_each_month(session_factory):
    numbers = []
    for now in (NOV_2024, datetime(2024, 11, 30, 23, 59), datetime(2024, 12, 1, 0, 0)):
        async with session_factory() as session:
            numbers.append(await next_quote_number(session, now=now))
            await session.commit()

    assert numbers == ["Q-202411-0001", "Q-202411-0002", "Q-202412-0001"]

    async with session_factory() as session:
        november = await session.get(DocumentSequence, "Q-202411")
        december = await session.get(DocumentSequence, "Q-202412")
        assert (november.last_value, december.last_value) == (2, 1)
