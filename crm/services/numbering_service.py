"""
Document numbering: monthly sequences for quotes and contracts.

Numbers look like ``Q-202411-0001`` / ``C-202411-0001``: a letter, the
calendar month, and a counter that restarts at 1 every month.

The counter lives in ``document_sequences`` (one row per prefix) and is
incremented under SELECT FOR UPDATE, so concurrent requests in the same month
serialize on the row instead of reading the same maximum. When a month has no
counter row yet, it is seeded from the highest number already issued for that
prefix.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from crm.models.contract import Contract
from crm.models.document_sequence import DocumentSequence
from crm.models.quote import Quote

logger = structlog.get_logger()

QUOTE_PREFIX_LETTER = "Q"
CONTRACT_PREFIX_LETTER = "C"
SEQUENCE_WIDTH = 4

# letter -> numbered column, used to seed a fresh monthly counter
_NUMBER_COLUMNS = {
    QUOTE_PREFIX_LETTER: Quote.quote_number,
    CONTRACT_PREFIX_LETTER: Contract.contract_number,
}


def build_prefix(letter: str, now: datetime) -> str:
    """Q + 2024-11 -> 'Q-202411'."""
    return f"{letter}-{now.year}{now.month:02d}"


def parse_sequence(number: str) -> int:
    """Trailing counter of a document number; 0 when it is missing or not numeric."""
    parts = number.split("-")
    if len(parts) < 3:
        return 0
    try:
        return int(parts[2])
    except ValueError:
        return 0


def format_number(prefix: str, sequence: int) -> str:
    return f"{prefix}-{sequence:0{SEQUENCE_WIDTH}d}"


async def _highest_issued(session: AsyncSession, letter: str, prefix: str) -> int:
    column = _NUMBER_COLUMNS.get(letter)
    if column is None:
        return 0
    result = await session.execute(
        select(column)
        .where(column.like(f"{prefix}-%"))
        .order_by(column.desc())
        .limit(1)
    )
    last_number = result.scalar_one_or_none()
    return parse_sequence(last_number) if last_number else 0


async def _lock_counter(session: AsyncSession, prefix: str) -> Optional[DocumentSequence]:
    result = await session.execute(
        select(DocumentSequence)
        .where(DocumentSequence.prefix == prefix)
        .with_for_update()
    )
    return result.scalar_one_or_none()


async def allocate_number(
    session: AsyncSession, letter: str, now: Optional[datetime] = None
) -> str:
    """
    Reserve the next number for ``letter`` in the month of ``now``.

    Must run inside the caller's transaction; the counter row stays locked
    until that transaction ends.
    """
    prefix = build_prefix(letter, now or datetime.now())

    counter = await _lock_counter(session, prefix)
    if counter is None:
        seed = await _highest_issued(session, letter, prefix)
        try:
            async with session.begin_nested():
                counter = DocumentSequence(prefix=prefix, last_value=seed)
                session.add(counter)
        except IntegrityError:
            # Another request created the row first; wait on its lock instead
            logger.info("sequence_counter_race", prefix=prefix)
            counter = await _lock_counter(session, prefix)

    counter.last_value += 1
    await session.flush()

    number = format_number(prefix, counter.last_value)
    logger.info("sequence_allocated", prefix=prefix, number=number)
    return number


async def next_quote_number(session: AsyncSession, now: Optional[datetime] = None) -> str:
    return await allocate_number(session, QUOTE_PREFIX_LETTER, now)


async def next_contract_number(session: AsyncSession, now: Optional[datetime] = None) -> str:
    return await allocate_number(session, CONTRACT_PREFIX_LETTER, now)
