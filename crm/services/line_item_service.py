"""
Line items shared by quotes and contracts.

Items are never edited one by one: an update replaces the whole list inside
the caller's transaction.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Type, Union

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from crm.models.contract import ContractItem
from crm.models.quote import QuoteItem

LineItemModel = Union[Type[QuoteItem], Type[ContractItem]]

_PARENT_COLUMN = {
    QuoteItem: "quote_id",
    ContractItem: "contract_id",
}

ITEM_FIELDS = ("item_number", "description", "quantity", "unit_price", "amount", "notes")


def round_yen(value: Union[Decimal, int, float, str]) -> int:
    """Half-up rounding to whole yen."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def items_total(items: Iterable) -> int:
    return sum(int(item.amount) for item in items)


def item_snapshot(items: Iterable) -> list[dict]:
    """Comparable form of a line-item list, used for the audit diff."""
    return [{field: getattr(item, field) for field in ITEM_FIELDS} for item in items]


async def load_items(session: AsyncSession, model: LineItemModel, parent_id) -> list:
    column = getattr(model, _PARENT_COLUMN[model])
    result = await session.execute(
        select(model).where(column == parent_id).order_by(model.item_number)
    )
    return list(result.scalars().all())


async def replace_items(session: AsyncSession, model: LineItemModel, parent_id, items) -> list:
    """Delete the parent's items and insert ``items`` (pydantic line-item bodies)."""
    column_name = _PARENT_COLUMN[model]
    await session.execute(delete(model).where(getattr(model, column_name) == parent_id))

    rows = [model(**{column_name: parent_id}, **item.model_dump()) for item in items]
    session.add_all(rows)
    await session.flush()
    return sorted(rows, key=lambda row: row.item_number)
