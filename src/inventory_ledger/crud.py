"""Ledger store: reads and guarded single-statement updates on inventory rows.

Every mutating helper here is one SQL statement whose WHERE clause carries
the guard, so the check and the write are indivisible for the row. A helper
returns ``None`` when the guard (or the product lookup) matched nothing; the
ledger engine decides which error that means.
"""
from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import InventoryRecord, utcnow


def _floored_at_zero(expression: Any) -> Any:
    return case((expression < 0, 0), else_=expression)


async def _guarded_update(
    session: AsyncSession, product_id: int, *guards: Any, **values: Any
) -> InventoryRecord | None:
    stmt = (
        update(InventoryRecord)
        .where(InventoryRecord.product_id == product_id, *guards)
        .values(updated_at=utcnow(), **values)
        .returning(InventoryRecord)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_record(session: AsyncSession, product_id: int) -> InventoryRecord | None:
    stmt = select(InventoryRecord).where(InventoryRecord.product_id == product_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_record_by_id(session: AsyncSession, record_id: int) -> InventoryRecord | None:
    return await session.get(InventoryRecord, record_id)


async def list_records(
    session: AsyncSession, *, low_stock: bool = False
) -> Sequence[InventoryRecord]:
    stmt = select(InventoryRecord).order_by(
        InventoryRecord.created_at.desc(), InventoryRecord.id.desc()
    )
    if low_stock:
        stmt = stmt.where(InventoryRecord.quantity <= InventoryRecord.reorder_level)
    result = await session.execute(stmt)
    return result.scalars().all()


async def insert_record(
    session: AsyncSession,
    *,
    product_id: int,
    sku: str,
    quantity: int,
    reorder_level: int,
    max_stock_level: int,
    warehouse_location: str | None,
) -> InventoryRecord:
    record = InventoryRecord(
        product_id=product_id,
        sku=sku,
        quantity=quantity,
        reserved_quantity=0,
        reorder_level=reorder_level,
        max_stock_level=max_stock_level,
        warehouse_location=warehouse_location,
        last_restocked_at=utcnow(),
    )
    session.add(record)
    await session.flush()
    return record


async def reserve(
    session: AsyncSession, product_id: int, quantity: int
) -> InventoryRecord | None:
    return await _guarded_update(
        session,
        product_id,
        InventoryRecord.quantity - InventoryRecord.reserved_quantity >= quantity,
        reserved_quantity=InventoryRecord.reserved_quantity + quantity,
    )


async def release(
    session: AsyncSession, product_id: int, quantity: int
) -> InventoryRecord | None:
    return await _guarded_update(
        session,
        product_id,
        reserved_quantity=_floored_at_zero(InventoryRecord.reserved_quantity - quantity),
    )


async def deduct_reserved(
    session: AsyncSession, product_id: int, quantity: int
) -> InventoryRecord | None:
    """Remove ``quantity`` from both on-hand and reserved stock in one step."""

    return await _guarded_update(
        session,
        product_id,
        InventoryRecord.quantity >= quantity,
        quantity=InventoryRecord.quantity - quantity,
        reserved_quantity=_floored_at_zero(InventoryRecord.reserved_quantity - quantity),
    )


async def apply_quantity_delta(
    session: AsyncSession,
    product_id: int,
    delta: int,
    *,
    restocked_at: datetime | None = None,
) -> InventoryRecord | None:
    """Shift on-hand stock by ``delta`` without dropping below what is reserved."""

    values: dict[str, Any] = {"quantity": InventoryRecord.quantity + delta}
    if restocked_at is not None:
        values["last_restocked_at"] = restocked_at
    return await _guarded_update(
        session,
        product_id,
        InventoryRecord.quantity + delta >= InventoryRecord.reserved_quantity,
        **values,
    )


async def update_settings(
    session: AsyncSession, product_id: int, values: dict[str, Any]
) -> InventoryRecord | None:
    return await _guarded_update(session, product_id, **values)


async def delete_unreserved(session: AsyncSession, product_id: int) -> tuple[str, int] | None:
    """Delete a record only while nothing is reserved; returns its sku and quantity."""

    stmt = (
        delete(InventoryRecord)
        .where(
            InventoryRecord.product_id == product_id,
            InventoryRecord.reserved_quantity == 0,
        )
        .returning(InventoryRecord.sku, InventoryRecord.quantity)
        .execution_options(synchronize_session=False)
    )
    row = (await session.execute(stmt)).one_or_none()
    if row is None:
        return None
    return row.sku, row.quantity


async def inventory_analytics(session: AsyncSession) -> dict[str, Any]:
    stmt = select(
        func.count(InventoryRecord.id).label("total_products"),
        func.coalesce(func.sum(InventoryRecord.quantity), 0).label("total_stock"),
        func.coalesce(func.sum(InventoryRecord.reserved_quantity), 0).label("total_reserved"),
        func.count(
            case((InventoryRecord.quantity <= InventoryRecord.reorder_level, 1))
        ).label("low_stock_products"),
        func.count(case((InventoryRecord.quantity == 0, 1))).label("out_of_stock_products"),
        func.avg(InventoryRecord.quantity).label("avg_stock_per_product"),
    )
    row = (await session.execute(stmt)).one()
    return dict(row._mapping)


__all__ = [name for name in globals() if not name.startswith("_")]
