"""Append-only stock movement log."""
from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import MovementType, StockMovement, as_utc


async def append_movement(
    session: AsyncSession,
    *,
    product_id: int,
    sku: str,
    movement_type: MovementType,
    quantity_change: int,
    reference_type: str | None = None,
    reference_id: str | int | None = None,
    notes: str | None = None,
    performed_by: str | None = None,
) -> StockMovement:
    """Write one movement inside the caller's transaction.

    ``quantity`` is stored as a magnitude; ``quantity_change`` keeps the
    signed effect. The flush happens here so a failing insert aborts the
    enclosing unit of work before it can commit.
    """

    movement = StockMovement(
        product_id=product_id,
        sku=sku,
        movement_type=movement_type,
        quantity=abs(quantity_change),
        quantity_change=quantity_change,
        reference_type=reference_type,
        reference_id=str(reference_id) if reference_id is not None else None,
        notes=notes,
        performed_by=performed_by,
    )
    session.add(movement)
    await session.flush()
    return movement


async def list_by_product(
    session: AsyncSession, product_id: int, *, limit: int = 50
) -> Sequence[StockMovement]:
    stmt = (
        select(StockMovement)
        .where(StockMovement.product_id == product_id)
        .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return result.scalars().all()


async def list_filtered(
    session: AsyncSession,
    *,
    product_id: int | None = None,
    movement_type: MovementType | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int = 100,
) -> Sequence[StockMovement]:
    stmt = select(StockMovement)
    if product_id is not None:
        stmt = stmt.where(StockMovement.product_id == product_id)
    if movement_type is not None:
        stmt = stmt.where(StockMovement.movement_type == movement_type)
    if start_date is not None:
        stmt = stmt.where(StockMovement.created_at >= as_utc(start_date))
    if end_date is not None:
        stmt = stmt.where(StockMovement.created_at <= as_utc(end_date))
    stmt = stmt.order_by(StockMovement.created_at.desc(), StockMovement.id.desc()).limit(limit)
    result = await session.execute(stmt)
    return result.scalars().all()


__all__ = ["append_movement", "list_by_product", "list_filtered"]
