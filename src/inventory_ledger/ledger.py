"""Ledger engine: every stock mutation as one failure-atomic unit of work.

Each public coroutine opens its own session, runs inside ``session.begin()``
and either commits the inventory row change together with its movement
record or rolls both back. The first statement of every mutation writes (or
locks) the product row, so concurrent mutations of one product queue behind
each other on the storage row lock while different products proceed in
parallel.

Threshold evaluation happens after the commit through
:class:`~inventory_ledger.alerts.AlertEvaluator`, whose failures are logged
and never reach the caller.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import crud, movements
from .alerts import AlertEvaluator, StockSnapshot, resolve_active_alerts
from .catalog import ProductCatalogClient
from .exceptions import (
    ConflictError,
    InsufficientStockError,
    LedgerError,
    NotFoundError,
    StorageFailureError,
    ValidationError,
)
from .models import InventoryRecord, MovementType, utcnow

logger = logging.getLogger(__name__)

SUBTRACTIVE_TYPES = frozenset({MovementType.OUT, MovementType.DAMAGED, MovementType.EXPIRED})
ADDITIVE_TYPES = frozenset({MovementType.IN, MovementType.RETURNED})
SETTINGS_FIELDS = ("reorder_level", "max_stock_level", "warehouse_location")


def signed_delta(movement_type: MovementType, quantity: int) -> int:
    """Direction of a manual adjustment.

    Typed movements imply their sign; anything else (``adjustment``) is the
    caller's signed delta unchanged.
    """

    if movement_type in SUBTRACTIVE_TYPES:
        return -abs(quantity)
    if movement_type in ADDITIVE_TYPES:
        return abs(quantity)
    return quantity


def _require_positive(name: str, value: int) -> None:
    if value is None or value <= 0:
        raise ValidationError(f"{name} must be a positive integer", details={"field": name})


def _require_non_negative(name: str, value: int) -> None:
    if value is None or value < 0:
        raise ValidationError(f"{name} must be a non-negative integer", details={"field": name})


class InventoryLedger:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        catalog: ProductCatalogClient,
        *,
        evaluator: AlertEvaluator | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._catalog = catalog
        self.evaluator = evaluator or AlertEvaluator(session_factory, catalog)

    @asynccontextmanager
    async def _unit_of_work(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session, session.begin():
                yield session
        except LedgerError:
            raise
        except OperationalError as exc:
            logger.error("Storage unavailable, transaction rolled back: %s", exc)
            raise StorageFailureError(
                "Storage is busy or unavailable, retry the request", retryable=True
            ) from exc
        except SQLAlchemyError as exc:
            logger.exception("Storage failure, transaction rolled back")
            raise StorageFailureError("Storage failure, no changes were applied") from exc

    async def _missing_or_short(
        self, session: AsyncSession, product_id: int, requested: int
    ) -> LedgerError:
        current = await crud.get_record(session, product_id)
        if current is None:
            return NotFoundError("Inventory for product", product_id)
        return InsufficientStockError(
            product_id, available=current.available_quantity, requested=requested
        )

    async def create(
        self,
        product_id: int,
        sku: str,
        initial_quantity: int = 0,
        *,
        reorder_level: int = 10,
        max_stock_level: int = 1000,
        warehouse_location: str | None = None,
        performed_by: str | None = None,
    ) -> InventoryRecord:
        _require_positive("product_id", product_id)
        if not sku:
            raise ValidationError("sku is required", details={"field": "sku"})
        _require_non_negative("quantity", initial_quantity)
        _require_non_negative("reorder_level", reorder_level)
        _require_non_negative("max_stock_level", max_stock_level)

        await self._catalog.get_product_by_id(product_id)

        async with self._unit_of_work() as session:
            if await crud.get_record(session, product_id) is not None:
                raise ConflictError(
                    "Inventory already exists for this product",
                    details={"product_id": product_id},
                )
            try:
                record = await crud.insert_record(
                    session,
                    product_id=product_id,
                    sku=sku,
                    quantity=initial_quantity,
                    reorder_level=reorder_level,
                    max_stock_level=max_stock_level,
                    warehouse_location=warehouse_location,
                )
            except IntegrityError as exc:
                raise ConflictError(
                    "Inventory already exists for this product",
                    details={"product_id": product_id},
                ) from exc
            if initial_quantity > 0:
                await movements.append_movement(
                    session,
                    product_id=product_id,
                    sku=sku,
                    movement_type=MovementType.IN,
                    quantity_change=initial_quantity,
                    reference_type="initial_stock",
                    notes="Initial inventory creation",
                    performed_by=performed_by,
                )
        logger.info("Inventory created for product %s", product_id)
        return record

    async def reserve(
        self, product_id: int, quantity: int, order_ref: str | int
    ) -> InventoryRecord:
        _require_positive("quantity", quantity)
        async with self._unit_of_work() as session:
            record = await crud.reserve(session, product_id, quantity)
            if record is None:
                raise await self._missing_or_short(session, product_id, quantity)
            await movements.append_movement(
                session,
                product_id=product_id,
                sku=record.sku,
                movement_type=MovementType.OUT,
                quantity_change=-quantity,
                reference_type="order_reservation",
                reference_id=order_ref,
                notes=f"Stock reserved for order #{order_ref}",
            )
        logger.info("Reserved %s units of product %s for order %s", quantity, product_id, order_ref)
        return record

    async def release(
        self, product_id: int, quantity: int, order_ref: str | int
    ) -> InventoryRecord:
        _require_positive("quantity", quantity)
        async with self._unit_of_work() as session:
            record = await crud.release(session, product_id, quantity)
            if record is None:
                raise NotFoundError("Inventory for product", product_id)
            await movements.append_movement(
                session,
                product_id=product_id,
                sku=record.sku,
                movement_type=MovementType.RETURNED,
                quantity_change=quantity,
                reference_type="order_cancellation",
                reference_id=order_ref,
                notes=f"Stock released from cancelled order #{order_ref}",
            )
        logger.info("Released %s units of product %s from order %s", quantity, product_id, order_ref)
        return record

    async def confirm_deduction(
        self, product_id: int, quantity: int, order_ref: str | int
    ) -> InventoryRecord:
        _require_positive("quantity", quantity)
        async with self._unit_of_work() as session:
            record = await crud.deduct_reserved(session, product_id, quantity)
            if record is None:
                current = await crud.get_record(session, product_id)
                if current is None:
                    raise NotFoundError("Inventory for product", product_id)
                raise InsufficientStockError(
                    product_id, available=current.quantity, requested=quantity
                )
            await movements.append_movement(
                session,
                product_id=product_id,
                sku=record.sku,
                movement_type=MovementType.OUT,
                quantity_change=-quantity,
                reference_type="order_fulfillment",
                reference_id=order_ref,
                notes=f"Stock sold - Order #{order_ref} completed",
            )
        logger.info(
            "Deducted %s units of product %s for completed order %s",
            quantity,
            product_id,
            order_ref,
        )
        await self.evaluator.evaluate(StockSnapshot.of(record))
        return record

    async def receive_stock(
        self,
        product_id: int,
        quantity: int,
        supplier_ref: str | int,
        notes: str | None = None,
        *,
        performed_by: str | None = None,
    ) -> InventoryRecord:
        record = await self._restock(
            product_id,
            quantity,
            movement_type=MovementType.IN,
            reference_type="purchase_order",
            reference_id=supplier_ref,
            notes=notes or f"Stock received from supplier order #{supplier_ref}",
            performed_by=performed_by,
        )
        logger.info(
            "Received %s units of product %s from supplier order %s",
            quantity,
            product_id,
            supplier_ref,
        )
        return record

    async def return_stock(
        self, product_id: int, quantity: int, order_ref: str | int
    ) -> InventoryRecord:
        record = await self._restock(
            product_id,
            quantity,
            movement_type=MovementType.RETURNED,
            reference_type="order_return",
            reference_id=order_ref,
            notes=f"Stock returned from order #{order_ref}",
        )
        logger.info("Returned %s units of product %s from order %s", quantity, product_id, order_ref)
        return record

    async def _restock(
        self,
        product_id: int,
        quantity: int,
        *,
        movement_type: MovementType,
        reference_type: str,
        reference_id: str | int,
        notes: str | None,
        performed_by: str | None = None,
    ) -> InventoryRecord:
        _require_positive("quantity", quantity)
        async with self._unit_of_work() as session:
            record = await crud.apply_quantity_delta(
                session, product_id, quantity, restocked_at=utcnow()
            )
            if record is None:
                raise NotFoundError("Inventory for product", product_id)
            await movements.append_movement(
                session,
                product_id=product_id,
                sku=record.sku,
                movement_type=movement_type,
                quantity_change=quantity,
                reference_type=reference_type,
                reference_id=reference_id,
                notes=notes,
                performed_by=performed_by,
            )
            if record.quantity > record.reorder_level:
                resolved = await resolve_active_alerts(session, product_id)
                if resolved:
                    logger.info("Resolved low stock alert for product %s", product_id)
        return record

    async def adjust_stock(
        self,
        product_id: int,
        movement_type: MovementType,
        quantity: int,
        *,
        notes: str | None = None,
        performed_by: str | None = None,
    ) -> InventoryRecord:
        movement_type = MovementType(movement_type)
        delta = signed_delta(movement_type, quantity)
        if delta == 0:
            raise ValidationError("quantity must not be zero", details={"field": "quantity"})

        async with self._unit_of_work() as session:
            record = await crud.apply_quantity_delta(
                session,
                product_id,
                delta,
                restocked_at=utcnow() if delta > 0 else None,
            )
            if record is None:
                raise await self._missing_or_short(session, product_id, abs(delta))
            await movements.append_movement(
                session,
                product_id=product_id,
                sku=record.sku,
                movement_type=movement_type,
                quantity_change=delta,
                reference_type="stock_adjustment",
                notes=notes,
                performed_by=performed_by,
            )
        logger.info(
            "Stock adjusted for product %s: %s %s", product_id, movement_type.value, delta
        )
        if delta < 0:
            await self.evaluator.evaluate(StockSnapshot.of(record))
        return record

    async def update_settings(self, product_id: int, **changes: Any) -> InventoryRecord:
        """Apply the given settings; ``warehouse_location=None`` clears the location."""

        unknown = set(changes) - set(SETTINGS_FIELDS)
        if unknown:
            raise ValidationError(
                f"Fields cannot be updated directly: {', '.join(sorted(unknown))}"
            )
        values = {field: changes[field] for field in SETTINGS_FIELDS if field in changes}
        if not values:
            raise ValidationError("No fields to update")
        for field in ("reorder_level", "max_stock_level"):
            if field in values:
                _require_non_negative(field, values[field])

        async with self._unit_of_work() as session:
            record = await crud.update_settings(session, product_id, values)
            if record is None:
                raise NotFoundError("Inventory for product", product_id)
        logger.info("Inventory settings updated for product %s", product_id)
        return record

    async def delete(self, product_id: int, *, performed_by: str | None = None) -> None:
        async with self._unit_of_work() as session:
            deleted = await crud.delete_unreserved(session, product_id)
            if deleted is None:
                record = await crud.get_record(session, product_id)
                if record is None:
                    raise NotFoundError("Inventory for product", product_id)
                raise ConflictError(
                    "Cannot delete inventory with reserved stock",
                    details={
                        "product_id": product_id,
                        "reserved_quantity": record.reserved_quantity,
                    },
                )
            sku, remaining = deleted
            await movements.append_movement(
                session,
                product_id=product_id,
                sku=sku,
                movement_type=MovementType.OUT,
                quantity_change=-remaining,
                reference_type="inventory_deletion",
                notes="Inventory record deleted",
                performed_by=performed_by,
            )
        logger.info("Inventory deleted for product %s", product_id)

    async def check_availability(self, product_id: int, quantity: int) -> dict[str, Any]:
        async with self._session_factory() as session:
            record = await crud.get_record(session, product_id)
        if record is None:
            return {
                "available": False,
                "reason": "Product not found in inventory",
                "current_stock": 0,
                "requested": quantity,
            }
        available = record.available_quantity
        if available < quantity:
            return {
                "available": False,
                "reason": "Insufficient stock",
                "current_stock": available,
                "requested": quantity,
                "shortage": quantity - available,
            }
        return {"available": True, "current_stock": available, "requested": quantity}

    async def bulk_stock_check(self, items: Iterable[dict[str, Any]]) -> dict[str, Any]:
        """Check every item concurrently; one failing lookup only marks its own item."""

        items = list(items)
        outcomes = await asyncio.gather(
            *(self.check_availability(item["product_id"], item["quantity"]) for item in items),
            return_exceptions=True,
        )
        results = []
        for item, outcome in zip(items, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error("Stock check failed for product %s: %s", item["product_id"], outcome)
                outcome = {
                    "available": False,
                    "reason": f"Stock check failed: {outcome}",
                    "current_stock": 0,
                    "requested": item["quantity"],
                }
            results.append({"product_id": item["product_id"], "sku": item.get("sku"), **outcome})
        return {
            "all_available": all(result["available"] for result in results),
            "items": results,
            "unavailable_items": [result for result in results if not result["available"]],
        }


__all__ = ["InventoryLedger", "signed_delta"]
