"""Low-stock alerts and reorder suggestions derived from inventory state."""
from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from sqlalchemy import case, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .catalog import ProductCatalogClient
from .exceptions import NotFoundError, StorageFailureError, ValidationError
from .models import (
    AlertStatus,
    AlertType,
    InventoryRecord,
    ReorderSuggestion,
    StockAlert,
    SuggestionStatus,
    utcnow,
)

logger = logging.getLogger(__name__)

_SUGGESTION_TRANSITIONS: dict[SuggestionStatus, set[SuggestionStatus]] = {
    SuggestionStatus.PENDING: {SuggestionStatus.APPROVED, SuggestionStatus.REJECTED},
    SuggestionStatus.APPROVED: {SuggestionStatus.ORDERED, SuggestionStatus.REJECTED},
    SuggestionStatus.REJECTED: set(),
    SuggestionStatus.ORDERED: set(),
}


@dataclass(frozen=True)
class StockSnapshot:
    """Committed state of one inventory row, detached from any session."""

    product_id: int
    sku: str
    quantity: int
    reserved_quantity: int
    reorder_level: int
    max_stock_level: int

    @classmethod
    def of(cls, record: InventoryRecord) -> "StockSnapshot":
        return cls(
            product_id=record.product_id,
            sku=record.sku,
            quantity=record.quantity,
            reserved_quantity=record.reserved_quantity,
            reorder_level=record.reorder_level,
            max_stock_level=record.max_stock_level,
        )

    @property
    def available(self) -> int:
        return self.quantity - self.reserved_quantity

    @property
    def is_low(self) -> bool:
        return self.available <= self.reorder_level

    @property
    def reorder_quantity(self) -> int:
        return self.max_stock_level - self.quantity


def _dialect_insert(session: AsyncSession):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise StorageFailureError(f"Alert upsert is not supported on {dialect}")


async def upsert_alert(
    session: AsyncSession,
    *,
    product_id: int,
    sku: str,
    current_quantity: int,
    reorder_level: int,
    alert_type: AlertType = AlertType.LOW_STOCK,
    product_name: str | None = None,
) -> StockAlert:
    """Insert an active alert or refresh the existing ``(product, type)`` row."""

    now = utcnow()
    insert = _dialect_insert(session)
    stmt = insert(StockAlert).values(
        product_id=product_id,
        sku=sku,
        product_name=product_name,
        current_quantity=current_quantity,
        reorder_level=reorder_level,
        alert_type=alert_type,
        status=AlertStatus.ACTIVE,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[StockAlert.product_id, StockAlert.alert_type],
        set_={
            "current_quantity": stmt.excluded.current_quantity,
            "reorder_level": stmt.excluded.reorder_level,
            "product_name": func.coalesce(stmt.excluded.product_name, StockAlert.product_name),
            "status": AlertStatus.ACTIVE,
            "resolved_at": None,
            "resolved_by": None,
            "updated_at": now,
        },
    )
    result = await session.execute(
        stmt.returning(StockAlert), execution_options={"populate_existing": True}
    )
    return result.scalar_one()


async def resolve_active_alerts(
    session: AsyncSession,
    product_id: int,
    *,
    alert_type: AlertType = AlertType.LOW_STOCK,
    resolved_by: str | None = None,
) -> int:
    stmt = (
        update(StockAlert)
        .where(
            StockAlert.product_id == product_id,
            StockAlert.alert_type == alert_type,
            StockAlert.status == AlertStatus.ACTIVE,
        )
        .values(
            status=AlertStatus.RESOLVED,
            resolved_at=utcnow(),
            resolved_by=resolved_by,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount


class AlertEvaluator:
    """Post-commit hook turning a stock snapshot into alerts and suggestions.

    Every write runs in its own transaction and every failure is logged and
    absorbed: the stock mutation that triggered the evaluation has already
    committed and must stay committed.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        catalog: ProductCatalogClient | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._catalog = catalog

    async def evaluate(self, snapshot: StockSnapshot) -> None:
        if not snapshot.is_low:
            return

        logger.warning(
            "LOW STOCK ALERT: product %s (SKU: %s) available=%s reorder_level=%s",
            snapshot.product_id,
            snapshot.sku,
            snapshot.available,
            snapshot.reorder_level,
        )
        product_name = await self._product_name(snapshot.product_id)

        try:
            async with self._session_factory() as session, session.begin():
                await upsert_alert(
                    session,
                    product_id=snapshot.product_id,
                    sku=snapshot.sku,
                    current_quantity=snapshot.available,
                    reorder_level=snapshot.reorder_level,
                    product_name=product_name,
                )
        except Exception:
            logger.exception("Error recording low stock alert for product %s", snapshot.product_id)

        try:
            await self._suggest_reorder(snapshot, product_name)
        except Exception:
            logger.exception(
                "Error creating reorder suggestion for product %s", snapshot.product_id
            )

    async def _product_name(self, product_id: int) -> str:
        if self._catalog is None:
            return f"Product {product_id}"
        try:
            return await self._catalog.resolve_product_name(product_id)
        except Exception:
            logger.exception("Product name enrichment failed for product %s", product_id)
            return f"Product {product_id}"

    async def _suggest_reorder(self, snapshot: StockSnapshot, product_name: str) -> None:
        suggested = snapshot.reorder_quantity
        if suggested <= 0:
            return
        async with self._session_factory() as session, session.begin():
            session.add(
                ReorderSuggestion(
                    product_id=snapshot.product_id,
                    sku=snapshot.sku,
                    product_name=product_name,
                    current_quantity=snapshot.quantity,
                    suggested_quantity=suggested,
                    status=SuggestionStatus.PENDING,
                )
            )
        logger.info(
            "REORDER SUGGESTION: %s (SKU: %s) suggested quantity %s",
            product_name,
            snapshot.sku,
            suggested,
        )


async def check_low_stock(session: AsyncSession) -> list[StockAlert]:
    """Create an alert for every low record that has no active one.

    Runs inside the caller's transaction so the batch lands as a whole.
    """

    active_alert = (
        select(StockAlert.id)
        .where(
            StockAlert.product_id == InventoryRecord.product_id,
            StockAlert.alert_type == AlertType.LOW_STOCK,
            StockAlert.status == AlertStatus.ACTIVE,
        )
        .exists()
    )
    stmt = (
        select(InventoryRecord)
        .where(InventoryRecord.quantity <= InventoryRecord.reorder_level, ~active_alert)
        .order_by(InventoryRecord.product_id)
    )
    records = (await session.execute(stmt)).scalars().all()

    alerts = []
    for record in records:
        alerts.append(
            await upsert_alert(
                session,
                product_id=record.product_id,
                sku=record.sku,
                current_quantity=record.quantity,
                reorder_level=record.reorder_level,
            )
        )
    logger.info("Created %s new low stock alerts", len(alerts))
    return alerts


async def list_alerts(
    session: AsyncSession, *, status: AlertStatus = AlertStatus.ACTIVE
) -> list[dict[str, Any]]:
    stmt = (
        select(
            StockAlert,
            InventoryRecord.warehouse_location,
            InventoryRecord.quantity.label("actual_quantity"),
            InventoryRecord.reserved_quantity,
        )
        .outerjoin(InventoryRecord, InventoryRecord.product_id == StockAlert.product_id)
        .where(StockAlert.status == status)
        .order_by(StockAlert.updated_at.desc(), StockAlert.id.desc())
    )
    result = await session.execute(stmt)
    return [
        {
            "alert": row.StockAlert,
            "warehouse_location": row.warehouse_location,
            "actual_quantity": row.actual_quantity,
            "reserved_quantity": row.reserved_quantity,
        }
        for row in result.all()
    ]


async def _get_alert(session: AsyncSession, alert_id: int) -> StockAlert:
    alert = await session.get(StockAlert, alert_id, with_for_update=True)
    if alert is None:
        raise NotFoundError("Alert", alert_id)
    return alert


async def resolve_alert(
    session: AsyncSession, alert_id: int, *, resolved_by: str | None = None
) -> StockAlert:
    alert = await _get_alert(session, alert_id)
    alert.status = AlertStatus.RESOLVED
    alert.resolved_at = utcnow()
    alert.resolved_by = resolved_by
    await session.flush()
    return alert


async def ignore_alert(
    session: AsyncSession, alert_id: int, *, resolved_by: str | None = None
) -> StockAlert:
    alert = await _get_alert(session, alert_id)
    alert.status = AlertStatus.IGNORED
    alert.resolved_by = resolved_by
    await session.flush()
    return alert


async def alert_stats(session: AsyncSession, *, window_days: int = 30) -> dict[str, int]:
    since = utcnow() - timedelta(days=window_days)
    stmt = select(
        func.count(case((StockAlert.status == AlertStatus.ACTIVE, 1))).label("active_alerts"),
        func.count(case((StockAlert.status == AlertStatus.RESOLVED, 1))).label(
            "resolved_alerts"
        ),
        func.count(case((StockAlert.status == AlertStatus.IGNORED, 1))).label("ignored_alerts"),
        func.count(StockAlert.id).label("total_alerts"),
    ).where(StockAlert.created_at >= since)
    row = (await session.execute(stmt)).one()
    return {key: int(value or 0) for key, value in row._mapping.items()}


async def list_suggestions(
    session: AsyncSession, *, status: SuggestionStatus = SuggestionStatus.PENDING
) -> Sequence[ReorderSuggestion]:
    stmt = (
        select(ReorderSuggestion)
        .where(ReorderSuggestion.status == status)
        .order_by(ReorderSuggestion.created_at.desc(), ReorderSuggestion.id.desc())
    )
    result = await session.execute(stmt)
    return result.scalars().all()


async def update_suggestion_status(
    session: AsyncSession,
    suggestion_id: int,
    status: SuggestionStatus,
    *,
    processed_by: str | None = None,
    notes: str | None = None,
) -> ReorderSuggestion:
    suggestion = await session.get(ReorderSuggestion, suggestion_id, with_for_update=True)
    if suggestion is None:
        raise NotFoundError("Reorder suggestion", suggestion_id)
    if status not in _SUGGESTION_TRANSITIONS[suggestion.status]:
        raise ValidationError(
            f"Cannot move reorder suggestion {suggestion_id} "
            f"from {suggestion.status.value} to {status.value}"
        )
    suggestion.status = status
    suggestion.processed_at = utcnow()
    suggestion.processed_by = processed_by
    if notes is not None:
        suggestion.notes = notes
    await session.flush()
    return suggestion


__all__ = [
    "AlertEvaluator",
    "StockSnapshot",
    "alert_stats",
    "check_low_stock",
    "ignore_alert",
    "list_alerts",
    "list_suggestions",
    "resolve_active_alerts",
    "resolve_alert",
    "update_suggestion_status",
    "upsert_alert",
]
