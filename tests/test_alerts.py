from __future__ import annotations

from types import SimpleNamespace

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from inventory_ledger import alerts
from inventory_ledger.alerts import AlertEvaluator, StockSnapshot
from inventory_ledger.exceptions import NotFoundError, StorageFailureError, ValidationError
from inventory_ledger.management import run_low_stock_sweep
from inventory_ledger.models import (
    AlertStatus,
    ReorderSuggestion,
    StockAlert,
    SuggestionStatus,
)


async def _alert_rows(session_factory, product_id: int):
    async with session_factory() as session:
        result = await session.execute(select(StockAlert).where(StockAlert.product_id == product_id))
        return result.scalars().all()


async def _suggestion_count(session_factory) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count(ReorderSuggestion.id)))


def test_snapshot_thresholds() -> None:
    snapshot = StockSnapshot(
        product_id=1,
        sku="SKU-1",
        quantity=30,
        reserved_quantity=12,
        reorder_level=20,
        max_stock_level=100,
    )
    assert snapshot.available == 18
    assert snapshot.is_low is True
    assert snapshot.reorder_quantity == 70


async def test_repeated_evaluation_keeps_one_alert_per_product(ledger, session_factory) -> None:
    await ledger.create(1, "SKU-1", 30, reorder_level=20)

    await ledger.confirm_deduction(1, 15, "order-1")
    await ledger.confirm_deduction(1, 5, "order-2")

    rows = await _alert_rows(session_factory, 1)
    assert len(rows) == 1
    assert rows[0].current_quantity == 10
    assert rows[0].status == AlertStatus.ACTIVE


async def test_stock_above_threshold_raises_nothing(ledger, session_factory) -> None:
    await ledger.create(1, "SKU-1", 100, reorder_level=20)
    await ledger.confirm_deduction(1, 10, "order-1")

    assert await _alert_rows(session_factory, 1) == []
    assert await _suggestion_count(session_factory) == 0


async def test_alert_written_when_catalog_is_down(ledger, catalog_stub, session_factory) -> None:
    await ledger.create(1, "SKU-1", 30, reorder_level=20)
    catalog_stub.unreachable = True

    record = await ledger.confirm_deduction(1, 25, "order-1")

    assert record.quantity == 5
    rows = await _alert_rows(session_factory, 1)
    assert rows[0].product_name == "Product 1"


async def test_suggestion_failure_keeps_deduction_and_alert(
    ledger, fetch_record, session_factory, monkeypatch: pytest.MonkeyPatch
) -> None:
    await ledger.create(1, "SKU-1", 30, reorder_level=20)

    async def broken_suggestion(self, snapshot, product_name):
        raise SQLAlchemyError("suggestion table unavailable")

    monkeypatch.setattr(AlertEvaluator, "_suggest_reorder", broken_suggestion)

    await ledger.confirm_deduction(1, 25, "order-1")

    assert (await fetch_record(1)).quantity == 5
    assert len(await _alert_rows(session_factory, 1)) == 1
    assert await _suggestion_count(session_factory) == 0


async def test_alert_failure_still_suggests_reorder(
    ledger, fetch_record, session_factory, monkeypatch: pytest.MonkeyPatch
) -> None:
    await ledger.create(1, "SKU-1", 30, reorder_level=20, max_stock_level=100)

    async def broken_upsert(*args, **kwargs):
        raise SQLAlchemyError("alert table unavailable")

    monkeypatch.setattr(alerts, "upsert_alert", broken_upsert)

    await ledger.confirm_deduction(1, 25, "order-1")

    assert (await fetch_record(1)).quantity == 5
    assert await _alert_rows(session_factory, 1) == []
    async with session_factory() as session:
        suggestions = await alerts.list_suggestions(session)
    assert [s.suggested_quantity for s in suggestions] == [95]


async def test_no_suggestion_when_already_above_max(ledger, session_factory) -> None:
    await ledger.create(1, "SKU-1", 100, reorder_level=200, max_stock_level=50)
    await ledger.confirm_deduction(1, 10, "order-1")

    assert len(await _alert_rows(session_factory, 1)) == 1
    assert await _suggestion_count(session_factory) == 0


async def test_negative_adjustment_is_evaluated(ledger, session_factory) -> None:
    await ledger.create(1, "SKU-1", 25, reorder_level=20)
    await ledger.adjust_stock(1, "damaged", 10)

    rows = await _alert_rows(session_factory, 1)
    assert rows[0].current_quantity == 15


async def test_low_stock_sweep_creates_missing_alerts_once(ledger, session_factory) -> None:
    await ledger.create(1, "SKU-1", 5, reorder_level=10)
    await ledger.create(2, "SKU-2", 50, reorder_level=10)
    await ledger.create(3, "SKU-3", 3, reorder_level=10)
    async with session_factory() as session, session.begin():
        await alerts.upsert_alert(
            session, product_id=3, sku="SKU-3", current_quantity=3, reorder_level=10
        )

    assert await run_low_stock_sweep(session_factory) == 1
    assert await run_low_stock_sweep(session_factory) == 0

    created = await _alert_rows(session_factory, 1)
    assert len(created) == 1
    assert created[0].current_quantity == 5
    assert await _alert_rows(session_factory, 2) == []


async def test_sweep_reactivates_resolved_alert(ledger, session_factory) -> None:
    await ledger.create(1, "SKU-1", 5, reorder_level=10)
    await run_low_stock_sweep(session_factory)
    alert_id = (await _alert_rows(session_factory, 1))[0].id

    async with session_factory() as session, session.begin():
        await alerts.resolve_alert(session, alert_id, resolved_by="ops")

    assert await run_low_stock_sweep(session_factory) == 1
    rows = await _alert_rows(session_factory, 1)
    assert len(rows) == 1
    assert rows[0].id == alert_id
    assert rows[0].status == AlertStatus.ACTIVE
    assert rows[0].resolved_by is None


async def test_resolve_and_ignore_alerts(ledger, session_factory) -> None:
    await ledger.create(1, "SKU-1", 5, reorder_level=10)
    await ledger.create(2, "SKU-2", 5, reorder_level=10)
    await run_low_stock_sweep(session_factory)
    first = (await _alert_rows(session_factory, 1))[0]
    second = (await _alert_rows(session_factory, 2))[0]

    async with session_factory() as session, session.begin():
        resolved = await alerts.resolve_alert(session, first.id, resolved_by="ops")
        ignored = await alerts.ignore_alert(session, second.id)

    assert resolved.status == AlertStatus.RESOLVED
    assert resolved.resolved_at is not None
    assert resolved.resolved_by == "ops"
    assert ignored.status == AlertStatus.IGNORED

    async with session_factory() as session:
        assert await alerts.list_alerts(session) == []
        stats = await alerts.alert_stats(session)
        with pytest.raises(NotFoundError):
            await alerts.resolve_alert(session, 999)

    assert stats == {
        "active_alerts": 0,
        "resolved_alerts": 1,
        "ignored_alerts": 1,
        "total_alerts": 2,
    }


async def test_suggestion_status_transitions(ledger, session_factory) -> None:
    await ledger.create(1, "SKU-1", 30, reorder_level=20, max_stock_level=100)
    await ledger.confirm_deduction(1, 25, "order-1")
    async with session_factory() as session:
        suggestion_id = (await alerts.list_suggestions(session))[0].id

    async with session_factory() as session, session.begin():
        approved = await alerts.update_suggestion_status(
            session, suggestion_id, SuggestionStatus.APPROVED, processed_by="buyer"
        )
        assert approved.processed_at is not None
        ordered = await alerts.update_suggestion_status(
            session, suggestion_id, SuggestionStatus.ORDERED, notes="PO-44"
        )
        assert ordered.notes == "PO-44"

    async with session_factory() as session:
        with pytest.raises(ValidationError):
            await alerts.update_suggestion_status(
                session, suggestion_id, SuggestionStatus.REJECTED
            )
        with pytest.raises(NotFoundError):
            await alerts.update_suggestion_status(session, 404, SuggestionStatus.APPROVED)
        assert await alerts.list_suggestions(session) == []
        ordered_rows = await alerts.list_suggestions(session, status=SuggestionStatus.ORDERED)
    assert [row.id for row in ordered_rows] == [suggestion_id]


async def test_upsert_on_unsupported_dialect_is_storage_failure() -> None:
    bind = SimpleNamespace(dialect=SimpleNamespace(name="mssql"))
    session = SimpleNamespace(get_bind=lambda: bind)

    with pytest.raises(StorageFailureError) as excinfo:
        await alerts.upsert_alert(
            session, product_id=1, sku="SKU-1", current_quantity=1, reorder_level=5
        )
    assert excinfo.value.to_dict()["code"] == "STORAGE_FAILURE"
    assert excinfo.value.status_code == 500
