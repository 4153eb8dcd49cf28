"""FastAPI router configuration."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Sequence

from fastapi import APIRouter, Depends, FastAPI, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import alerts, crud, movements, schemas
from .catalog import ProductCatalogClient, get_catalog
from .config import Settings, get_settings
from .database import get_session, get_session_factory
from .exceptions import ErrorCode, LedgerError, NotFoundError, StorageFailureError
from .ledger import InventoryLedger
from .models import AlertStatus, MovementType, SuggestionStatus

logger = logging.getLogger(__name__)

router = APIRouter()


def provide_settings() -> Settings:
    """Dependency returning the active :class:`Settings` instance."""

    return get_settings()


def get_ledger(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    catalog: ProductCatalogClient = Depends(get_catalog),
) -> InventoryLedger:
    return InventoryLedger(session_factory, catalog)


@router.get("/health", response_model=schemas.HealthStatus, tags=["system"])
async def health_check(settings: Settings = Depends(provide_settings)) -> schemas.HealthStatus:
    return schemas.HealthStatus(environment=settings.environment)


@router.post(
    "/inventory",
    response_model=schemas.InventoryOut,
    status_code=status.HTTP_201_CREATED,
)
async def create_inventory(
    payload: schemas.InventoryCreate, ledger: InventoryLedger = Depends(get_ledger)
) -> schemas.InventoryOut:
    record = await ledger.create(
        payload.product_id,
        payload.sku,
        payload.quantity,
        reorder_level=payload.reorder_level,
        max_stock_level=payload.max_stock_level,
        warehouse_location=payload.warehouse_location,
        performed_by=payload.performed_by,
    )
    return schemas.InventoryOut.model_validate(record)


@router.get("/inventory", response_model=list[schemas.InventoryOut])
async def list_inventory(
    low_stock: bool = False, session: AsyncSession = Depends(get_session)
) -> Sequence[schemas.InventoryOut]:
    records = await crud.list_records(session, low_stock=low_stock)
    return [schemas.InventoryOut.model_validate(record) for record in records]


@router.post("/inventory/bulk-check", response_model=schemas.BulkCheckResult)
async def bulk_stock_check(
    payload: schemas.BulkCheckRequest, ledger: InventoryLedger = Depends(get_ledger)
) -> schemas.BulkCheckResult:
    result = await ledger.bulk_stock_check(item.model_dump() for item in payload.items)
    return schemas.BulkCheckResult.model_validate(result)


@router.post("/inventory/reserve", response_model=schemas.InventoryOut)
async def reserve_stock(
    payload: schemas.OrderStockRequest, ledger: InventoryLedger = Depends(get_ledger)
) -> schemas.InventoryOut:
    record = await ledger.reserve(payload.product_id, payload.quantity, payload.order_id)
    return schemas.InventoryOut.model_validate(record)


@router.post("/inventory/release", response_model=schemas.InventoryOut)
async def release_stock(
    payload: schemas.OrderStockRequest, ledger: InventoryLedger = Depends(get_ledger)
) -> schemas.InventoryOut:
    record = await ledger.release(payload.product_id, payload.quantity, payload.order_id)
    return schemas.InventoryOut.model_validate(record)


@router.post("/inventory/confirm-deduction", response_model=schemas.InventoryOut)
async def confirm_deduction(
    payload: schemas.OrderStockRequest, ledger: InventoryLedger = Depends(get_ledger)
) -> schemas.InventoryOut:
    record = await ledger.confirm_deduction(
        payload.product_id, payload.quantity, payload.order_id
    )
    return schemas.InventoryOut.model_validate(record)


@router.post("/inventory/return", response_model=schemas.InventoryOut)
async def return_stock(
    payload: schemas.OrderStockRequest, ledger: InventoryLedger = Depends(get_ledger)
) -> schemas.InventoryOut:
    record = await ledger.return_stock(payload.product_id, payload.quantity, payload.order_id)
    return schemas.InventoryOut.model_validate(record)


@router.post("/inventory/receive", response_model=schemas.InventoryOut)
async def receive_stock(
    payload: schemas.ReceiveStockRequest, ledger: InventoryLedger = Depends(get_ledger)
) -> schemas.InventoryOut:
    record = await ledger.receive_stock(
        payload.product_id,
        payload.quantity,
        payload.supplier_order_id,
        payload.notes,
        performed_by=payload.performed_by,
    )
    return schemas.InventoryOut.model_validate(record)


@router.post("/inventory/adjust", response_model=schemas.InventoryOut)
async def adjust_stock(
    payload: schemas.StockAdjustment, ledger: InventoryLedger = Depends(get_ledger)
) -> schemas.InventoryOut:
    record = await ledger.adjust_stock(
        payload.product_id,
        MovementType(payload.movement_type),
        payload.quantity,
        notes=payload.notes,
        performed_by=payload.performed_by,
    )
    return schemas.InventoryOut.model_validate(record)


@router.get("/inventory/movements", response_model=list[schemas.StockMovementOut])
async def list_movements(
    product_id: int | None = None,
    movement_type: MovementType | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(provide_settings),
) -> Sequence[schemas.StockMovementOut]:
    rows = await movements.list_filtered(
        session,
        product_id=product_id,
        movement_type=movement_type,
        start_date=start_date,
        end_date=end_date,
        limit=settings.movement_page_size,
    )
    return [schemas.StockMovementOut.model_validate(row) for row in rows]


@router.get("/inventory/history/{product_id}", response_model=list[schemas.StockMovementOut])
async def stock_history(
    product_id: int,
    limit: int | None = Query(None, gt=0, le=1000),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(provide_settings),
) -> Sequence[schemas.StockMovementOut]:
    rows = await movements.list_by_product(
        session, product_id, limit=limit or settings.history_default_limit
    )
    return [schemas.StockMovementOut.model_validate(row) for row in rows]


@router.get("/inventory/analytics", response_model=schemas.InventoryAnalytics)
async def inventory_analytics(
    session: AsyncSession = Depends(get_session),
) -> schemas.InventoryAnalytics:
    return schemas.InventoryAnalytics.model_validate(await crud.inventory_analytics(session))


@router.get("/inventory/alerts", response_model=list[schemas.AlertWithStockOut])
async def list_alerts(
    status_filter: AlertStatus = Query(AlertStatus.ACTIVE, alias="status"),
    session: AsyncSession = Depends(get_session),
) -> Sequence[schemas.AlertWithStockOut]:
    rows = await alerts.list_alerts(session, status=status_filter)
    return [
        schemas.AlertWithStockOut(
            **schemas.StockAlertOut.model_validate(row["alert"]).model_dump(),
            warehouse_location=row["warehouse_location"],
            actual_quantity=row["actual_quantity"],
            reserved_quantity=row["reserved_quantity"],
        )
        for row in rows
    ]


@router.post("/inventory/alerts/check", response_model=list[schemas.StockAlertOut])
async def check_low_stock(
    session: AsyncSession = Depends(get_session),
) -> Sequence[schemas.StockAlertOut]:
    created = await alerts.check_low_stock(session)
    await session.commit()
    return [schemas.StockAlertOut.model_validate(alert) for alert in created]


@router.get("/inventory/alerts/stats", response_model=schemas.AlertStats)
async def alert_stats(
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(provide_settings),
) -> schemas.AlertStats:
    stats = await alerts.alert_stats(session, window_days=settings.alert_stats_window_days)
    return schemas.AlertStats.model_validate(stats)


@router.patch("/inventory/alerts/{alert_id}/resolve", response_model=schemas.StockAlertOut)
async def resolve_alert(
    alert_id: int,
    payload: schemas.AlertAction | None = None,
    session: AsyncSession = Depends(get_session),
) -> schemas.StockAlertOut:
    resolved_by = payload.resolved_by if payload else None
    alert = await alerts.resolve_alert(session, alert_id, resolved_by=resolved_by)
    await session.commit()
    logger.info("Low stock alert %s resolved by %s", alert_id, resolved_by)
    return schemas.StockAlertOut.model_validate(alert)


@router.patch("/inventory/alerts/{alert_id}/ignore", response_model=schemas.StockAlertOut)
async def ignore_alert(
    alert_id: int,
    payload: schemas.AlertAction | None = None,
    session: AsyncSession = Depends(get_session),
) -> schemas.StockAlertOut:
    resolved_by = payload.resolved_by if payload else None
    alert = await alerts.ignore_alert(session, alert_id, resolved_by=resolved_by)
    await session.commit()
    return schemas.StockAlertOut.model_validate(alert)


@router.get("/inventory/reorder-suggestions", response_model=list[schemas.ReorderSuggestionOut])
async def list_reorder_suggestions(
    status_filter: SuggestionStatus = Query(SuggestionStatus.PENDING, alias="status"),
    session: AsyncSession = Depends(get_session),
) -> Sequence[schemas.ReorderSuggestionOut]:
    suggestions = await alerts.list_suggestions(session, status=status_filter)
    return [schemas.ReorderSuggestionOut.model_validate(row) for row in suggestions]


@router.patch(
    "/inventory/reorder-suggestions/{suggestion_id}",
    response_model=schemas.ReorderSuggestionOut,
)
async def update_reorder_suggestion(
    suggestion_id: int,
    payload: schemas.SuggestionStatusUpdate,
    session: AsyncSession = Depends(get_session),
) -> schemas.ReorderSuggestionOut:
    suggestion = await alerts.update_suggestion_status(
        session,
        suggestion_id,
        SuggestionStatus(payload.status),
        processed_by=payload.processed_by,
        notes=payload.notes,
    )
    await session.commit()
    return schemas.ReorderSuggestionOut.model_validate(suggestion)


@router.get("/inventory/product/{product_id}", response_model=schemas.InventoryDetailOut)
async def get_inventory_by_product(
    product_id: int,
    session: AsyncSession = Depends(get_session),
    catalog: ProductCatalogClient = Depends(get_catalog),
) -> schemas.InventoryDetailOut:
    record = await crud.get_record(session, product_id)
    if record is None:
        raise NotFoundError("Inventory for product", product_id)
    product_name = await catalog.resolve_product_name(product_id)
    return schemas.InventoryDetailOut(
        **schemas.InventoryOut.model_validate(record).model_dump(),
        product_name=product_name,
    )


@router.put("/inventory/product/{product_id}", response_model=schemas.InventoryOut)
async def update_inventory_settings(
    product_id: int,
    payload: schemas.InventorySettingsUpdate,
    ledger: InventoryLedger = Depends(get_ledger),
) -> schemas.InventoryOut:
    record = await ledger.update_settings(product_id, **payload.model_dump(exclude_unset=True))
    return schemas.InventoryOut.model_validate(record)


@router.delete("/inventory/product/{product_id}", response_model=schemas.MessageOut)
async def delete_inventory(
    product_id: int, ledger: InventoryLedger = Depends(get_ledger)
) -> schemas.MessageOut:
    await ledger.delete(product_id)
    return schemas.MessageOut(message="Inventory deleted successfully")


@router.get("/inventory/{record_id}", response_model=schemas.InventoryOut)
async def get_inventory(
    record_id: int, session: AsyncSession = Depends(get_session)
) -> schemas.InventoryOut:
    record = await crud.get_record_by_id(session, record_id)
    if record is None:
        raise NotFoundError("Inventory", record_id)
    return schemas.InventoryOut.model_validate(record)


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    logger.warning(
        "%s %s failed: %s - %s", request.method, request.url.path, exc.code.value, exc.detail
    )
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [
        {"field": ".".join(str(part) for part in error["loc"][1:]), "message": error["msg"]}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "success": False,
            "code": ErrorCode.VALIDATION_ERROR.value,
            "message": "Validation error",
            "details": {"errors": errors},
        },
    )


async def storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("Storage failure on %s %s", request.method, request.url.path)
    failure = StorageFailureError(
        "Storage failure, no changes were applied",
        retryable=isinstance(exc, OperationalError),
    )
    return await ledger_error_handler(request, failure)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    app = FastAPI(title=settings.app_name)
    app.dependency_overrides[provide_settings] = lambda: settings
    app.add_exception_handler(LedgerError, ledger_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(SQLAlchemyError, storage_error_handler)
    app.include_router(router)
    return app


app = create_app()


__all__ = ["app", "create_app", "get_ledger"]
