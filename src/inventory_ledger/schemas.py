"""Pydantic schemas used by the API."""
from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .models import AlertStatus, AlertType, MovementType, SuggestionStatus

OrderReference = int | str


class InventoryCreate(BaseModel):
    product_id: int = Field(..., gt=0)
    sku: str = Field(..., min_length=1, max_length=100)
    quantity: int = Field(0, ge=0, description="Initial units on hand.")
    warehouse_location: str | None = Field(None, max_length=100)
    reorder_level: int = Field(10, ge=0)
    max_stock_level: int = Field(1000, ge=0)
    performed_by: str | None = None


class InventorySettingsUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    warehouse_location: str | None = Field(None, max_length=100)
    reorder_level: int | None = Field(None, ge=0)
    max_stock_level: int | None = Field(None, ge=0)

    @model_validator(mode="after")
    def _require_one_field(self) -> "InventorySettingsUpdate":
        if not self.model_fields_set:
            raise ValueError("No fields to update")
        return self


class InventoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    sku: str
    quantity: int
    reserved_quantity: int
    available_quantity: int
    reorder_level: int
    max_stock_level: int
    warehouse_location: str | None = None
    last_restocked_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class InventoryDetailOut(InventoryOut):
    product_name: str | None = None


class OrderStockRequest(BaseModel):
    product_id: int = Field(..., gt=0)
    quantity: int = Field(..., gt=0)
    order_id: OrderReference


class ReceiveStockRequest(BaseModel):
    product_id: int = Field(..., gt=0)
    quantity: int = Field(..., gt=0)
    supplier_order_id: OrderReference
    notes: str | None = Field(None, max_length=500)
    performed_by: str | None = None


class StockAdjustment(BaseModel):
    product_id: int = Field(..., gt=0)
    movement_type: Literal["in", "out", "adjustment", "damaged", "expired", "returned"]
    quantity: int = Field(
        ...,
        description="Magnitude for typed movements; signed delta for 'adjustment'.",
    )
    notes: str | None = Field(None, max_length=500)
    performed_by: str | None = None

    @model_validator(mode="after")
    def _check_quantity(self) -> "StockAdjustment":
        if self.quantity == 0:
            raise ValueError("quantity must not be zero")
        if self.movement_type != "adjustment" and self.quantity < 0:
            raise ValueError("quantity must be positive for typed movements")
        return self


class BulkCheckItem(BaseModel):
    product_id: int = Field(..., gt=0)
    quantity: int = Field(..., gt=0)
    sku: str | None = None


class BulkCheckRequest(BaseModel):
    items: list[BulkCheckItem]


class StockCheckResult(BaseModel):
    product_id: int
    sku: str | None = None
    available: bool
    current_stock: int
    requested: int
    reason: str | None = None
    shortage: int | None = None


class BulkCheckResult(BaseModel):
    all_available: bool
    items: list[StockCheckResult]
    unavailable_items: list[StockCheckResult]


class StockMovementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    sku: str
    movement_type: MovementType
    quantity: int
    quantity_change: int
    reference_type: str | None = None
    reference_id: str | None = None
    notes: str | None = None
    performed_by: str | None = None
    created_at: datetime


class StockAlertOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    sku: str
    product_name: str | None = None
    current_quantity: int
    reorder_level: int
    alert_type: AlertType
    status: AlertStatus
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    created_at: datetime
    updated_at: datetime


class AlertWithStockOut(StockAlertOut):
    warehouse_location: str | None = None
    actual_quantity: int | None = None
    reserved_quantity: int | None = None


class AlertAction(BaseModel):
    resolved_by: str | None = None


class AlertStats(BaseModel):
    active_alerts: int
    resolved_alerts: int
    ignored_alerts: int
    total_alerts: int


class ReorderSuggestionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    sku: str
    product_name: str | None = None
    current_quantity: int
    suggested_quantity: int
    status: SuggestionStatus
    processed_at: datetime | None = None
    processed_by: str | None = None
    notes: str | None = None
    created_at: datetime


class SuggestionStatusUpdate(BaseModel):
    status: Literal["approved", "rejected", "ordered"]
    processed_by: str | None = None
    notes: str | None = Field(None, max_length=500)


class InventoryAnalytics(BaseModel):
    total_products: int
    total_stock: int
    total_reserved: int
    low_stock_products: int
    out_of_stock_products: int
    avg_stock_per_product: float | None = None


class MessageOut(BaseModel):
    success: bool = True
    message: str


class HealthStatus(BaseModel):
    status: Literal["ok"] = "ok"
    environment: str


__all__ = [
    "AlertAction",
    "AlertStats",
    "AlertWithStockOut",
    "BulkCheckItem",
    "BulkCheckRequest",
    "BulkCheckResult",
    "HealthStatus",
    "InventoryAnalytics",
    "InventoryCreate",
    "InventoryDetailOut",
    "InventoryOut",
    "InventorySettingsUpdate",
    "MessageOut",
    "OrderStockRequest",
    "ReceiveStockRequest",
    "ReorderSuggestionOut",
    "StockAdjustment",
    "StockAlertOut",
    "StockCheckResult",
    "StockMovementOut",
    "SuggestionStatusUpdate",
]
