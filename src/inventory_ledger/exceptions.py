"""Error taxonomy shared by the ledger and its HTTP boundary.

Every caller-facing failure is a :class:`LedgerError` carrying a
machine-readable :class:`ErrorCode`, the HTTP status the boundary layer
answers with, and optional structured details. The FastAPI handlers in
:mod:`inventory_ledger.api` render them as::

    {"success": false, "code": "INSUFFICIENT_STOCK", "message": "...", "details": {...}}
"""
from __future__ import annotations

from enum import Enum
from typing import Any

from fastapi import status


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    STORAGE_FAILURE = "STORAGE_FAILURE"


class LedgerError(Exception):
    """Base class for every error the ledger surfaces to its callers."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: ErrorCode = ErrorCode.STORAGE_FAILURE
    retryable: bool = False

    def __init__(self, detail: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": False,
            "code": self.code.value,
            "message": self.detail,
        }
        if self.details:
            payload["details"] = self.details
        if self.retryable:
            payload["retryable"] = True
        return payload


class ValidationError(LedgerError):
    """Malformed or missing input; nothing was changed."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = ErrorCode.VALIDATION_ERROR


class NotFoundError(LedgerError):
    status_code = status.HTTP_404_NOT_FOUND
    code = ErrorCode.NOT_FOUND

    def __init__(self, resource: str, resource_id: Any) -> None:
        super().__init__(
            f"{resource} {resource_id} not found",
            details={"resource": resource, "id": resource_id},
        )


class ConflictError(LedgerError):
    """Duplicate create, or delete blocked by an outstanding reservation."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = ErrorCode.CONFLICT


class InsufficientStockError(LedgerError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = ErrorCode.INSUFFICIENT_STOCK

    def __init__(self, product_id: int, *, available: int, requested: int) -> None:
        self.product_id = product_id
        self.available = available
        self.requested = requested
        self.shortage = max(requested - available, 0)
        super().__init__(
            f"Insufficient stock for product {product_id}. "
            f"Available: {available}, Required: {requested}",
            details={
                "product_id": product_id,
                "available": available,
                "requested": requested,
                "shortage": self.shortage,
            },
        )


class UpstreamUnavailableError(LedgerError):
    """The product catalog could not be reached on a hard-dependency call."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = ErrorCode.UPSTREAM_UNAVAILABLE
    retryable = True


class StorageFailureError(LedgerError):
    """Transactional I/O failed; the enclosing unit of work was rolled back."""

    code = ErrorCode.STORAGE_FAILURE

    def __init__(self, detail: str, *, retryable: bool = False) -> None:
        super().__init__(detail)
        self.retryable = retryable
        self.status_code = (
            status.HTTP_503_SERVICE_UNAVAILABLE
            if retryable
            else status.HTTP_500_INTERNAL_SERVER_ERROR
        )


__all__ = [
    "ConflictError",
    "ErrorCode",
    "InsufficientStockError",
    "LedgerError",
    "NotFoundError",
    "StorageFailureError",
    "UpstreamUnavailableError",
    "ValidationError",
]
