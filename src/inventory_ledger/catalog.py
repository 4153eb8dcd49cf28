"""Client for the external product catalog service."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from .config import Settings, get_settings
from .exceptions import NotFoundError, UpstreamUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProductInfo:
    id: int
    name: str
    sku: str | None = None


class ProductCatalogClient:
    """Looks products up in the catalog service.

    ``get_product_by_id`` is a hard dependency of inventory creation: a 404
    becomes :class:`NotFoundError`, anything else that prevents an answer
    (connection errors, timeouts, 5xx) becomes :class:`UpstreamUnavailableError`.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 3.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "ProductCatalogClient":
        settings = settings or get_settings()
        return cls(settings.product_service_url, timeout=settings.product_service_timeout)

    async def get_product_by_id(self, product_id: int) -> ProductInfo:
        url = f"{self.base_url}/api/products/{product_id}"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.get(url)
        except httpx.HTTPError as exc:
            logger.error("Error fetching product %s: %s", product_id, exc)
            raise UpstreamUnavailableError(
                f"Product catalog unreachable while fetching product {product_id}"
            ) from exc

        if response.status_code == httpx.codes.NOT_FOUND:
            raise NotFoundError("Product", product_id)
        if response.is_error:
            logger.error(
                "Product catalog answered %s for product %s", response.status_code, product_id
            )
            raise UpstreamUnavailableError(
                f"Product catalog returned {response.status_code} for product {product_id}"
            )

        try:
            return _parse_product(response.json(), product_id)
        except (TypeError, ValueError) as exc:
            raise UpstreamUnavailableError(
                f"Product catalog returned an unreadable payload for product {product_id}"
            ) from exc

    async def resolve_product_name(self, product_id: int) -> str:
        """Best-effort display name; never raises."""

        fallback = f"Product {product_id}"
        try:
            product = await self.get_product_by_id(product_id)
        except (NotFoundError, UpstreamUnavailableError):
            logger.warning("Could not fetch product details for product %s", product_id)
            return fallback
        return product.name or fallback


def _parse_product(payload: Any, product_id: int) -> ProductInfo:
    if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        payload = payload["data"]
    if not isinstance(payload, dict):
        raise ValueError("product payload must be an object")
    return ProductInfo(
        id=int(payload.get("id", product_id)),
        name=str(payload.get("name") or ""),
        sku=payload.get("sku"),
    )


def get_catalog() -> ProductCatalogClient:
    """FastAPI dependency returning the configured catalog client."""

    return ProductCatalogClient.from_settings()


__all__ = ["ProductCatalogClient", "ProductInfo", "get_catalog"]
