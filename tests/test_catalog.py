from __future__ import annotations

import httpx
import pytest

from inventory_ledger.catalog import ProductCatalogClient, ProductInfo
from inventory_ledger.config import Settings
from inventory_ledger.exceptions import NotFoundError, UpstreamUnavailableError


def _client(handler) -> ProductCatalogClient:
    return ProductCatalogClient("http://catalog.test/", transport=httpx.MockTransport(handler))


async def test_fetches_product_from_envelope(catalog) -> None:
    product = await catalog.get_product_by_id(2)
    assert product == ProductInfo(id=2, name="Coffee beans #2", sku="SKU-2")


async def test_accepts_bare_product_payload() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(200, json={"id": 9, "name": "Tea"})

    product = await _client(handler).get_product_by_id(9)

    assert product.name == "Tea"
    assert product.sku is None
    assert seen == ["http://catalog.test/api/products/9"]


async def test_missing_product_is_not_found(catalog) -> None:
    with pytest.raises(NotFoundError):
        await catalog.get_product_by_id(42)


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, json={"message": "boom"}),
        httpx.Response(200, text="<html>maintenance</html>"),
        httpx.Response(200, json=["not", "a", "product"]),
    ],
)
async def test_bad_answers_are_upstream_failures(response: httpx.Response) -> None:
    client = _client(lambda request: response)
    with pytest.raises(UpstreamUnavailableError):
        await client.get_product_by_id(1)


async def test_timeout_is_upstream_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow catalog", request=request)

    with pytest.raises(UpstreamUnavailableError) as excinfo:
        await _client(handler).get_product_by_id(1)
    assert excinfo.value.to_dict()["retryable"] is True


async def test_resolve_product_name_falls_back(catalog, catalog_stub) -> None:
    assert await catalog.resolve_product_name(3) == "Coffee beans #3"
    assert await catalog.resolve_product_name(77) == "Product 77"

    catalog_stub.unreachable = True
    assert await catalog.resolve_product_name(3) == "Product 3"


def test_client_from_settings() -> None:
    settings = Settings(
        product_service_url="http://products.internal:3002/", product_service_timeout=1.5
    )
    client = ProductCatalogClient.from_settings(settings)
    assert client.base_url == "http://products.internal:3002"
    assert client.timeout == 1.5
