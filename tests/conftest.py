from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any, Dict

import httpx
import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from inventory_ledger import crud, models  # noqa: F401
from inventory_ledger.api import create_app
from inventory_ledger.catalog import ProductCatalogClient, get_catalog
from inventory_ledger.config import Settings
from inventory_ledger.database import Base, get_session, get_session_factory
from inventory_ledger.ledger import InventoryLedger


class CatalogStub:
    """In-memory product catalog answering through ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.products: Dict[int, Dict[str, Any]] = {
            product_id: {"id": product_id, "name": f"Coffee beans #{product_id}", "sku": f"SKU-{product_id}"}
            for product_id in range(1, 6)
        }
        self.unreachable = False
        self.calls = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        if self.unreachable:
            raise httpx.ConnectError("catalog down", request=request)
        product_id = int(request.url.path.rsplit("/", 1)[-1])
        product = self.products.get(product_id)
        if product is None:
            return httpx.Response(404, json={"success": False, "message": "Product not found"})
        return httpx.Response(200, json={"success": True, "data": product})


@pytest.fixture()
async def db_engine(tmp_path) -> AsyncIterator[AsyncEngine]:
    db_path = tmp_path / "test.db"
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{db_path}", echo=False, connect_args={"timeout": 10}
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture()
def catalog_stub() -> CatalogStub:
    return CatalogStub()


@pytest.fixture()
def catalog(catalog_stub: CatalogStub) -> ProductCatalogClient:
    return ProductCatalogClient(
        "http://catalog.test", transport=httpx.MockTransport(catalog_stub.handler)
    )


@pytest.fixture()
def ledger(
    session_factory: async_sessionmaker[AsyncSession], catalog: ProductCatalogClient
) -> InventoryLedger:
    return InventoryLedger(session_factory, catalog)


@pytest.fixture()
def fetch_record(session_factory: async_sessionmaker[AsyncSession]):
    async def _fetch(product_id: int) -> models.InventoryRecord | None:
        async with session_factory() as session:
            return await crud.get_record(session, product_id)

    return _fetch


@pytest.fixture()
async def app(
    tmp_path,
    session_factory: async_sessionmaker[AsyncSession],
    catalog: ProductCatalogClient,
) -> AsyncIterator[FastAPI]:
    test_settings = Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        environment="test",
        app_name="Test Inventory Ledger",
    )

    async def override_get_session() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            yield session

    app = create_app(test_settings)
    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_catalog] = lambda: catalog

    yield app


@pytest.fixture()
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
