"""
测试夹具

每个测试一个独立的 SQLite 文件库：用同步引擎建表和写入基础数据，
接口请求通过覆盖 get_db 使用 aiosqlite 异步会话。
"""
import asyncio
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool

from duka.core.deps import get_db
from duka.db.base import Base
from duka.main import app
from duka.models import Organization, Member


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "duka_test.db"
    engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(engine)
    engine.dispose()
    return path


@pytest.fixture
def seed(db_path):
    """一个组织 + 店主 + 收银员"""
    engine = create_engine(f"sqlite:///{db_path}")
    with Session(engine) as session:
        org = Organization(name="Test Shop", slug="test-shop", currency="KES", low_stock_threshold=10)
        session.add(org)
        session.flush()
        owner = Member(organization_id=org.id, name="Owner", email="owner@example.com", role="owner")
        cashier = Member(organization_id=org.id, name="Cashier", email="cashier@example.com", role="cashier")
        session.add_all([owner, cashier])
        session.commit()
        data = {"org_id": org.id, "owner_id": owner.id, "cashier_id": cashier.id}
    engine.dispose()
    return data


@pytest.fixture
def session_factory(db_path, seed):
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    return sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
def run_db(session_factory):
    """在独立事件循环里用一个会话执行异步函数：run_db(lambda db: ...)"""
    def _run(fn):
        async def _inner():
            async with session_factory() as db:
                return await fn(db)
        return asyncio.run(_inner())
    return _run


@pytest.fixture
def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def headers(seed):
    return {"X-Organization-Id": str(seed["org_id"]), "X-Member-Id": str(seed["owner_id"])}


@pytest.fixture
def cashier_headers(seed):
    return {"X-Organization-Id": str(seed["org_id"]), "X-Member-Id": str(seed["cashier_id"])}


@pytest.fixture
def warehouse(client, headers):
    """仓库 WH0001：容量 1000，一个库区，一个货架（容量 500，货位 A1..A4）"""
    loc = client.post("/api/warehouses/", json={"name": "Main", "total_capacity": "1000"}, headers=headers)
    assert loc.status_code == 200, loc.text
    location = loc.json()
    zone = client.post(f"/api/warehouses/{location['id']}/zones",
                       json={"name": "Dry", "capacity": "800"}, headers=headers).json()
    unit = client.post(
        f"/api/warehouses/{location['id']}/units",
        json={"name": "Shelf A", "zone_id": zone["id"], "capacity": "500",
              "positions": ["A1", "A2", "A3", "A4"]},
        headers=headers,
    ).json()
    positions = {p["identifier"]: p["id"] for p in unit["positions"]}
    return {"location": location, "zone": zone, "unit": unit, "positions": positions}


@pytest.fixture
def product(client, headers):
    category = client.post("/api/categories/", json={"name": "Drinks"}, headers=headers).json()
    resp = client.post("/api/products/", json={
        "name": "Soda", "sku": "SODA-1", "category_id": category["id"],
        "base_price": "100.00", "buying_price": "60.00",
    }, headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()


def receive(client, headers, product_id, location_id, quantity, position_id=None, price="60.00", **extra):
    body = {
        "product_id": product_id,
        "location_id": location_id,
        "position_id": position_id,
        "quantity": quantity,
        "purchase_price": price,
    }
    body.update(extra)
    return client.post("/api/batches/", json=body, headers=headers)


def dec(value) -> Decimal:
    return Decimal(str(value))
