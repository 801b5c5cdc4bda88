import asyncio
import io
from decimal import Decimal

import pytest
from fastapi import HTTPException, UploadFile

from duka.api.api_v1.endpoints.uploads import read_limited
from duka.core.config import settings
from duka.main import app
from duka.services.storage import LocalFileStorage, get_storage

from conftest import receive, dec


def test_category_tree(client, headers):
    root = client.post("/api/categories/", json={"name": "Food"}, headers=headers).json()
    child = client.post("/api/categories/", json={"name": "Snacks", "parent_id": root["id"]}, headers=headers).json()

    cycle = client.put(f"/api/categories/{root['id']}", json={"parent_id": child["id"]}, headers=headers)
    assert cycle.status_code == 400

    blocked = client.delete(f"/api/categories/{root['id']}", headers=headers)
    assert blocked.status_code == 400


def test_category_product_count(client, headers, product):
    categories = client.get("/api/categories/", headers=headers).json()
    assert [(c["name"], c["product_count"]) for c in categories] == [("Drinks", 1)]


def test_product_with_variants(client, headers):
    resp = client.post("/api/products/", json={
        "name": "Coffee", "sku": "COF-1", "base_price": "250",
        "image_urls": ["http://cdn/a.png", "http://cdn/b.png"],
        "variants": [{"name": "Large", "sku": "COF-1-L", "price_modifier": "50"}],
    }, headers=headers)
    assert resp.status_code == 200, resp.text
    product = resp.json()
    assert product["image_urls"] == ["http://cdn/a.png", "http://cdn/b.png"]
    assert dec(product["variants"][0]["unit_price"]) == Decimal("300")

    dup = client.post("/api/products/", json={"name": "Copy", "sku": "COF-1", "base_price": "1"}, headers=headers)
    assert dup.status_code == 400

    resp = client.post(f"/api/products/{product['id']}/variants",
                       json={"name": "Small", "sku": "COF-1-S", "price_modifier": "-50"}, headers=headers)
    assert resp.status_code == 200
    assert dec(resp.json()["unit_price"]) == Decimal("200")
    detail = client.get(f"/api/products/{product['id']}", headers=headers).json()
    assert len(detail["variants"]) == 2

    quote = client.post("/api/pos/quote", json={
        "items": [{"product_id": product["id"], "variant_id": product["variants"][0]["id"], "quantity": 1}],
    }, headers=headers).json()
    assert dec(quote["subtotal"]) == Decimal("300.00")
    assert quote["lines"][0]["name"] == "Coffee (Large)"


def test_update_product(client, headers, product):
    resp = client.put(f"/api/products/{product['id']}",
                      json={"base_price": "120", "image_urls": ["http://cdn/soda.png"]}, headers=headers)
    assert resp.status_code == 200
    assert dec(resp.json()["base_price"]) == Decimal("120")
    assert resp.json()["image_urls"] == ["http://cdn/soda.png"]


def test_delete_product_with_stock(client, headers, warehouse, product):
    receive(client, headers, product["id"], warehouse["location"]["id"], 3)
    assert client.delete(f"/api/products/{product['id']}", headers=headers).status_code == 400


@pytest.fixture
def storage(client, tmp_path):
    app.dependency_overrides[get_storage] = lambda: LocalFileStorage(str(tmp_path / "uploads"))
    return tmp_path / "uploads"


def test_upload(client, headers, storage):
    resp = client.post("/api/upload", files={"file": ("soda.png", b"\x89PNG fake", "image/png")}, headers=headers)
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["size"] == 9
    assert body["url"].endswith(body["path"])
    assert (storage / body["path"]).read_bytes() == b"\x89PNG fake"


def test_upload_rejections(client, headers, storage):
    empty = client.post("/api/upload", files={"file": ("a.png", b"", "image/png")}, headers=headers)
    assert empty.status_code == 400
    script = client.post("/api/upload", files={"file": ("run.sh", b"echo", "text/plain")}, headers=headers)
    assert script.status_code == 400


def test_upload_over_size_limit(client, headers, storage, monkeypatch):
    monkeypatch.setattr(settings, "MAX_UPLOAD_SIZE_MB", 0)
    resp = client.post("/api/upload", files={"file": ("soda.png", b"\x89PNG fake", "image/png")}, headers=headers)
    assert resp.status_code == 413
    assert not storage.exists()


def test_read_limited_stops_at_limit_without_declared_size():
    upload = UploadFile(file=io.BytesIO(b"x" * 10))
    assert asyncio.run(read_limited(upload, 10)) == b"x" * 10

    upload = UploadFile(file=io.BytesIO(b"x" * 10))
    with pytest.raises(HTTPException) as exc:
        asyncio.run(read_limited(upload, 4))
    assert exc.value.status_code == 413


def test_scheduler_status(client):
    body = client.get("/api/system/scheduler").json()
    assert body["running"] is False
    assert body["jobs"] == []
