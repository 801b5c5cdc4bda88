from decimal import Decimal

import pytest

from conftest import receive, dec


@pytest.fixture
def batch(client, headers, warehouse, product):
    resp = receive(client, headers, product["id"], warehouse["location"]["id"], 10,
                   position_id=warehouse["positions"]["A1"])
    assert resp.status_code == 200, resp.text
    return resp.json()


def cash_sale(client, headers, product_id, quantity, paid):
    return client.post("/api/pos/checkout", json={
        "items": [{"product_id": product_id, "quantity": quantity}],
        "payment_method": "CASH",
        "amount_paid": paid,
    }, headers=headers)


def test_quote_uses_default_rates(client, headers, product):
    resp = client.post("/api/pos/quote", json={
        "items": [{"product_id": product["id"], "quantity": 3}],
    }, headers=headers)
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert dec(body["subtotal"]) == Decimal("300.00")
    assert dec(body["discount"]) == Decimal("30.00")
    assert dec(body["tax"]) == Decimal("7.50")
    assert dec(body["total"]) == Decimal("277.50")
    assert body["currency"] == "KES"


def test_quote_uses_organization_rates(client, headers, product):
    client.put("/api/organizations/current/settings",
               json={"default_tax_rate": "0.16", "default_discount_rate": "0"}, headers=headers)
    body = client.post("/api/pos/quote", json={
        "items": [{"product_id": product["id"], "quantity": 1}],
    }, headers=headers).json()
    assert dec(body["total"]) == Decimal("116.00")


def test_cash_checkout(client, cashier_headers, headers, batch, product):
    resp = cash_sale(client, cashier_headers, product["id"], 3, "300")
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["state"] == "success"
    assert dec(body["change_due"]) == Decimal("22.50")
    sale = body["sale"]
    assert sale["member_name"] == "Cashier"
    assert len(sale["items"]) == 1
    assert sale["items"][0]["batch_id"] == batch["id"]

    stock = client.get(f"/api/batches/{batch['id']}", headers=headers).json()
    assert stock["current_quantity"] == 7


def test_insufficient_cash_creates_no_sale(client, cashier_headers, batch, product):
    resp = cash_sale(client, cashier_headers, product["id"], 3, "100")
    assert resp.status_code == 400
    assert client.get("/api/sales/", headers=cashier_headers).json()["total"] == 0
    stock = client.get(f"/api/batches/{batch['id']}", headers=cashier_headers).json()
    assert stock["current_quantity"] == 10


def test_insufficient_stock(client, cashier_headers, batch, product):
    resp = cash_sale(client, cashier_headers, product["id"], 11, "5000")
    assert resp.status_code == 409


def test_cash_requires_amount(client, cashier_headers, product):
    resp = client.post("/api/pos/checkout", json={
        "items": [{"product_id": product["id"], "quantity": 1}],
        "payment_method": "CASH",
    }, headers=cashier_headers)
    assert resp.status_code == 422


def test_receipt_pdf(client, cashier_headers, batch, product):
    sale = cash_sale(client, cashier_headers, product["id"], 2, "500").json()["sale"]
    resp = client.get(f"/api/sales/{sale['id']}/receipt", headers=cashier_headers)
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/pdf"
    assert resp.content.startswith(b"%PDF")


def test_return_flow(client, headers, cashier_headers, batch, product):
    sale = cash_sale(client, cashier_headers, product["id"], 3, "300").json()["sale"]
    item_id = sale["items"][0]["id"]

    resp = client.post("/api/sales/returns", json={
        "sale_id": sale["id"],
        "reason": "DEFECTIVE",
        "items": [{"sale_item_id": item_id, "quantity": 2, "restock": True}],
    }, headers=cashier_headers)
    assert resp.status_code == 200, resp.text
    ret = resp.json()
    assert ret["status"] == "PENDING"
    assert ret["sale_number"] == sale["sale_number"]
    # 按实付比例分摊：200 × 277.50 / 300
    assert dec(ret["refund_amount"]) == Decimal("185.00")

    over = client.post("/api/sales/returns", json={
        "sale_id": sale["id"],
        "reason": "DEFECTIVE",
        "items": [{"sale_item_id": item_id, "quantity": 2}],
    }, headers=cashier_headers)
    assert over.status_code == 400

    denied = client.post(f"/api/returns/{ret['id']}/approve", json={}, headers=cashier_headers)
    assert denied.status_code == 403

    approved = client.post(f"/api/returns/{ret['id']}/approve", json={"notes": "ok"}, headers=headers)
    assert approved.status_code == 200, approved.text
    assert approved.json()["status"] == "APPROVED"

    stock = client.get(f"/api/batches/{batch['id']}", headers=headers).json()
    assert stock["current_quantity"] == 9

    detail = client.get(f"/api/sales/{sale['id']}", headers=headers).json()
    assert detail["items"][0]["returned_quantity"] == 2

    again = client.post(f"/api/returns/{ret['id']}/reject", json={}, headers=headers)
    assert again.status_code == 409

    listed = client.get("/api/sales/returns", params={"status": "APPROVED"}, headers=headers).json()
    assert listed["total"] == 1


def test_rejected_return_does_not_restock(client, headers, cashier_headers, batch, product):
    sale = cash_sale(client, cashier_headers, product["id"], 1, "100").json()["sale"]
    ret = client.post("/api/sales/returns", json={
        "sale_id": sale["id"],
        "reason": "NOT_NEEDED",
        "items": [{"sale_item_id": sale["items"][0]["id"], "quantity": 1}],
    }, headers=cashier_headers).json()

    resp = client.post(f"/api/returns/{ret['id']}/reject", json={"notes": "opened"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "REJECTED"
    assert resp.json()["decision_notes"] == "opened"
    stock = client.get(f"/api/batches/{batch['id']}", headers=headers).json()
    assert stock["current_quantity"] == 9


def test_sale_deduction_frees_position(client, headers, cashier_headers, warehouse, batch, product):
    cash_sale(client, cashier_headers, product["id"], 10, "2000")
    positions = client.get(f"/api/warehouses/{warehouse['location']['id']}/positions",
                           params={"available": True}, headers=headers).json()
    assert "A1" in {p["identifier"] for p in positions}
    capacity = client.get(f"/api/warehouses/{warehouse['location']['id']}/capacity", headers=headers).json()
    assert capacity["warehouse"]["used"] in ("0", "0.00", 0)
