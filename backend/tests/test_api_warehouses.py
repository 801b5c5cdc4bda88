import pytest

from duka.models import InventoryLocation, StorageUnit

from conftest import receive, dec


@pytest.fixture
def stocked(client, headers, warehouse, product):
    resp = receive(client, headers, product["id"], warehouse["location"]["id"], 45,
                   position_id=warehouse["positions"]["A1"])
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_location_code_and_listing(client, headers, warehouse):
    assert warehouse["location"]["code"] == "WH0001"
    shop = client.post("/api/warehouses/", json={"name": "Front", "location_type": "RETAIL_SHOP"},
                       headers=headers).json()
    assert shop["code"] == "RS0001"

    listed = client.get("/api/warehouses/", headers=headers).json()
    assert listed["total"] == 2


def test_unit_positions(client, headers, warehouse):
    location_id = warehouse["location"]["id"]
    assert len(warehouse["unit"]["positions"]) == 4

    dup = client.post(f"/api/warehouses/{location_id}/units",
                      json={"name": "Bin", "positions": ["B1", "B1"]}, headers=headers)
    assert dup.status_code == 400

    resp = client.post(f"/api/warehouses/{location_id}/units/{warehouse['unit']['id']}/positions",
                       json={"identifier": "A5"}, headers=headers)
    assert resp.status_code == 200
    again = client.post(f"/api/warehouses/{location_id}/units/{warehouse['unit']['id']}/positions",
                        json={"identifier": "A5"}, headers=headers)
    assert again.status_code == 400

    positions = client.get(f"/api/warehouses/{location_id}/positions", headers=headers).json()
    assert [p["identifier"] for p in positions] == ["A1", "A2", "A3", "A4", "A5"]


def test_unit_rejects_foreign_zone(client, headers, warehouse):
    other = client.post("/api/warehouses/", json={"name": "Second"}, headers=headers).json()
    resp = client.post(f"/api/warehouses/{other['id']}/units",
                       json={"name": "Rack", "zone_id": warehouse["zone"]["id"]}, headers=headers)
    assert resp.status_code == 400


def test_capacity_report(client, headers, warehouse, stocked):
    resp = client.get(f"/api/warehouses/{warehouse['location']['id']}/capacity", headers=headers)
    assert resp.status_code == 200, resp.text
    report = resp.json()
    assert report["warehouse"]["utilization"] == 4.5
    assert report["warehouse"]["status"] == "normal"
    assert report["units"][0]["utilization"] == 9.0
    assert report["zones"][0]["utilization"] == 5.63
    assert report["categories"] == [
        {"category_id": report["categories"][0]["category_id"], "category_name": "Drinks",
         "quantity": 45, "share": 100.0},
    ]


def test_capacity_of_unknown_location(client, headers):
    assert client.get("/api/warehouses/9999/capacity", headers=headers).status_code == 404


def test_reconcile_capacity(client, headers, run_db, warehouse, stocked):
    async def tamper(db):
        location = await db.get(InventoryLocation, warehouse["location"]["id"])
        unit = await db.get(StorageUnit, warehouse["unit"]["id"])
        location.capacity_used = 999
        unit.capacity_used = 0
        await db.commit()
    run_db(tamper)

    resp = client.post(f"/api/warehouses/{warehouse['location']['id']}/reconcile-capacity", headers=headers)
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert dec(body["before"]) == dec(999)
    assert dec(body["after"]) == dec(45)
    assert body["units_changed"] == 1
    assert body["zones_changed"] == 0

    logs = client.get("/api/audit-logs/", params={"action": "reconcile"}, headers=headers).json()
    assert logs["total"] == 1


def test_delete_location_with_stock(client, headers, warehouse, stocked):
    resp = client.delete(f"/api/warehouses/{warehouse['location']['id']}", headers=headers)
    assert resp.status_code == 400


def test_adjust_batch(client, headers, warehouse, stocked):
    resp = client.post(f"/api/batches/{stocked['id']}/adjust",
                       json={"quantity_change": -5, "reason": "DAMAGED", "notes": "dropped"},
                       headers=headers)
    assert resp.status_code == 200, resp.text
    adjustment = resp.json()
    assert adjustment["quantity_before"] == 45
    assert adjustment["quantity_after"] == 40

    movements = client.get("/api/stock/movements", params={"movement_type": "ADJUSTMENT"}, headers=headers).json()
    assert movements["total"] == 1
    assert movements["data"][0]["reference"] == f"ADJ{adjustment['id']}"
    assert movements["data"][0]["quantity"] == -5

    capacity = client.get(f"/api/warehouses/{warehouse['location']['id']}/capacity", headers=headers).json()
    assert dec(capacity["warehouse"]["used"]) == dec(40)


def test_adjust_rejects_zero_and_negative(client, headers, stocked):
    zero = client.post(f"/api/batches/{stocked['id']}/adjust",
                       json={"quantity_change": 0, "reason": "OTHER"}, headers=headers)
    assert zero.status_code == 400

    negative = client.post(f"/api/batches/{stocked['id']}/adjust",
                           json={"quantity_change": -50, "reason": "LOST"}, headers=headers)
    assert negative.status_code == 400


def test_adjust_below_zero_when_allowed(client, headers, warehouse, stocked):
    client.put("/api/organizations/current/settings", json={"allow_negative_stock": True}, headers=headers)
    resp = client.post(f"/api/batches/{stocked['id']}/adjust",
                       json={"quantity_change": -50, "reason": "COUNT_CORRECTION"}, headers=headers)
    assert resp.status_code == 200, resp.text
    assert resp.json()["quantity_after"] == -5

    free = client.get(f"/api/warehouses/{warehouse['location']['id']}/positions",
                      params={"available": True}, headers=headers).json()
    assert "A1" in {p["identifier"] for p in free}
    capacity = client.get(f"/api/warehouses/{warehouse['location']['id']}/capacity", headers=headers).json()
    assert dec(capacity["warehouse"]["used"]) == dec(0)


def test_movements_filter_by_location(client, headers, warehouse, stocked):
    resp = client.get("/api/stock/movements",
                      params={"location_id": warehouse["location"]["id"]}, headers=headers)
    body = resp.json()
    assert body["total"] == 1
    assert body["data"][0]["movement_type"] == "RECEIPT"
    assert body["data"][0]["to_position_id"] == warehouse["positions"]["A1"]

    bad = client.get("/api/stock/movements", params={"movement_type": "TELEPORT"}, headers=headers)
    assert bad.status_code == 400


def test_audit_logs(client, headers, warehouse):
    logs = client.get("/api/audit-logs/", params={"resource_type": "location"}, headers=headers).json()
    assert logs["total"] == 1
    assert logs["data"][0]["member_name"] == "Owner"

    bad = client.get("/api/audit-logs/", params={"start_date": "19/10/2026"}, headers=headers)
    assert bad.status_code == 400
