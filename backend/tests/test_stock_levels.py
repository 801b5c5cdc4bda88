from types import SimpleNamespace

import pytest

from duka.services.stock_levels import classify, levels_for

from conftest import receive


@pytest.mark.parametrize("total,quantities,min_level,max_level,expected", [
    (0, [0, 0], 10, None, "out_of_stock"),
    (-2, [-2], 10, None, "out_of_stock"),
    (15, [5, 10], 10, None, "low_stock"),
    (50, [25, 25], 10, 20, "overstock"),
    (50, [25, 25], 10, None, "normal"),
    (30, [30, 0], 10, 20, "normal"),
])
def test_classify(total, quantities, min_level, max_level, expected):
    assert classify(total, quantities, min_level, max_level) == expected


def test_levels_fall_back_to_threshold():
    product = SimpleNamespace(reorder_point=None, reorder_quantity=None)
    assert levels_for(product, 10) == (10, None)
    product = SimpleNamespace(reorder_point=3, reorder_quantity=20)
    assert levels_for(product, 10) == (3, 40)


def test_stock_levels_endpoint(client, headers, warehouse, product):
    location_id = warehouse["location"]["id"]
    receive(client, headers, product["id"], location_id, 5)
    other = client.post("/api/products/", json={
        "name": "Bread", "sku": "BRD-1", "base_price": "50", "reorder_point": 2,
    }, headers=headers).json()
    receive(client, headers, other["id"], location_id, 40)
    client.post("/api/products/", json={"name": "Zucchini", "sku": "ZUC-1", "base_price": "5"}, headers=headers)

    resp = client.get("/api/stock/levels", params={"warehouseId": location_id}, headers=headers)
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["total"] == 3
    by_name = {item["product_name"]: item for item in body["data"]}
    assert by_name["Soda"]["status"] == "low_stock"
    assert by_name["Bread"]["status"] == "normal"
    assert by_name["Zucchini"]["status"] == "out_of_stock"
    assert by_name["Soda"]["locations"][0]["quantity"] == 5

    resp = client.get("/api/stock/levels",
                      params={"status": "low_stock", "sortBy": "total_quantity", "sortOrder": "desc"},
                      headers=headers)
    assert [i["product_name"] for i in resp.json()["data"]] == ["Soda"]

    resp = client.get("/api/stock/levels", params={"search": "brd"}, headers=headers)
    assert [i["sku"] for i in resp.json()["data"]] == ["BRD-1"]


def test_stock_levels_rejects_unknown_sort(client, headers):
    resp = client.get("/api/stock/levels", params={"sortBy": "price"}, headers=headers)
    assert resp.status_code == 400
