from datetime import timedelta

from database import now


def test_adjustment_in_and_out(client, admin_headers, make_product, stock_of):
    product = make_product(stock=5)
    response = client.post("/api/stock/adjustments", headers=admin_headers, json={
        "product_id": str(product["_id"]), "type": "in", "quantity": 3, "reason": "Recount",
    })
    assert response.status_code == 201
    assert (response.json()["previous_stock"], response.json()["new_stock"]) == (5, 8)
    assert stock_of(product) == 8

    listing = client.get("/api/stock/adjustments", params={"product_id": str(product["_id"])},
                         headers=admin_headers).json()
    assert [a["reason"] for a in listing] == ["Recount"]


def test_adjustment_out_beyond_stock_is_rejected(client, admin_headers, make_product, stock_of):
    product = make_product(stock=2)
    response = client.post("/api/stock/adjustments", headers=admin_headers, json={
        "product_id": str(product["_id"]), "type": "out", "quantity": 3, "reason": "Broken",
    })
    assert response.status_code == 400
    assert stock_of(product) == 2


def test_adjustment_requires_reason(client, admin_headers, make_product):
    product = make_product()
    response = client.post("/api/stock/adjustments", headers=admin_headers, json={
        "product_id": str(product["_id"]), "type": "in", "quantity": 1, "reason": "",
    })
    assert response.status_code == 422


def test_stock_flow_report(client, db, admin_headers, make_product, make_order):
    product = make_product(stock=20)
    make_order([(product, 5)], date=now() - timedelta(days=3))
    client.post("/api/purchases", headers=admin_headers, json={
        "items": [{"product_id": str(product["_id"]), "quantity": 10, "purchase_price": 1000}],
        "date": (now() - timedelta(days=2)).isoformat(),
    })
    make_order([(product, 1)], date=now() - timedelta(days=90))

    response = client.get(f"/api/stock/flow/{product['_id']}", headers=admin_headers)
    assert response.status_code == 200
    body = response.json()
    assert [m["type"] for m in body["movements"]] == ["purchase", "sale"]
    assert body["total_in"] == 10
    assert body["total_out"] == 5
    assert body["product"]["stock"] == 24
    assert body["movements"][0]["stock_after"] == 24


def test_stock_flow_rejects_inverted_range(client, admin_headers, make_product):
    product = make_product()
    response = client.get(f"/api/stock/flow/{product['_id']}", headers=admin_headers,
                          params={"start": "2024-02-01T00:00:00", "end": "2024-01-01T00:00:00"})
    assert response.status_code == 400
