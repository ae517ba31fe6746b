from datetime import timedelta

from database import now


def test_bank_account_crud(client, admin_headers, reseller_headers):
    payload = {"bank_name": "BCA", "account_holder": "Toko Rina", "account_number": "1234567890"}
    assert client.post("/api/bank-accounts", headers=reseller_headers, json=payload).status_code == 403
    created = client.post("/api/bank-accounts", headers=admin_headers, json=payload)
    assert created.status_code == 201
    account_id = created.json()["id"]

    # Resellers read the accounts to pay into
    listing = client.get("/api/bank-accounts", headers=reseller_headers).json()
    assert [a["bank_name"] for a in listing] == ["BCA"]

    updated = client.put(f"/api/bank-accounts/{account_id}", headers=admin_headers,
                         json=dict(payload, bank_name="Mandiri"))
    assert updated.json()["bank_name"] == "Mandiri"
    assert client.delete(f"/api/bank-accounts/{account_id}", headers=admin_headers).status_code == 200


def test_category_rename_cascades_and_delete_guard(client, db, admin_headers, make_product):
    created = client.post("/api/categories", headers=admin_headers, json={"name": "Skincare"})
    assert created.status_code == 201
    assert client.post("/api/categories", headers=admin_headers, json={"name": "Skincare"}).status_code == 409
    product = make_product(category="Skincare")
    category_id = created.json()["id"]

    assert client.delete(f"/api/categories/{category_id}", headers=admin_headers).status_code == 409
    client.put(f"/api/categories/{category_id}", headers=admin_headers, json={"name": "Face Care"})
    assert db["products"].find_one({"_id": product["_id"]})["category"] == "Face Care"


def test_notifications_mark_read(client, admin_headers, reseller_headers, make_product):
    product = make_product()
    client.post("/api/cart", headers=reseller_headers, json={"product_id": str(product["_id"])})
    client.post("/api/checkout", headers=reseller_headers, json={
        "customer_details": {"name": "Rina", "address": "Jl. Melati 5", "whatsapp": "0812"},
        "shipping_method": "pickup",
    })
    unread = client.get("/api/notifications", params={"unread_only": "true"}, headers=admin_headers).json()
    assert [n["type"] for n in unread] == ["new_order"]
    client.post(f"/api/notifications/{unread[0]['id']}/read", headers=admin_headers)
    assert client.get("/api/notifications", params={"unread_only": "true"}, headers=admin_headers).json() == []


def test_dashboard_counts_delivered_revenue(client, admin_headers, reseller, make_product, make_order):
    product = make_product(price=50000, stock=10)
    make_product(stock=2)
    make_order([(product, 2)], status="Delivered")
    make_order([(product, 1)], status="Pending")

    body = client.get("/api/reports/dashboard", headers=admin_headers).json()
    assert body["revenue"] == 115000
    assert body["delivered_orders"] == 1
    assert body["resellers"] == 1
    assert body["products"] == 2
    assert body["low_stock"] == 1
    assert len(body["monthly_revenue"]) == 6
    assert body["monthly_revenue"][-1]["revenue"] == 115000


def test_sales_summary_counts_shipped_and_delivered(client, admin_headers, make_product, make_order):
    product = make_product(price=10000, stock=50)
    make_order([(product, 1)], status="Shipped", shipping_fee=0)
    make_order([(product, 3)], status="Delivered", shipping_fee=0)
    make_order([(product, 5)], status="Cancelled", shipping_fee=0)
    make_order([(product, 1)], status="Delivered", shipping_fee=0, date=now() - timedelta(days=60))

    body = client.get("/api/reports/sales", headers=admin_headers).json()
    assert body["revenue"] == 40000
    assert body["order_count"] == 2
    assert body["average_order_value"] == 20000

    sales = client.get("/api/reports/product-sales", headers=admin_headers).json()
    assert sales == [{"product_id": str(product["_id"]), "name": product["name"], "quantity": 4, "revenue": 40000}]


def test_receivables_and_inventory_valuation(client, admin_headers, make_product, make_order):
    product = make_product(price=50000, stock=10, purchase_price=30000)
    make_order([(product, 1)], status="Shipped")
    make_order([(product, 1)], status="Delivered", payment_status="Paid")
    make_order([(product, 1)], status="Pending")

    receivables = client.get("/api/reports/receivables", headers=admin_headers).json()
    assert receivables["total_outstanding"] == 65000
    assert len(receivables["orders"]) == 1

    valuation = client.get("/api/reports/inventory-valuation", headers=admin_headers).json()
    assert valuation["total_value"] == 7 * 30000


def test_supplier_crud(client, admin_headers, reseller_headers):
    payload = {"name": "PT Sumber Cantik", "address": "Jl. Braga 10", "whatsapp": "0813"}
    assert client.post("/api/suppliers", headers=reseller_headers, json=payload).status_code == 403
    created = client.post("/api/suppliers", headers=admin_headers, json=payload)
    assert created.status_code == 201
    supplier_id = created.json()["id"]
    client.post("/api/suppliers", headers=admin_headers, json={"name": "CV Anugrah"})

    names = [s["name"] for s in client.get("/api/suppliers", headers=admin_headers).json()]
    assert names == ["CV Anugrah", "PT Sumber Cantik"]
    updated = client.put(f"/api/suppliers/{supplier_id}", headers=admin_headers, json=dict(payload, whatsapp="0899"))
    assert updated.json()["whatsapp"] == "0899"
    assert client.post("/api/suppliers", headers=admin_headers, json={"name": ""}).status_code == 422
    assert client.delete(f"/api/suppliers/{supplier_id}", headers=admin_headers).status_code == 200


def test_operational_expenses(client, db, admin_headers):
    single = client.post("/api/operational-expenses", headers=admin_headers, json={
        "category": "electricity", "amount": "Rp 350.000", "description": "PLN June",
    })
    assert single.status_code == 201
    assert single.json()["amount"] == 350000

    batch = client.post("/api/operational-expenses/batch", headers=admin_headers, json={"items": [
        {"category": "salary", "amount": 2000000},
        {"category": "misc", "amount": 50000, "date": (now() - timedelta(days=90)).isoformat()},
    ]})
    assert batch.json()["total"] == 2050000

    assert client.post("/api/operational-expenses", headers=admin_headers,
                       json={"category": "rent", "amount": 1000}).status_code == 422
    assert client.post("/api/operational-expenses", headers=admin_headers,
                       json={"category": "misc", "amount": 0}).status_code == 422

    recent = client.get("/api/operational-expenses", headers=admin_headers,
                        params={"start": (now() - timedelta(days=30)).isoformat()}).json()
    assert recent["total"] == 2350000
    salary = client.get("/api/operational-expenses", headers=admin_headers, params={"category": "salary"}).json()
    assert [e["amount"] for e in salary["expenses"]] == [2000000]

    expense_id = single.json()["id"]
    assert client.delete(f"/api/operational-expenses/{expense_id}", headers=admin_headers).status_code == 200
    assert db["operational_expenses"].count_documents({}) == 2


def test_profit_loss(client, db, admin_headers, make_product, make_order):
    serum = make_product(price=50000, purchase_price=30000, stock=20)
    toner = make_product(price=20000, purchase_price=12000, stock=20)
    make_order([(serum, 2), (toner, 1)], status="Delivered", shipping_fee=0)
    make_order([(serum, 1)], status="Shipped", shipping_fee=10000)
    make_order([(toner, 5)], status="Pending", shipping_fee=0)
    make_order([(serum, 4)], status="Cancelled", shipping_fee=0)
    client.post("/api/operational-expenses", headers=admin_headers, json={"category": "salary", "amount": 40000})
    client.post("/api/operational-expenses", headers=admin_headers, json={
        "category": "misc", "amount": 99000, "date": (now() - timedelta(days=90)).isoformat(),
    })

    body = client.get("/api/reports/profit-loss", headers=admin_headers).json()
    assert body["revenue"] == 120000 + 60000
    assert body["cogs"] == 3 * 30000 + 12000
    assert body["gross_profit"] == 180000 - 102000
    assert body["expenses"] == 40000
    assert body["expenses_by_category"] == {"salary": 40000}
    assert body["net_profit"] == 78000 - 40000
