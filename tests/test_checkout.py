import pytest

CUSTOMER = {"name": "Rina", "address": "Jl. Melati 5, Bandung", "whatsapp": "081234567890"}


@pytest.fixture
def cart_with(client, reseller_headers):
    def fill(*lines):
        for product, quantity in lines:
            response = client.post("/api/cart", headers=reseller_headers,
                                   json={"product_id": str(product["_id"]), "quantity": quantity})
            assert response.status_code == 200, response.text
    return fill


def checkout(client, auth_headers, **overrides):
    payload = {"customer_details": CUSTOMER, "shipping_method": "expedition", "payment_method": "bank_transfer"}
    payload.update(overrides)
    extra = payload.pop("headers", {})
    return client.post("/api/checkout", headers=dict(auth_headers, **extra), json=payload)


def test_checkout_creates_pending_order_and_takes_stock(client, db, reseller, reseller_headers, make_product,
                                                       cart_with, stock_of):
    serum = make_product(price=50000, stock=10)
    toner = make_product(price=20000, stock=3)
    cart_with((serum, 2), (toner, 3))

    response = checkout(client, reseller_headers)
    assert response.status_code == 201, response.text
    order = response.json()["order"]
    assert order["status"] == "Pending"
    assert order["payment_status"] == "Unpaid"
    assert order["customer_id"] == str(reseller["_id"])
    assert order["subtotal"] == 2 * 50000 + 3 * 20000
    assert order["shipping_fee"] == 15000
    assert order["total"] == order["subtotal"] + 15000
    assert (stock_of(serum), stock_of(toner)) == (8, 0)
    assert db["cart"].count_documents({}) == 0
    assert db["notifications"].find_one({"type": "new_order"})["related_id"] == order["id"]


def test_pickup_has_no_shipping_fee(client, reseller_headers, make_product, cart_with):
    cart_with((make_product(price=50000), 1))
    order = checkout(client, reseller_headers, shipping_method="pickup", payment_method="cod").json()["order"]
    assert order["shipping_fee"] == 0
    assert order["total"] == 50000


def test_cod_is_not_allowed_for_expedition(client, reseller_headers, make_product, cart_with):
    cart_with((make_product(), 1))
    assert checkout(client, reseller_headers, payment_method="cod").status_code == 400


def test_empty_cart_cannot_be_checked_out(client, reseller_headers):
    assert checkout(client, reseller_headers).status_code == 400


def test_checkout_fails_whole_when_stock_ran_out(client, db, reseller_headers, make_product, cart_with, stock_of):
    plenty = make_product(stock=10)
    scarce = make_product(stock=2)
    cart_with((plenty, 1), (scarce, 2))
    db["products"].update_one({"_id": scarce["_id"]}, {"$set": {"stock": 1}})

    response = checkout(client, reseller_headers)
    assert response.status_code == 400
    assert (stock_of(plenty), stock_of(scarce)) == (10, 1)
    assert db["orders"].count_documents({}) == 0
    assert db["cart"].count_documents({}) == 2


def test_idempotency_key_returns_the_same_order(client, db, reseller_headers, make_product, cart_with, stock_of):
    product = make_product(stock=10)
    cart_with((product, 2))
    headers = {"Idempotency-Key": "checkout-123"}

    first = checkout(client, reseller_headers, headers=headers)
    second = checkout(client, reseller_headers, headers=headers)
    assert first.status_code == 201
    assert second.json()["replayed"] is True
    assert second.json()["order"]["id"] == first.json()["order"]["id"]
    assert db["orders"].count_documents({}) == 1
    assert stock_of(product) == 8


def test_idempotency_key_is_scoped_to_the_customer(client, db, reseller_headers, make_product, cart_with, stock_of):
    product = make_product(stock=10)
    cart_with((product, 2))
    headers = {"Idempotency-Key": "k1"}
    assert checkout(client, reseller_headers, headers=headers).status_code == 201

    signup = client.post("/api/auth/signup", json={
        "name": "Sari", "email": "sari@example.com", "password": "hunter22",
    }).json()
    other_headers = {"Authorization": f"Bearer {signup['token']}"}
    client.post("/api/cart", headers=other_headers, json={"product_id": str(product["_id"]), "quantity": 3})

    response = checkout(client, other_headers, headers=headers)
    assert response.status_code == 201
    assert "replayed" not in response.json()
    assert db["orders"].count_documents({}) == 2
    assert stock_of(product) == 5


def test_instant_payment_returns_invoice_url(client, db, xendit, reseller_headers, make_product, cart_with):
    cart_with((make_product(price=50000), 1))
    response = checkout(client, reseller_headers, payment_method="instant_payment")
    assert response.status_code == 201
    body = response.json()
    assert body["invoice_url"] == xendit.created[0]["invoice_url"]
    assert xendit.created[0]["amount"] == 65000
    assert body["order"]["xendit_invoice_id"] == "inv-1"


def test_instant_payment_gateway_failure_keeps_order(client, db, xendit, reseller_headers, make_product, cart_with):
    xendit.fail = True
    cart_with((make_product(), 1))
    response = checkout(client, reseller_headers, payment_method="instant_payment")
    assert response.status_code == 502
    order = db["orders"].find_one({})
    assert str(order["_id"]) in response.json()["detail"]


def test_reseller_sees_only_own_orders(client, reseller_headers, make_product, make_order, reseller, cart_with):
    cart_with((make_product(), 1))
    checkout(client, reseller_headers)
    foreign = make_order([(make_product(), 1)], customer="Other")

    mine = client.get("/api/my/orders", headers=reseller_headers).json()
    assert len(mine) == 1
    assert client.get(f"/api/my/orders/{foreign['_id']}", headers=reseller_headers).status_code == 404


def test_reseller_cancel_restores_stock_and_notifies(client, db, reseller_headers, make_product, cart_with,
                                                     stock_of):
    product = make_product(stock=5)
    cart_with((product, 2))
    order = checkout(client, reseller_headers).json()["order"]

    response = client.post(f"/api/my/orders/{order['id']}/cancel", headers=reseller_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "Cancelled"
    assert stock_of(product) == 5
    assert db["notifications"].count_documents({"type": "order_cancelled"}) == 1
    assert client.post(f"/api/my/orders/{order['id']}/cancel", headers=reseller_headers).status_code == 409


def test_payment_proof_does_not_mark_order_paid(client, db, storage, reseller_headers, make_product, cart_with):
    cart_with((make_product(), 1))
    order = checkout(client, reseller_headers).json()["order"]

    response = client.post(
        f"/api/my/orders/{order['id']}/payment-proof", headers=reseller_headers,
        files={"file": ("transfer receipt.jpg", b"jpeg-bytes", "image/jpeg")},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["payment_status"] == "Unpaid"
    assert body["payment_proof_url"] == f"http://testserver/files/payment_proofs/{order['id']}_transfer_receipt.jpg"
    assert db["notifications"].count_documents({"type": "payment_proof"}) == 1

    served = client.get(f"/files/payment_proofs/{order['id']}_transfer_receipt.jpg")
    assert served.content == b"jpeg-bytes"
