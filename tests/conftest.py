import os
from datetime import datetime, timedelta, timezone

os.environ["MONGO_TRANSACTIONS"] = "false"
os.environ["XENDIT_WEBHOOK_TOKEN"] = "test-callback-token"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["SHIPPING_FEE"] = "15000"
os.environ["LOW_STOCK_THRESHOLD"] = "5"

import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import create_token, hash_password
from database import create_document, ensure_indexes, get_db, get_or_404, now
from errors import PaymentGatewayError
from main import app
from payments import get_payment_client
from stock import order_totals
from storage import FileStorage, get_storage

PASSWORD = "secret123"


class FakeXendit:
    """Records invoice calls instead of talking to Xendit."""

    def __init__(self):
        self.created = []
        self.invoices = {}
        self.fail = False

    def create_invoice(self, external_id, amount, customer, items, success_redirect_url, failure_redirect_url):
        if self.fail:
            raise PaymentGatewayError("Payment gateway unreachable")
        invoice = {
            "id": f"inv-{len(self.created) + 1}",
            "external_id": external_id,
            "amount": amount,
            "status": "PENDING",
            "invoice_url": f"https://checkout.xendit.test/inv-{len(self.created) + 1}",
            "expiry_date": (datetime.now(timezone.utc) + timedelta(days=1)).isoformat(),
        }
        self.created.append(invoice)
        self.invoices[invoice["id"]] = invoice
        return invoice

    def get_invoice(self, invoice_id):
        return self.invoices[invoice_id]


@pytest.fixture
def db():
    database = mongomock.MongoClient().commerce_test
    ensure_indexes(database)
    return database


@pytest.fixture
def xendit():
    return FakeXendit()


@pytest.fixture
def storage(tmp_path):
    return FileStorage(root=str(tmp_path), base_url="http://testserver")


@pytest.fixture
def client(db, xendit, storage):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_payment_client] = lambda: xendit
    app.dependency_overrides[get_storage] = lambda: storage
    yield TestClient(app)
    app.dependency_overrides.clear()


def _user(db, email, role, name):
    user_id = create_document(db, "user", {
        "name": name,
        "email": email,
        "password_hash": hash_password(PASSWORD),
        "role": role,
    })
    return get_or_404(db, "user", user_id, "User")


@pytest.fixture
def admin(db):
    return _user(db, "admin@example.com", "admin", "Admin")


@pytest.fixture
def reseller(db):
    return _user(db, "reseller@example.com", "reseller", "Rina")


@pytest.fixture
def admin_headers(admin):
    return {"Authorization": f"Bearer {create_token(admin)}"}


@pytest.fixture
def reseller_headers(reseller):
    return {"Authorization": f"Bearer {create_token(reseller)}"}


@pytest.fixture
def make_product(db):
    counter = {"n": 0}

    def make(name=None, price=50000, stock=10, purchase_price=30000, category="Skincare"):
        counter["n"] += 1
        product_id = create_document(db, "products", {
            "name": name or f"Product {counter['n']}",
            "sku": f"SKU-{counter['n']:03d}",
            "category": category,
            "price": price,
            "purchase_price": purchase_price,
            "stock": stock,
            "description": "",
        })
        return get_or_404(db, "products", product_id, "Product")

    return make


@pytest.fixture
def make_order(db):
    """Insert an order directly, taking its lines out of stock like checkout does."""

    def make(lines, status="Pending", customer="Rina", customer_id=None, payment_status="Unpaid",
             shipping_fee=15000, date=None):
        products = [
            {
                "product_id": str(product["_id"]),
                "name": product["name"],
                "price": product["price"],
                "quantity": quantity,
                "sku": product.get("sku"),
            }
            for product, quantity in lines
        ]
        subtotal, total = order_totals(products, shipping_fee)
        for product, quantity in lines:
            db["products"].update_one({"_id": product["_id"]}, {"$inc": {"stock": -quantity}})
        order_id = create_document(db, "orders", {
            "customer": customer,
            "customer_details": {"name": customer, "address": "Jl. Merdeka 1", "whatsapp": "0812"},
            "customer_id": customer_id,
            "products": products,
            "product_ids": [p["product_id"] for p in products],
            "subtotal": subtotal,
            "shipping_fee": shipping_fee,
            "total": total,
            "status": status,
            "payment_status": payment_status,
            "payment_method": "bank_transfer",
            "date": date or now(),
            "version": 1,
        })
        return get_or_404(db, "orders", order_id, "Order")

    return make


@pytest.fixture
def stock_of(db):
    def current(product):
        return db["products"].find_one({"_id": product["_id"]})["stock"]

    return current
