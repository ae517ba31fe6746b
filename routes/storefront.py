import logging
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, File, Header, UploadFile
from pydantic import BaseModel, Field
from pymongo.errors import DuplicateKeyError

from auth import get_current_user
from config import settings
from currency import format_currency, parse_currency
from database import WriteBatch, get_db, get_or_404, now, to_object_id
from errors import ConflictError, ForbiddenError, NotFoundError, PaymentGatewayError, ValidationError
from payments import XenditClient, get_payment_client, order_invoice
from routes.orders import order_out
from routes.promotions import active_promotions, with_promotion
from schemas import CustomerDetails, Order as OrderSchema, notification
from stock import cancel_order, order_stock_deltas, order_totals, stage_stock_deltas
from storage import FileStorage, get_storage, payment_proof_key

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Storefront"])


# Request models
class CartAddRequest(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class CartUpdateRequest(BaseModel):
    quantity: int


class CheckoutRequest(BaseModel):
    customer_details: CustomerDetails
    shipping_method: Literal["expedition", "pickup"] = "expedition"
    payment_method: Literal["bank_transfer", "cod", "instant_payment"] = "bank_transfer"


def shipping_fee_for(method: str) -> int:
    return settings.shipping_fee if method == "expedition" else 0


def own_order(db, order_id: str, user: dict) -> Dict[str, Any]:
    order = get_or_404(db, "orders", order_id, "Order")
    if user.get("role") != "admin" and order.get("customer_id") != str(user["_id"]):
        raise NotFoundError("Order not found")
    return order


# Catalog
@router.get("/api/catalog/products")
def catalog(search: Optional[str] = None, category: Optional[str] = None, in_stock: bool = False,
            promo_only: bool = False, db=Depends(get_db)):
    query: Dict[str, Any] = {}
    if search:
        query["$or"] = [
            {"name": {"$regex": search, "$options": "i"}},
            {"sku": {"$regex": search, "$options": "i"}},
        ]
    if category and category.lower() != "all":
        query["category"] = {"$regex": f"^{category}$", "$options": "i"}
    if in_stock:
        query["stock"] = {"$gt": 0}
    promos = active_promotions(db)
    if promo_only:
        query["_id"] = {"$in": [to_object_id(pid, "Product") for pid in promos]}
    products = db["products"].find(query).sort("name", 1).limit(500)
    return [with_promotion(p, promos) for p in products]


@router.get("/api/catalog/products/{product_id}")
def catalog_product(product_id: str, db=Depends(get_db)):
    product = get_or_404(db, "products", product_id, "Product")
    return with_promotion(product, active_promotions(db))


@router.get("/api/catalog/promotions")
def catalog_promotions(db=Depends(get_db)):
    """Products currently on flash sale."""
    promos = active_promotions(db)
    if not promos:
        return []
    ids = [to_object_id(pid, "Product") for pid in promos]
    return [with_promotion(p, promos) for p in db["products"].find({"_id": {"$in": ids}}).sort("name", 1)]


# Cart
def view_cart(db, user_id: str) -> Dict[str, Any]:
    entries = list(db["cart"].find({"user_id": user_id}))
    ids = [to_object_id(e["product_id"], "Product") for e in entries]
    products = {str(p["_id"]): p for p in db["products"].find({"_id": {"$in": ids}})}
    promos = active_promotions(db)
    items = []
    for entry in entries:
        product = products.get(entry["product_id"])
        if product is None:
            continue
        item = with_promotion(product, promos)
        item["quantity"] = int(entry["quantity"])
        item["line_total"] = item["final_price"] * item["quantity"]
        items.append(item)
    total_amount = sum(i["line_total"] for i in items)
    return {
        "items": items,
        "total_items": sum(i["quantity"] for i in items),
        "total_amount": total_amount,
        "total_display": format_currency(total_amount),
    }


@router.get("/api/cart")
def get_cart(user=Depends(get_current_user), db=Depends(get_db)):
    return view_cart(db, str(user["_id"]))


@router.post("/api/cart")
def add_to_cart(req: CartAddRequest, user=Depends(get_current_user), db=Depends(get_db)):
    product = get_or_404(db, "products", req.product_id, "Product")
    user_id = str(user["_id"])
    existing = db["cart"].find_one({"user_id": user_id, "product_id": req.product_id})
    quantity = req.quantity + (existing["quantity"] if existing else 0)
    if quantity > int(product.get("stock") or 0):
        raise ValidationError("Insufficient stock")
    db["cart"].update_one(
        {"user_id": user_id, "product_id": req.product_id},
        {"$set": {"quantity": quantity, "updated_at": now()}},
        upsert=True,
    )
    return view_cart(db, user_id)


@router.put("/api/cart/{product_id}")
def update_cart_item(product_id: str, req: CartUpdateRequest, user=Depends(get_current_user), db=Depends(get_db)):
    user_id = str(user["_id"])
    selector = {"user_id": user_id, "product_id": product_id}
    if req.quantity < 1:
        db["cart"].delete_one(selector)
        return view_cart(db, user_id)
    product = get_or_404(db, "products", product_id, "Product")
    available = int(product.get("stock") or 0)
    quantity = min(req.quantity, available)
    if quantity < 1:
        db["cart"].delete_one(selector)
    else:
        db["cart"].update_one(selector, {"$set": {"quantity": quantity, "updated_at": now()}}, upsert=True)
    cart = view_cart(db, user_id)
    cart["clamped"] = quantity != req.quantity
    cart["available_stock"] = available
    return cart


@router.delete("/api/cart/{product_id}")
def remove_from_cart(product_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    user_id = str(user["_id"])
    db["cart"].delete_one({"user_id": user_id, "product_id": product_id})
    return view_cart(db, user_id)


@router.delete("/api/cart")
def clear_cart(user=Depends(get_current_user), db=Depends(get_db)):
    db["cart"].delete_many({"user_id": str(user["_id"])})
    return view_cart(db, str(user["_id"]))


# Checkout
def _invoice_request(order: Dict[str, Any], user: dict) -> Dict[str, Any]:
    details = order.get("customer_details") or {}
    return {
        "amount": parse_currency(order.get("total")),
        "customer": {
            "given_names": details.get("name"),
            "email": user.get("email"),
            "mobile_number": details.get("whatsapp"),
        },
        "items": [
            {"name": p.get("name"), "quantity": p.get("quantity"), "price": p.get("price")}
            for p in order.get("products") or []
        ],
    }


@router.post("/api/checkout", status_code=201)
def checkout(req: CheckoutRequest, idempotency_key: Optional[str] = Header(None), user=Depends(get_current_user),
             db=Depends(get_db), payment_client: XenditClient = Depends(get_payment_client)):
    user_id = str(user["_id"])
    if idempotency_key:
        existing = db["orders"].find_one({"idempotency_key": idempotency_key, "customer_id": user_id})
        if existing:
            logger.info("Checkout replay for order %s", existing["_id"])
            return {"order": order_out(existing), "invoice_url": None, "replayed": True}

    if req.shipping_method == "expedition" and req.payment_method == "cod":
        raise ValidationError("Cash on delivery is not available for expedition shipping")
    cart = view_cart(db, user_id)
    if not cart["items"]:
        raise ValidationError("Cart is empty")
    for item in cart["items"]:
        if item["quantity"] > int(item.get("stock") or 0):
            raise ValidationError(f"Insufficient stock for {item['name']}")

    lines: List[Dict[str, Any]] = [
        {
            "product_id": item["id"],
            "name": item["name"],
            "price": item["final_price"],
            "quantity": item["quantity"],
            "image": item.get("image"),
            "sku": item.get("sku"),
        }
        for item in cart["items"]
    ]
    shipping_fee = shipping_fee_for(req.shipping_method)
    subtotal, total = order_totals(lines, shipping_fee)
    order = OrderSchema(
        customer=req.customer_details.name,
        customer_details=req.customer_details,
        customer_id=user_id,
        products=lines,
        product_ids=[line["product_id"] for line in lines],
        subtotal=subtotal,
        shipping_fee=shipping_fee,
        shipping_method=req.shipping_method,
        total=total,
        payment_method=req.payment_method,
        date=now(),
    ).model_dump()
    order["created_at"] = order["updated_at"] = order["date"]
    if idempotency_key:
        order["idempotency_key"] = idempotency_key

    batch = WriteBatch(db)
    order_id = batch.insert("orders", order, first=True)
    stage_stock_deltas(db, batch, order_stock_deltas([], lines), guard_shortage=True)
    batch.insert("notifications", notification(
        "New order",
        f"New order of {format_currency(total)} from {req.customer_details.name}.",
        "new_order",
        str(order_id),
    ))
    batch.delete_many("cart", {"user_id": user_id})
    try:
        batch.commit()
    except DuplicateKeyError:
        if not idempotency_key:
            raise
        existing = db["orders"].find_one({"idempotency_key": idempotency_key, "customer_id": user_id})
        if not existing:
            raise ConflictError("Idempotency key is already in use")
        return {"order": order_out(existing), "invoice_url": None, "replayed": True}
    order["_id"] = order_id
    logger.info("Order %s placed by %s for %s", order_id, user_id, total)

    invoice_url = None
    if req.payment_method == "instant_payment":
        try:
            invoice = order_invoice(db, payment_client, order, **_invoice_request(order, user))
        except PaymentGatewayError as e:
            raise PaymentGatewayError(f"Order {order_id} was created but the payment invoice failed: {e.message}")
        invoice_url = invoice.get("invoice_url")
    return {"order": order_out(db["orders"].find_one({"_id": order_id})), "invoice_url": invoice_url}


# Reseller orders
@router.get("/api/my/orders")
def my_orders(status: Optional[str] = None, user=Depends(get_current_user), db=Depends(get_db)):
    query: Dict[str, Any] = {"customer_id": str(user["_id"])}
    if status:
        query["status"] = status
    return [order_out(o) for o in db["orders"].find(query).sort("date", -1)]


@router.get("/api/my/orders/{order_id}")
def my_order(order_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    return order_out(own_order(db, order_id, user))


@router.post("/api/my/orders/{order_id}/cancel")
def cancel_my_order(order_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    order = own_order(db, order_id, user)
    if order.get("payment_status") == "Paid":
        raise ForbiddenError("Paid orders can only be cancelled by an admin")
    restored = cancel_order(db, order, notification=notification(
        "Order cancelled",
        f"Customer {order.get('customer')} cancelled order #{str(order['_id'])[:7]}.",
        "order_cancelled",
        str(order["_id"]),
    ))
    result = order_out(db["orders"].find_one({"_id": order["_id"]}))
    result["restored_stock"] = restored
    return result


@router.post("/api/my/orders/{order_id}/payment-proof")
def upload_payment_proof(order_id: str, file: UploadFile = File(...), user=Depends(get_current_user),
                         db=Depends(get_db), storage: FileStorage = Depends(get_storage)):
    order = own_order(db, order_id, user)
    if order.get("status") == "Cancelled":
        raise ValidationError("Cannot attach a payment proof to a cancelled order")
    url = storage.save(payment_proof_key(str(order["_id"]), file.filename), file.file.read())
    batch = WriteBatch(db)
    # The proof is only evidence; an admin still has to mark the order paid.
    batch.update("orders", order["_id"], {"$set": {"payment_proof_url": url, "updated_at": now()}})
    batch.insert("notifications", notification(
        "Payment proof uploaded",
        f"Customer {order.get('customer')} uploaded a payment proof for order #{str(order['_id'])[:7]}.",
        "payment_proof",
        str(order["_id"]),
    ))
    batch.commit()
    return order_out(db["orders"].find_one({"_id": order["_id"]}))
