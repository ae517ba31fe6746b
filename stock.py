"""
Stock bookkeeping shared by orders, purchases and manual adjustments.

Every flow that changes an order's or purchase's line items derives a
per-product stock delta from the old and new lines and commits it in the same
WriteBatch as the document update. Stock is moved with ``$inc`` so concurrent
writers cannot overwrite each other's counts.
"""
import logging
from collections import OrderedDict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from pydantic import BaseModel

from config import settings
from database import WriteBatch, now, to_object_id
from errors import ConflictError, NotFoundError, ValidationError
from schemas import CANCELLABLE_STATUSES, PurchaseHistory, PurchaseTransaction, StockAdjustment

logger = logging.getLogger(__name__)

STOCK_OUT = "out"
STOCK_LOW = "low"
STOCK_OK = "ok"


def _get(item: Any, name: str, default=None):
    if isinstance(item, BaseModel):
        return getattr(item, name, default)
    if isinstance(item, Mapping):
        return item.get(name, default)
    return default


def line_quantities(items: Optional[Iterable[Any]]) -> Dict[str, int]:
    """Total quantity per product id, summing repeated lines."""
    quantities: Dict[str, int] = OrderedDict()
    for item in items or []:
        product_id = str(_get(item, "product_id"))
        quantities[product_id] = quantities.get(product_id, 0) + int(_get(item, "quantity", 0) or 0)
    return quantities


def order_stock_deltas(original_items, new_items) -> Dict[str, int]:
    """Stock change per product when an order's lines go from original to new.

    Positive values return units to stock, negative values take them.
    Products whose quantity did not change are left out.
    """
    original = line_quantities(original_items)
    new = line_quantities(new_items)
    deltas: Dict[str, int] = OrderedDict()
    for product_id in list(original) + [p for p in new if p not in original]:
        delta = original.get(product_id, 0) - new.get(product_id, 0)
        if delta:
            deltas[product_id] = delta
    return deltas


def purchase_stock_deltas(original_items, new_items) -> Dict[str, int]:
    return OrderedDict((pid, -delta) for pid, delta in order_stock_deltas(original_items, new_items).items())


def order_totals(items, shipping_fee: int) -> Tuple[int, int]:
    subtotal = sum(int(_get(i, "price", 0) or 0) * int(_get(i, "quantity", 0) or 0) for i in items)
    return subtotal, subtotal + int(shipping_fee or 0)


def stock_level(stock: Optional[int], threshold: Optional[int] = None) -> str:
    threshold = settings.low_stock_threshold if threshold is None else threshold
    stock = stock or 0
    if stock <= 0:
        return STOCK_OUT
    if stock <= threshold:
        return STOCK_LOW
    return STOCK_OK


def partition_by_stock_level(products: Iterable[Mapping], threshold: Optional[int] = None) -> Dict[str, List[Mapping]]:
    groups: Dict[str, List[Mapping]] = {STOCK_OUT: [], STOCK_LOW: [], STOCK_OK: []}
    for product in products:
        groups[stock_level(product.get("stock"), threshold)].append(product)
    return groups


def stage_stock_deltas(db, batch: WriteBatch, deltas: Mapping[str, int],
                       guard_shortage: bool = False) -> Dict[str, dict]:
    """Stage one ``$inc`` per product; returns the products that were found.

    With ``guard_shortage`` a decrement only applies while the product still
    has enough units, otherwise the whole batch fails with a conflict.
    """
    if not deltas:
        return {}
    ids = [to_object_id(pid, "Product") for pid in deltas]
    found = {str(p["_id"]): p for p in db["products"].find({"_id": {"$in": ids}}, {"name": 1, "stock": 1})}
    for product_id, delta in deltas.items():
        product = found.get(product_id)
        if product is None:
            logger.warning("Skipping stock change of %+d for missing product %s", delta, product_id)
            continue
        minimum = -delta if guard_shortage and delta < 0 else None
        batch.increment(
            "products", product["_id"], "stock", delta, minimum=minimum,
            conflict=f"Insufficient stock for {product.get('name', product_id)}",
        )
    return found


def _version_guard(doc: Mapping) -> Dict[str, Any]:
    if "version" in doc:
        return {"version": doc["version"]}
    return {"version": {"$exists": False}}


def _check_version(doc: Mapping, expected_version: Optional[int]) -> None:
    if expected_version is not None and doc.get("version", 1) != expected_version:
        raise ConflictError("Document was modified by someone else, reload and try again")


def apply_order_edit(db, order: Mapping, new_items: List[dict], shipping_fee: Optional[int] = None,
                     expected_version: Optional[int] = None) -> Dict[str, Any]:
    """Replace an order's lines and move stock by the difference."""
    if order.get("status") == "Cancelled":
        raise ConflictError("Cancelled orders cannot be edited")
    if not new_items:
        raise ValidationError("An order needs at least one product")
    product_ids = [str(item["product_id"]) for item in new_items]
    if len(set(product_ids)) != len(product_ids):
        raise ValidationError("Each product may appear only once in an order")
    if any(int(item["quantity"]) < 1 for item in new_items):
        raise ValidationError("Quantity must be at least 1")
    _check_version(order, expected_version)

    fee = order.get("shipping_fee", 0) if shipping_fee is None else shipping_fee
    if fee < 0:
        raise ValidationError("Shipping fee cannot be negative")
    subtotal, total = order_totals(new_items, fee)
    deltas = order_stock_deltas(order.get("products"), new_items)

    batch = WriteBatch(db)
    stage_stock_deltas(db, batch, deltas, guard_shortage=True)
    changes = {
        "products": new_items,
        "product_ids": product_ids,
        "shipping_fee": fee,
        "subtotal": subtotal,
        "total": total,
        "updated_at": now(),
    }
    guard = dict(_version_guard(order), status={"$ne": "Cancelled"})
    batch.update("orders", order["_id"], {"$set": changes, "$inc": {"version": 1}}, guard=guard,
                 conflict="Order was modified by someone else, reload and try again")
    batch.commit()
    logger.info("Order %s edited, stock deltas %s", order["_id"], dict(deltas))
    changes["version"] = order.get("version", 1) + 1
    changes["stock_deltas"] = dict(deltas)
    return changes


def cancel_order(db, order: Mapping, extra_fields: Optional[Dict[str, Any]] = None,
                 notification: Optional[Dict[str, Any]] = None) -> Dict[str, int]:
    """Cancel an order and return every line's quantity to stock, once."""
    if order.get("status") not in CANCELLABLE_STATUSES:
        raise ConflictError(f"Order cannot be cancelled from status {order.get('status')}")
    timestamp = now()
    changes = {"status": "Cancelled", "cancelled_at": timestamp, "updated_at": timestamp}
    changes.update(extra_fields or {})

    restore = line_quantities(order.get("products"))
    batch = WriteBatch(db)
    batch.update("orders", order["_id"], {"$set": changes, "$inc": {"version": 1}},
                 guard={"status": {"$in": list(CANCELLABLE_STATUSES)}},
                 conflict="Order was already cancelled or has moved on")
    stage_stock_deltas(db, batch, restore)
    if notification:
        batch.insert("notifications", notification)
    batch.commit()
    logger.info("Order %s cancelled, restored stock %s", order["_id"], dict(restore))
    return dict(restore)


def _existing_products(db, product_ids: Iterable[str]) -> Dict[str, dict]:
    ids = [to_object_id(pid, "Product") for pid in product_ids]
    return {str(p["_id"]): p for p in db["products"].find({"_id": {"$in": ids}})}


def record_purchase(db, items: List[dict], supplier_name: Optional[str] = None,
                    payment_method: str = "cash", date: Optional[datetime] = None) -> Dict[str, Any]:
    """Store a purchase transaction and receive its items into stock."""
    if not items:
        raise ValidationError("A purchase needs at least one item")
    product_ids = [str(item["product_id"]) for item in items]
    if len(set(product_ids)) != len(product_ids):
        raise ValidationError("Each product may appear only once in a purchase")
    if any(int(item["quantity"]) <= 0 for item in items):
        raise ValidationError("Quantity must be greater than zero")
    products = _existing_products(db, product_ids)
    missing = [pid for pid in product_ids if pid not in products]
    if missing:
        raise NotFoundError(f"Product not found: {', '.join(missing)}")

    date = date or now()
    supplier_name = supplier_name or "General Supplier"
    lines = [
        {
            "product_id": str(item["product_id"]),
            "product_name": item.get("product_name") or products[str(item["product_id"])].get("name"),
            "quantity": int(item["quantity"]),
            "purchase_price": int(item["purchase_price"]),
        }
        for item in items
    ]
    transaction = PurchaseTransaction(
        date=date,
        total_amount=sum(line["quantity"] * line["purchase_price"] for line in lines),
        items=lines,
        supplier_name=supplier_name,
        payment_method=payment_method,
        payment_status="unpaid" if payment_method == "credit" else "paid",
    ).model_dump()
    transaction["created_at"] = now()
    batch = WriteBatch(db)
    transaction_id = batch.insert("purchase_transactions", transaction)
    for line in lines:
        product = products[line["product_id"]]
        batch.update("products", product["_id"], {
            "$inc": {"stock": line["quantity"]},
            "$set": {"purchase_price": line["purchase_price"], "updated_at": now()},
        })
        batch.insert("purchase_history", PurchaseHistory(
            purchase_date=date,
            supplier_name=supplier_name,
            transaction_id=str(transaction_id),
            **line,
        ).model_dump())
    batch.commit()
    logger.info("Purchase %s recorded with %d items", transaction_id, len(lines))
    transaction["_id"] = transaction_id
    return transaction


def apply_purchase_edit(db, transaction: Mapping, new_items: List[dict],
                        expected_version: Optional[int] = None) -> Dict[str, Any]:
    """Re-diff a purchase's items against stock, product prices and history."""
    product_ids = [str(item["product_id"]) for item in new_items]
    if len(set(product_ids)) != len(product_ids):
        raise ValidationError("Each product may appear only once in a purchase")
    if any(int(item["quantity"]) < 0 or int(item["purchase_price"]) < 0 for item in new_items):
        raise ValidationError("Quantity and purchase price cannot be negative")
    final_items = [item for item in new_items if int(item["quantity"]) > 0]
    if not final_items:
        raise ValidationError("A purchase needs at least one item")
    _check_version(transaction, expected_version)

    original_items = transaction.get("items") or []
    original_by_id = {str(i["product_id"]): i for i in original_items}
    added = [str(i["product_id"]) for i in final_items if str(i["product_id"]) not in original_by_id]
    if added:
        found = _existing_products(db, added)
        missing = [pid for pid in added if pid not in found]
        if missing:
            raise NotFoundError(f"Product not found: {', '.join(missing)}")
    deltas = purchase_stock_deltas(original_items, final_items)

    batch = WriteBatch(db)
    products = stage_stock_deltas(db, batch, deltas)
    repriced = [
        item for item in final_items
        if str(item["product_id"]) not in original_by_id
        or int(original_by_id[str(item["product_id"])].get("purchase_price", 0)) != int(item["purchase_price"])
    ]
    if repriced:
        known = dict(products)
        known.update(_existing_products(db, [str(i["product_id"]) for i in repriced if str(i["product_id"]) not in known]))
        for item in repriced:
            product = known.get(str(item["product_id"]))
            if product is None:
                logger.warning("Skipping purchase price update for missing product %s", item["product_id"])
                continue
            batch.update("products", product["_id"], {"$set": {"purchase_price": int(item["purchase_price"])}})

    total_amount = sum(int(i["quantity"]) * int(i["purchase_price"]) for i in final_items)
    batch.update("purchase_transactions", transaction["_id"], {
        "$set": {"items": final_items, "total_amount": total_amount, "updated_at": now()},
        "$inc": {"version": 1},
    }, guard=_version_guard(transaction), conflict="Purchase was modified by someone else, reload and try again")

    transaction_id = str(transaction["_id"])
    final_by_id = {str(i["product_id"]): i for i in final_items}
    seen = set()
    for row in db["purchase_history"].find({"transaction_id": transaction_id}):
        item = final_by_id.get(str(row["product_id"]))
        if item is None:
            batch.delete("purchase_history", row["_id"])
            continue
        seen.add(str(row["product_id"]))
        if int(row.get("quantity", 0)) != int(item["quantity"]) or int(row.get("purchase_price", 0)) != int(item["purchase_price"]):
            batch.update("purchase_history", row["_id"], {"$set": {
                "quantity": int(item["quantity"]),
                "purchase_price": int(item["purchase_price"]),
            }})
    for product_id, item in final_by_id.items():
        if product_id not in seen:
            batch.insert("purchase_history", PurchaseHistory(
                product_id=product_id,
                product_name=item.get("product_name") or "",
                quantity=int(item["quantity"]),
                purchase_price=int(item["purchase_price"]),
                purchase_date=transaction.get("date") or now(),
                supplier_name=transaction.get("supplier_name") or "General Supplier",
                transaction_id=transaction_id,
            ).model_dump())
    batch.commit()
    logger.info("Purchase %s edited, stock deltas %s", transaction_id, dict(deltas))
    return {
        "items": final_items,
        "total_amount": total_amount,
        "version": transaction.get("version", 1) + 1,
        "stock_deltas": dict(deltas),
    }


def adjust_stock(db, product: Mapping, adjustment_type: str, quantity: int, reason: str) -> Dict[str, Any]:
    """Manual stock correction with its log entry."""
    if adjustment_type not in ("in", "out"):
        raise ValidationError("Adjustment type must be 'in' or 'out'")
    if quantity <= 0 or not (reason or "").strip():
        raise ValidationError("Quantity and reason are required")
    previous_stock = int(product.get("stock") or 0)
    if adjustment_type == "out" and quantity > previous_stock:
        raise ValidationError("Quantity exceeds available stock")
    new_stock = previous_stock + quantity if adjustment_type == "in" else previous_stock - quantity

    entry = StockAdjustment(
        product_id=str(product["_id"]),
        product_name=product.get("name") or "",
        sku=product.get("sku"),
        type=adjustment_type,
        quantity=quantity,
        reason=reason.strip(),
        previous_stock=previous_stock,
        new_stock=new_stock,
        created_at=now(),
    ).model_dump()
    batch = WriteBatch(db)
    batch.update("products", product["_id"], {"$set": {"stock": new_stock, "updated_at": now()}},
                 guard={"stock": product.get("stock")},
                 conflict="Stock changed while adjusting, reload and try again")
    entry["_id"] = batch.insert("stock_adjustments", entry)
    batch.commit()
    logger.info("Stock of %s adjusted %s %d (%d -> %d)", product["_id"], adjustment_type, quantity,
                previous_stock, new_stock)
    return entry


def stock_movements(db, product: Mapping, start: datetime, end: datetime) -> List[Dict[str, Any]]:
    """Every stock movement of a product in ``[start, end]``, newest first.

    ``stock_after`` is reconstructed backwards from the current stock level.
    """
    product_id = str(product["_id"])
    movements: List[Dict[str, Any]] = []

    def within(value) -> bool:
        return isinstance(value, datetime) and start <= value <= end

    for order in db["orders"].find({"product_ids": product_id}):
        quantity = line_quantities(order.get("products")).get(product_id, 0)
        if not quantity:
            continue
        if within(order.get("date")):
            movements.append({
                "date": order["date"],
                "type": "sale",
                "quantity_change": -quantity,
                "related_id": str(order["_id"]),
                "description": f"Customer: {order.get('customer', '')}",
            })
        if order.get("status") == "Cancelled" and within(order.get("cancelled_at")):
            movements.append({
                "date": order["cancelled_at"],
                "type": "cancellation",
                "quantity_change": quantity,
                "related_id": str(order["_id"]),
                "description": f"Returned from order of {order.get('customer', '')}",
            })

    purchases = db["purchase_transactions"].find({
        "items.product_id": product_id,
        "date": {"$gte": start, "$lte": end},
    })
    for purchase in purchases:
        quantity = line_quantities(purchase.get("items")).get(product_id, 0)
        if quantity:
            movements.append({
                "date": purchase["date"],
                "type": "purchase",
                "quantity_change": quantity,
                "related_id": str(purchase["_id"]),
                "description": f"Supplier: {purchase.get('supplier_name') or 'General Supplier'}",
            })

    adjustments = db["stock_adjustments"].find({
        "product_id": product_id,
        "created_at": {"$gte": start, "$lte": end},
    })
    for adjustment in adjustments:
        sign = 1 if adjustment.get("type") == "in" else -1
        movements.append({
            "date": adjustment["created_at"],
            "type": f"adjustment_{adjustment.get('type')}",
            "quantity_change": sign * int(adjustment.get("quantity", 0)),
            "related_id": str(adjustment["_id"]),
            "description": f"Reason: {adjustment.get('reason', '')}",
        })

    movements.sort(key=lambda m: m["date"], reverse=True)
    running = int(product.get("stock") or 0)
    for movement in movements:
        movement["stock_after"] = running
        running -= movement["quantity_change"]
    return movements
