import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field

from auth import require_admin
from config import settings
from currency import format_currency, parse_currency
from database import WriteBatch, get_db, get_or_404, naive_utc, now, serialize_doc, to_object_id
from documents import render_orders_pdf
from errors import ConflictError, NotFoundError, ValidationError
from schemas import ORDER_STATUSES
from stock import apply_order_edit, cancel_order

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["Orders"])

FULFILMENT_FLOW = ["Pending", "Processing", "Shipped", "Delivered"]


class OrderLineRequest(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)


class OrderEditRequest(BaseModel):
    items: List[OrderLineRequest]
    shipping_fee: Optional[int] = Field(None, ge=0)
    version: Optional[int] = None


class StatusUpdateRequest(BaseModel):
    status: str


class OrderDocumentsRequest(BaseModel):
    order_ids: List[str] = Field(..., min_length=1)


def order_out(order: Dict[str, Any]) -> Dict[str, Any]:
    doc = serialize_doc(order)
    doc["total"] = parse_currency(doc.get("total"))
    doc["total_display"] = format_currency(doc["total"])
    return doc


def date_range_query(field: str, start: Optional[datetime], end: Optional[datetime]) -> Dict[str, Any]:
    bounds: Dict[str, Any] = {}
    if start:
        bounds["$gte"] = naive_utc(start)
    if end:
        bounds["$lte"] = naive_utc(end)
    return {field: bounds} if bounds else {}


def auto_complete_shipped(db, at: Optional[datetime] = None) -> int:
    """Mark orders shipped more than AUTO_DELIVER_DAYS ago as delivered."""
    at = at or now()
    cutoff = at - timedelta(days=settings.auto_deliver_days)
    stale = list(db["orders"].find({"status": "Shipped", "shipped_at": {"$lt": cutoff}}, {"_id": 1}))
    if not stale:
        return 0
    batch = WriteBatch(db)
    for order in stale:
        batch.update("orders", order["_id"], {
            "$set": {"status": "Delivered", "delivered_at": at, "updated_at": at},
            "$inc": {"version": 1},
        }, guard={"status": "Shipped"})
    batch.commit()
    logger.info("Auto-completed %d shipped orders", len(stale))
    return len(stale)


def resolve_order_lines(db, order: Dict[str, Any], requested: List[OrderLineRequest]) -> List[Dict[str, Any]]:
    """Order lines for an edit: kept lines keep their price, new lines take the product's."""
    original = {str(p["product_id"]): p for p in order.get("products") or []}
    new_ids = [to_object_id(r.product_id, "Product") for r in requested if r.product_id not in original]
    products = {str(p["_id"]): p for p in db["products"].find({"_id": {"$in": new_ids}})} if new_ids else {}
    lines = []
    for req in requested:
        if req.product_id in original:
            line = dict(original[req.product_id])
        else:
            product = products.get(req.product_id)
            if product is None:
                raise NotFoundError(f"Product not found: {req.product_id}")
            line = {
                "product_id": req.product_id,
                "name": product.get("name"),
                "price": parse_currency(product.get("price")),
                "image": product.get("image"),
                "sku": product.get("sku"),
            }
        line["quantity"] = req.quantity
        lines.append(line)
    return lines


@router.get("")
def list_orders(status: Optional[str] = None, payment_status: Optional[str] = None,
                start: Optional[datetime] = None, end: Optional[datetime] = None,
                search: Optional[str] = None, admin=Depends(require_admin), db=Depends(get_db)):
    auto_complete_shipped(db)
    query: Dict[str, Any] = date_range_query("date", start, end)
    if status:
        query["status"] = status
    if payment_status:
        query["payment_status"] = payment_status
    if search:
        query["$or"] = [
            {"customer": {"$regex": search, "$options": "i"}},
            {"products.name": {"$regex": search, "$options": "i"}},
        ]
    return [order_out(o) for o in db["orders"].find(query).sort("date", -1)]


@router.post("/documents")
def order_documents(req: OrderDocumentsRequest, admin=Depends(require_admin), db=Depends(get_db)):
    ids = [to_object_id(i, "Order") for i in req.order_ids]
    found = {o["_id"]: o for o in db["orders"].find({"_id": {"$in": ids}})}
    missing = [str(i) for i in ids if i not in found]
    if missing:
        raise NotFoundError(f"Order not found: {', '.join(missing)}")
    pdf = render_orders_pdf([found[i] for i in ids])
    filename = f"orders-{now().date().isoformat()}.pdf"
    return Response(pdf, media_type="application/pdf",
                    headers={"Content-Disposition": f'attachment; filename="{filename}"'})


@router.get("/{order_id}")
def get_order(order_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    return order_out(get_or_404(db, "orders", order_id, "Order"))


@router.put("/{order_id}/items")
def edit_order(order_id: str, req: OrderEditRequest, admin=Depends(require_admin), db=Depends(get_db)):
    order = get_or_404(db, "orders", order_id, "Order")
    lines = resolve_order_lines(db, order, req.items)
    apply_order_edit(db, order, lines, shipping_fee=req.shipping_fee, expected_version=req.version)
    return order_out(db["orders"].find_one({"_id": order["_id"]}))


@router.post("/{order_id}/status")
def update_status(order_id: str, req: StatusUpdateRequest, admin=Depends(require_admin), db=Depends(get_db)):
    order = get_or_404(db, "orders", order_id, "Order")
    if req.status not in ORDER_STATUSES:
        raise ValidationError(f"Unknown status {req.status}")
    if req.status == "Cancelled":
        raise ValidationError("Use the cancel endpoint to cancel an order")
    current = order.get("status")
    if current not in FULFILMENT_FLOW or FULFILMENT_FLOW.index(req.status) <= FULFILMENT_FLOW.index(current):
        raise ConflictError(f"Cannot move order from {current} to {req.status}")

    timestamp = now()
    updates: Dict[str, Any] = {"status": req.status, "updated_at": timestamp}
    if req.status == "Shipped":
        updates["shipped_at"] = timestamp
    elif req.status == "Delivered":
        updates["delivered_at"] = timestamp
    batch = WriteBatch(db)
    batch.update("orders", order["_id"], {"$set": updates, "$inc": {"version": 1}},
                 guard={"status": current}, conflict="Order status changed, reload and try again")
    batch.commit()
    return order_out(db["orders"].find_one({"_id": order["_id"]}))


@router.post("/{order_id}/mark-paid")
def mark_paid(order_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    order = get_or_404(db, "orders", order_id, "Order")
    if order.get("status") == "Cancelled":
        raise ConflictError("Cancelled orders cannot be marked paid")
    if order.get("payment_status") != "Paid":
        db["orders"].update_one({"_id": order["_id"]}, {
            "$set": {"payment_status": "Paid", "paid_at": now(), "updated_at": now()},
            "$inc": {"version": 1},
        })
    return order_out(db["orders"].find_one({"_id": order["_id"]}))


@router.post("/{order_id}/cancel")
def cancel(order_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    order = get_or_404(db, "orders", order_id, "Order")
    restored = cancel_order(db, order)
    result = order_out(db["orders"].find_one({"_id": order["_id"]}))
    result["restored_stock"] = restored
    return result


@router.delete("/{order_id}")
def delete_order(order_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    order = get_or_404(db, "orders", order_id, "Order")
    if order.get("status") != "Cancelled":
        raise ConflictError("Only cancelled orders can be deleted")
    db["orders"].delete_one({"_id": order["_id"], "status": "Cancelled"})
    return {"deleted": True}


@router.get("/{order_id}/invoice")
def invoice_pdf(order_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    order = get_or_404(db, "orders", order_id, "Order")
    return Response(render_orders_pdf([order]), media_type="application/pdf",
                    headers={"Content-Disposition": f'attachment; filename="invoice-{order_id}.pdf"'})
