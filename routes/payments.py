import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel

from auth import get_current_user
from config import settings
from currency import parse_currency
from database import get_db, get_or_404, now, to_object_id
from errors import AuthError, ConflictError, NotFoundError
from payments import XenditClient, get_payment_client, order_invoice
from schemas import CANCELLABLE_STATUSES, notification
from stock import cancel_order

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/xendit", tags=["Payments"])


class InvoiceRequest(BaseModel):
    order_id: str
    customer: Optional[Dict[str, Any]] = None
    items: Optional[List[Dict[str, Any]]] = None


class WebhookPayload(BaseModel):
    id: Optional[str] = None
    external_id: str
    status: str
    invoice_url: Optional[str] = None
    payment_link: Optional[str] = None
    paid_at: Optional[str] = None


@router.post("/invoice")
def create_invoice(req: InvoiceRequest, user=Depends(get_current_user), db=Depends(get_db),
                   client: XenditClient = Depends(get_payment_client)):
    order = get_or_404(db, "orders", req.order_id, "Order")
    if user.get("role") != "admin" and order.get("customer_id") != str(user["_id"]):
        raise NotFoundError("Order not found")
    if order.get("status") == "Cancelled":
        raise ConflictError("Cancelled orders cannot be paid")
    if order.get("payment_status") == "Paid":
        raise ConflictError("Order is already paid")
    details = order.get("customer_details") or {}
    customer = req.customer or {
        "given_names": details.get("name"),
        "email": user.get("email"),
        "mobile_number": details.get("whatsapp"),
    }
    items = req.items or [
        {"name": p.get("name"), "quantity": p.get("quantity"), "price": p.get("price")}
        for p in order.get("products") or []
    ]
    invoice = order_invoice(db, client, order, parse_currency(order.get("total")), customer, items)
    return {
        "invoice_id": invoice.get("id"),
        "invoice_url": invoice.get("invoice_url"),
        "expiry_date": invoice.get("expiry_date"),
        "status": invoice.get("status"),
    }


@router.post("/webhook")
def webhook(payload: WebhookPayload, x_callback_token: Optional[str] = Header(None), db=Depends(get_db)):
    if not settings.xendit_webhook_token or x_callback_token != settings.xendit_webhook_token:
        logger.warning("Rejected Xendit webhook for %s with invalid callback token", payload.external_id)
        raise AuthError("Invalid callback token")

    order = db["orders"].find_one({"_id": to_object_id(payload.external_id, "Order")})
    if not order:
        raise NotFoundError("Order not found")
    status = payload.status.upper()
    logger.info("Xendit webhook for order %s: %s", order["_id"], status)

    if status == "PAID" and order.get("status") == "Cancelled":
        # Stock was already returned, so an admin has to refund or reinstate
        logger.warning("Payment received for cancelled order %s", order["_id"])
        db["orders"].update_one({"_id": order["_id"]}, {"$set": {
            "payment_review": True,
            "payment_proof_url": payload.invoice_url or payload.payment_link or order.get("payment_proof_url"),
            "updated_at": now(),
        }})
        db["notifications"].insert_one(notification(
            "Payment on cancelled order",
            f"Xendit reported a payment for cancelled order {order['_id']}. Check it and refund the customer.",
            "payment_review",
            str(order["_id"]),
        ))
        return {"message": "Order is cancelled, payment flagged for review"}

    if status == "PAID":
        db["orders"].update_one({"_id": order["_id"]}, {
            "$set": {
                "payment_status": "Paid",
                "paid_at": now(),
                "payment_proof_url": payload.invoice_url or payload.payment_link or order.get("payment_proof_url"),
                "updated_at": now(),
            },
            "$inc": {"version": 1},
        })
        return {"message": "Order marked as paid"}

    if status in ("EXPIRED", "FAILED"):
        if order.get("status") in CANCELLABLE_STATUSES:
            cancel_order(db, order, extra_fields={"payment_status": "Unpaid"})
            return {"message": "Order cancelled"}
        return {"message": f"Order already {order.get('status')}"}

    return {"message": "Ignored"}
