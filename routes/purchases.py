from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from auth import require_admin
from database import get_db, get_or_404, naive_utc, now, serialize_doc, to_object_id
from errors import ConflictError
from routes.orders import date_range_query
from stock import apply_purchase_edit, record_purchase

router = APIRouter(prefix="/api/purchases", tags=["Purchases"])


class PurchaseLineRequest(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=0)
    purchase_price: int = Field(..., ge=0)


class PurchaseCreateRequest(BaseModel):
    items: List[PurchaseLineRequest] = Field(..., min_length=1)
    supplier_name: Optional[str] = None
    payment_method: Literal["cash", "bank_transfer", "credit"] = "cash"
    date: Optional[datetime] = None


class PurchaseEditRequest(BaseModel):
    items: List[PurchaseLineRequest]
    version: Optional[int] = None


class PurchasePaymentRequest(BaseModel):
    payment_method: Literal["cash", "bank_transfer"] = "cash"
    notes: str = ""


def _named_lines(db, items: List[PurchaseLineRequest], known: Dict[str, Any]) -> List[Dict[str, Any]]:
    lines = []
    missing = [to_object_id(i.product_id, "Product") for i in items if i.product_id not in known]
    names = {str(p["_id"]): p.get("name") for p in db["products"].find({"_id": {"$in": missing}}, {"name": 1})}
    for item in items:
        line = item.model_dump()
        line["product_name"] = known.get(item.product_id) or names.get(item.product_id)
        lines.append(line)
    return lines


@router.get("")
def list_purchases(start: Optional[datetime] = None, end: Optional[datetime] = None,
                   supplier: Optional[str] = None, admin=Depends(require_admin), db=Depends(get_db)):
    query: Dict[str, Any] = date_range_query("date", start, end)
    if supplier:
        query["supplier_name"] = {"$regex": supplier, "$options": "i"}
    purchases = [serialize_doc(p) for p in db["purchase_transactions"].find(query).sort("date", -1)]
    return {
        "purchases": purchases,
        "total_amount": sum(p.get("total_amount", 0) for p in purchases),
        "count": len(purchases),
    }


@router.get("/payables")
def accounts_payable(admin=Depends(require_admin), db=Depends(get_db)):
    query = {"payment_method": "credit", "payment_status": {"$ne": "paid"}}
    payables = [serialize_doc(p) for p in db["purchase_transactions"].find(query).sort("date", 1)]
    return {"payables": payables, "total_outstanding": sum(p.get("total_amount", 0) for p in payables)}


@router.post("", status_code=201)
def create_purchase(req: PurchaseCreateRequest, admin=Depends(require_admin), db=Depends(get_db)):
    transaction = record_purchase(
        db,
        [item.model_dump() for item in req.items],
        supplier_name=req.supplier_name,
        payment_method=req.payment_method,
        date=naive_utc(req.date) if req.date else None,
    )
    return serialize_doc(transaction)


@router.get("/{purchase_id}")
def get_purchase(purchase_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    return serialize_doc(get_or_404(db, "purchase_transactions", purchase_id, "Purchase"))


@router.put("/{purchase_id}/items")
def edit_purchase(purchase_id: str, req: PurchaseEditRequest, admin=Depends(require_admin), db=Depends(get_db)):
    transaction = get_or_404(db, "purchase_transactions", purchase_id, "Purchase")
    known = {str(i["product_id"]): i.get("product_name") for i in transaction.get("items") or []}
    apply_purchase_edit(db, transaction, _named_lines(db, req.items, known), expected_version=req.version)
    return serialize_doc(db["purchase_transactions"].find_one({"_id": transaction["_id"]}))


@router.post("/{purchase_id}/pay")
def pay_purchase(purchase_id: str, req: PurchasePaymentRequest, admin=Depends(require_admin), db=Depends(get_db)):
    transaction = get_or_404(db, "purchase_transactions", purchase_id, "Purchase")
    if transaction.get("payment_status") == "paid":
        raise ConflictError("Purchase is already paid")
    db["purchase_transactions"].update_one({"_id": transaction["_id"]}, {"$set": {
        "payment_method": req.payment_method,
        "payment_status": "paid",
        "payment_notes": req.notes,
        "paid_at": now(),
    }})
    return serialize_doc(db["purchase_transactions"].find_one({"_id": transaction["_id"]}))
