from datetime import datetime, timedelta
from typing import Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from auth import require_admin
from database import get_db, get_or_404, naive_utc, now, serialize_doc
from errors import ValidationError
from stock import adjust_stock, stock_movements

router = APIRouter(prefix="/api/stock", tags=["Stock"])


class StockAdjustmentRequest(BaseModel):
    product_id: str
    type: Literal["in", "out"]
    quantity: int = Field(..., gt=0)
    reason: str = Field(..., min_length=1)


@router.post("/adjustments", status_code=201)
def create_adjustment(req: StockAdjustmentRequest, admin=Depends(require_admin), db=Depends(get_db)):
    product = get_or_404(db, "products", req.product_id, "Product")
    return serialize_doc(adjust_stock(db, product, req.type, req.quantity, req.reason))


@router.get("/adjustments")
def list_adjustments(product_id: Optional[str] = None, admin=Depends(require_admin), db=Depends(get_db)):
    query = {"product_id": product_id} if product_id else {}
    return [serialize_doc(a) for a in db["stock_adjustments"].find(query).sort("created_at", -1).limit(500)]


@router.get("/flow/{product_id}")
def stock_flow(product_id: str, start: Optional[datetime] = None, end: Optional[datetime] = None,
               admin=Depends(require_admin), db=Depends(get_db)):
    product = get_or_404(db, "products", product_id, "Product")
    end = naive_utc(end) if end else now()
    start = naive_utc(start) if start else end - timedelta(days=30)
    if start > end:
        raise ValidationError("start must be before end")
    movements = stock_movements(db, product, start, end)
    return {
        "product": {"id": str(product["_id"]), "name": product.get("name"), "sku": product.get("sku"),
                    "stock": int(product.get("stock") or 0)},
        "start": start.isoformat(),
        "end": end.isoformat(),
        "total_in": sum(m["quantity_change"] for m in movements if m["quantity_change"] > 0),
        "total_out": -sum(m["quantity_change"] for m in movements if m["quantity_change"] < 0),
        "movements": [serialize_doc(m) for m in movements],
    }
