from datetime import datetime
from typing import Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from auth import require_admin
from currency import format_currency, parse_currency
from database import create_document, get_db, get_or_404, naive_utc, now, serialize_doc
from errors import ValidationError
from schemas import Promotion as PromotionSchema

router = APIRouter(tags=["Promotions"])


class PromotionCreateRequest(BaseModel):
    product_id: str
    discount_price: int = Field(..., gt=0)
    start_date: datetime
    end_date: datetime


def active_promotions(db, at: Optional[datetime] = None) -> Dict[str, int]:
    """Discount price per product id for promotions running at ``at``."""
    at = at or now()
    active: Dict[str, int] = {}
    for promo in db["promotions"].find({"end_date": {"$gt": at}, "start_date": {"$lte": at}}):
        current = active.get(promo["product_id"])
        if current is None or promo["discount_price"] < current:
            active[promo["product_id"]] = promo["discount_price"]
    return active


def with_promotion(product: dict, promos: Dict[str, int]) -> dict:
    """Serialized product with its storefront price applied."""
    doc = serialize_doc(product)
    price = parse_currency(doc.get("price"))
    doc["price"] = price
    doc["price_display"] = format_currency(price)
    discount = promos.get(doc["id"])
    doc["is_promo"] = discount is not None
    doc["discount_price"] = discount
    doc["final_price"] = discount if discount is not None else price
    return doc


@router.get("/api/promotions")
def list_promotions(admin=Depends(require_admin), db=Depends(get_db)):
    at = now()
    result = []
    for promo in db["promotions"].find({}).sort("end_date", -1):
        doc = serialize_doc(promo)
        doc["active"] = promo["start_date"] <= at < promo["end_date"]
        doc["expired"] = at >= promo["end_date"]
        result.append(doc)
    return result


@router.post("/api/promotions", status_code=201)
def create_promotion(req: PromotionCreateRequest, admin=Depends(require_admin), db=Depends(get_db)):
    product = get_or_404(db, "products", req.product_id, "Product")
    start, end = naive_utc(req.start_date), naive_utc(req.end_date)
    if start > end:
        raise ValidationError("Promotion must start before it ends")
    promo = PromotionSchema(
        product_id=str(product["_id"]),
        discount_price=req.discount_price,
        start_date=start,
        end_date=end,
    )
    data = promo.model_dump()
    data["product_name"] = product.get("name")
    _id = create_document(db, "promotions", data)
    return serialize_doc(get_or_404(db, "promotions", _id, "Promotion"))


@router.delete("/api/promotions/{promotion_id}")
def delete_promotion(promotion_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    promo = get_or_404(db, "promotions", promotion_id, "Promotion")
    db["promotions"].delete_one({"_id": promo["_id"]})
    return {"deleted": True}
