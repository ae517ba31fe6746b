import logging
from typing import Any, Dict, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, File, Query, Response, UploadFile
import pydantic
from pydantic import BaseModel, Field, field_validator

from auth import require_admin
from config import settings
from currency import format_currency, parse_currency
from database import WriteBatch, create_document, get_db, get_or_404, now, serialize_doc
from documents import (
    PRODUCT_IMPORT_COLUMNS,
    STOCK_EDIT_COLUMNS,
    product_import_template,
    read_rows,
    write_rows,
)
from errors import ValidationError
from routes.settings import ensure_category
from schemas import Product as ProductSchema
from stock import STOCK_LOW, STOCK_OK, STOCK_OUT, partition_by_stock_level
from storage import FileStorage, get_storage, product_image_key

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/products", tags=["Products"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
PLACEHOLDER_IMAGE = "https://placehold.co/400x400.png"


def rupiah_amount(value) -> int:
    amount = parse_currency(value)
    if amount < 0:
        raise ValueError("amount cannot be negative")
    return amount


class ProductCreateRequest(BaseModel):
    name: str
    sku: str
    category: str = "Uncategorized"
    price: int
    purchase_price: int = 0
    stock: int = Field(0, ge=0)
    image: Optional[str] = None
    description: str = ""

    @field_validator("price", "purchase_price", mode="before")
    @classmethod
    def parse_amount(cls, v):
        return rupiah_amount(v)


class ProductUpdateRequest(BaseModel):
    name: Optional[str] = None
    sku: Optional[str] = None
    category: Optional[str] = None
    price: Optional[int] = None
    purchase_price: Optional[int] = None
    image: Optional[str] = None
    description: Optional[str] = None

    @field_validator("price", "purchase_price", mode="before")
    @classmethod
    def parse_amount(cls, v):
        return None if v is None else rupiah_amount(v)


def product_out(product: Dict[str, Any]) -> Dict[str, Any]:
    doc = serialize_doc(product)
    doc["price"] = parse_currency(doc.get("price"))
    doc["price_display"] = format_currency(doc["price"])
    doc["stock"] = int(doc.get("stock") or 0)
    return doc


def _xlsx(data: bytes, filename: str) -> Response:
    return Response(
        content=data,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def _number(value) -> Optional[int]:
    """Whole number from a spreadsheet cell, including numbers typed as text."""
    if isinstance(value, str):
        text = value.strip()
        if not any(ch.isdigit() for ch in text):
            return None
        try:
            return int(text)
        except ValueError:
            return parse_currency(text)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(round(value))


@router.get("")
def list_products(search: Optional[str] = None, category: Optional[str] = None,
                  stock: Optional[str] = None, admin=Depends(require_admin), db=Depends(get_db)):
    query: Dict[str, Any] = {}
    if search:
        query["$or"] = [
            {"name": {"$regex": search, "$options": "i"}},
            {"sku": {"$regex": search, "$options": "i"}},
        ]
    if category and category.lower() != "all":
        query["category"] = category
    if stock == "low":
        query["stock"] = {"$lte": settings.low_stock_threshold}
    elif stock == "zero":
        query["stock"] = 0
    return [product_out(p) for p in db["products"].find(query).sort("name", 1)]


@router.get("/low-stock")
def low_stock(admin=Depends(require_admin), db=Depends(get_db)):
    query = {"stock": {"$lte": settings.low_stock_threshold}}
    return [product_out(p) for p in db["products"].find(query).sort("stock", 1)]


@router.get("/stock-levels")
def stock_levels(admin=Depends(require_admin), db=Depends(get_db)):
    groups = partition_by_stock_level(db["products"].find({}, {"name": 1, "sku": 1, "stock": 1}))
    return {
        level: {"count": len(groups[level]), "products": [serialize_doc(p) for p in groups[level]]}
        for level in (STOCK_OUT, STOCK_LOW, STOCK_OK)
    }


@router.get("/import-template")
def import_template(admin=Depends(require_admin)):
    return _xlsx(product_import_template(), "product_import_template.xlsx")


@router.post("/import")
def import_products(file: UploadFile = File(...), admin=Depends(require_admin), db=Depends(get_db)):
    rows = read_rows(file.file.read())
    if not rows:
        raise ValidationError("The spreadsheet is empty")
    unknown = set(rows[0]) - set(PRODUCT_IMPORT_COLUMNS)
    if unknown:
        logger.info("Ignoring unknown import columns: %s", sorted(unknown))

    new_categories = 0
    for name in {str(r["category"]).strip() for r in rows if isinstance(r.get("category"), str) and r["category"].strip()}:
        new_categories += ensure_category(db, name)

    batch = WriteBatch(db)
    skipped = 0
    for row in rows:
        if not row.get("name") or not row.get("sku") or not row.get("price"):
            skipped += 1
            continue
        try:
            product = ProductSchema(
                name=str(row["name"]).strip(),
                sku=str(row["sku"]).strip(),
                price=row["price"],
                purchase_price=row.get("purchasePrice") or 0,
                stock=_number(row.get("stock")) or 0,
                category=str(row.get("category") or "Uncategorized").strip(),
                description=str(row.get("description") or ""),
                image=PLACEHOLDER_IMAGE,
            )
        except pydantic.ValidationError as e:
            logger.info("Skipping import row %s: %s", row.get("sku"), e.errors()[0]["msg"])
            skipped += 1
            continue
        batch.insert("products", dict(product.model_dump(), created_at=now(), updated_at=now()))
    added = len(batch)
    batch.commit()
    logger.info("Imported %d products (%d rows skipped)", added, skipped)
    return {"added": added, "skipped": skipped, "new_categories": new_categories}


@router.get("/stock-export")
def export_stock(scope: str = "all", row_range: Optional[str] = Query(None, alias="range"), order_by: str = "name",
                 admin=Depends(require_admin), db=Depends(get_db)):
    if order_by not in ("name", "sku"):
        raise ValidationError("order_by must be 'name' or 'sku'")
    query = {"stock": 0} if scope == "zero_stock" else {}
    products = list(db["products"].find(query).sort(order_by, 1))
    if scope == "range":
        try:
            start, end = (int(part) for part in (row_range or "").split("-"))
        except ValueError:
            raise ValidationError("range must look like '0-50'")
        products = products[start:end]
    if not products:
        raise ValidationError("No products to export")
    rows = [
        {
            "id": str(p["_id"]),
            "sku": p.get("sku"),
            "name": p.get("name"),
            "stock": int(p.get("stock") or 0),
            "price": parse_currency(p.get("price")),
            "purchasePrice": int(p.get("purchase_price") or 0),
        }
        for p in products
    ]
    return _xlsx(write_rows(STOCK_EDIT_COLUMNS, rows, "Product Stock"), "product_stock_price_update.xlsx")


@router.post("/stock-import")
def import_stock(file: UploadFile = File(...), admin=Depends(require_admin), db=Depends(get_db)):
    rows = read_rows(file.file.read())
    if not rows or "id" not in rows[0]:
        raise ValidationError("Wrong file format or missing 'id' column")

    ids = [ObjectId(str(r["id"])) for r in rows if r.get("id") and ObjectId.is_valid(str(r["id"]))]
    products = {str(p["_id"]): p for p in db["products"].find({"_id": {"$in": ids}})}

    batch = WriteBatch(db)
    updated = skipped = 0
    for row in rows:
        product = products.get(str(row.get("id")))
        if product is None:
            skipped += 1
            continue
        updates: Dict[str, Any] = {}
        stock = _number(row.get("stock"))
        price = _number(row.get("price"))
        purchase_price = _number(row.get("purchasePrice"))
        if any(value is not None and value < 0 for value in (stock, price, purchase_price)):
            skipped += 1
            continue
        if stock is not None:
            updates["stock"] = stock
        if price is not None:
            updates["price"] = price
        if purchase_price is not None:
            updates["purchase_price"] = purchase_price
        if not updates:
            continue
        updates["updated_at"] = now()
        batch.update("products", product["_id"], {"$set": updates})
        previous = int(product.get("stock") or 0)
        if stock is not None and stock != previous:
            batch.insert("stock_adjustments", {
                "product_id": str(product["_id"]),
                "product_name": product.get("name"),
                "sku": product.get("sku"),
                "type": "in" if stock > previous else "out",
                "quantity": abs(stock - previous),
                "reason": "Bulk stock import",
                "previous_stock": previous,
                "new_stock": stock,
                "created_at": now(),
            })
        updated += 1
    batch.commit()
    logger.info("Bulk stock import updated %d products (%d rows skipped)", updated, skipped)
    return {"updated": updated, "skipped": skipped}


@router.get("/{product_id}")
def get_product(product_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    return product_out(get_or_404(db, "products", product_id, "Product"))


@router.post("", status_code=201)
def create_product(req: ProductCreateRequest, admin=Depends(require_admin), db=Depends(get_db)):
    product = ProductSchema(**req.model_dump())
    ensure_category(db, product.category)
    _id = create_document(db, "products", product)
    return product_out(get_or_404(db, "products", _id, "Product"))


@router.put("/{product_id}")
def update_product(product_id: str, req: ProductUpdateRequest, admin=Depends(require_admin), db=Depends(get_db)):
    product = get_or_404(db, "products", product_id, "Product")
    updates = {k: v for k, v in req.model_dump().items() if v is not None}
    if not updates:
        raise ValidationError("No updates provided")
    if "category" in updates:
        ensure_category(db, updates["category"])
    updates["updated_at"] = now()
    db["products"].update_one({"_id": product["_id"]}, {"$set": updates})
    return product_out(db["products"].find_one({"_id": product["_id"]}))


@router.delete("/{product_id}")
def delete_product(product_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    product = get_or_404(db, "products", product_id, "Product")
    db["products"].delete_one({"_id": product["_id"]})
    return {"deleted": True}


@router.post("/{product_id}/image")
def upload_image(product_id: str, file: UploadFile = File(...), admin=Depends(require_admin),
                 db=Depends(get_db), storage: FileStorage = Depends(get_storage)):
    product = get_or_404(db, "products", product_id, "Product")
    url = storage.save(product_image_key(file.filename), file.file.read())
    db["products"].update_one({"_id": product["_id"]}, {"$set": {"image": url, "updated_at": now()}})
    return {"image": url}


@router.get("/{product_id}/purchase-history")
def purchase_history(product_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    product = get_or_404(db, "products", product_id, "Product")
    rows = db["purchase_history"].find({"product_id": str(product["_id"])}).sort("purchase_date", -1)
    return [serialize_doc(r) for r in rows]
