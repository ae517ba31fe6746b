from typing import Optional, Type

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from auth import get_current_user, require_admin
from database import create_document, get_db, get_or_404, now, serialize_doc
from errors import ConflictError, ValidationError
from schemas import BankAccount, ProductCategory, Supplier, WhatsappContact

router = APIRouter(tags=["Settings"])


def _register_crud(path: str, collection: str, model: Type[BaseModel], label: str, sort_field: str):
    """List/create/update/delete routes for a flat settings collection."""

    @router.get(f"/api/{path}", name=f"list_{collection}")
    def list_items(user=Depends(get_current_user), db=Depends(get_db)):
        return [serialize_doc(d) for d in db[collection].find({}).sort(sort_field, 1)]

    @router.post(f"/api/{path}", status_code=201, name=f"create_{collection}")
    def create_item(req: model, admin=Depends(require_admin), db=Depends(get_db)):
        _id = create_document(db, collection, req)
        return serialize_doc(get_or_404(db, collection, _id, label))

    @router.put(f"/api/{path}/{{item_id}}", name=f"update_{collection}")
    def update_item(item_id: str, req: model, admin=Depends(require_admin), db=Depends(get_db)):
        item = get_or_404(db, collection, item_id, label)
        db[collection].update_one({"_id": item["_id"]}, {"$set": dict(req.model_dump(), updated_at=now())})
        return serialize_doc(db[collection].find_one({"_id": item["_id"]}))

    @router.delete(f"/api/{path}/{{item_id}}", name=f"delete_{collection}")
    def delete_item(item_id: str, admin=Depends(require_admin), db=Depends(get_db)):
        item = get_or_404(db, collection, item_id, label)
        db[collection].delete_one({"_id": item["_id"]})
        return {"deleted": True}


_register_crud("bank-accounts", "bank_accounts", BankAccount, "Bank account", "bank_name")
_register_crud("whatsapp-contacts", "whatsapp_contacts", WhatsappContact, "Contact", "name")
_register_crud("suppliers", "suppliers", Supplier, "Supplier", "name")


# Categories
@router.get("/api/categories")
def list_categories(db=Depends(get_db)):
    return [serialize_doc(d) for d in db["product_categories"].find({}).sort("name", 1)]


def ensure_category(db, name: Optional[str]) -> bool:
    """Create the category if it does not exist yet; True when created."""
    name = (name or "").strip()
    if not name or db["product_categories"].find_one({"name": name}):
        return False
    create_document(db, "product_categories", ProductCategory(name=name))
    return True


@router.post("/api/categories", status_code=201)
def create_category(req: ProductCategory, admin=Depends(require_admin), db=Depends(get_db)):
    name = req.name.strip()
    if not name:
        raise ValidationError("Category name is required")
    if not ensure_category(db, name):
        raise ConflictError("Category already exists")
    return serialize_doc(db["product_categories"].find_one({"name": name}))


@router.put("/api/categories/{category_id}")
def rename_category(category_id: str, req: ProductCategory, admin=Depends(require_admin), db=Depends(get_db)):
    category = get_or_404(db, "product_categories", category_id, "Category")
    name = req.name.strip()
    if not name:
        raise ValidationError("Category name is required")
    if name != category["name"] and db["product_categories"].find_one({"name": name}):
        raise ConflictError("Category already exists")
    db["product_categories"].update_one({"_id": category["_id"]}, {"$set": {"name": name, "updated_at": now()}})
    db["products"].update_many({"category": category["name"]}, {"$set": {"category": name}})
    return serialize_doc(db["product_categories"].find_one({"_id": category["_id"]}))


@router.delete("/api/categories/{category_id}")
def delete_category(category_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    category = get_or_404(db, "product_categories", category_id, "Category")
    in_use = db["products"].count_documents({"category": category["name"]})
    if in_use:
        raise ConflictError(f"Category is used by {in_use} products")
    db["product_categories"].delete_one({"_id": category["_id"]})
    return {"deleted": True}


# Notifications
@router.get("/api/notifications")
def list_notifications(unread_only: bool = False, admin=Depends(require_admin), db=Depends(get_db)):
    query = {"is_read": False} if unread_only else {}
    return [serialize_doc(d) for d in db["notifications"].find(query).sort("created_at", -1).limit(100)]


@router.post("/api/notifications/{notification_id}/read")
def mark_notification_read(notification_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    notification = get_or_404(db, "notifications", notification_id, "Notification")
    db["notifications"].update_one({"_id": notification["_id"]}, {"$set": {"is_read": True}})
    return {"updated": True}
