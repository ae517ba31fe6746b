import logging
import os

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

import database
from auth import hash_password
from config import settings
from database import create_document, ensure_indexes
from errors import CommerceError
from routes import (
    expenses, inventory, orders, payments, products, promotions, purchases, reports, settings as settings_routes,
)
from routes import storefront, users
from schemas import Product as ProductSchema, User as UserSchema
from storage import FileStorage, get_storage

logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# App init
app = FastAPI(title="Reseller Commerce API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CommerceError)
def commerce_error_handler(request: Request, exc: CommerceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


for module in (users, products, orders, storefront, payments, purchases, inventory, promotions,
               settings_routes, reports, expenses):
    app.include_router(module.router)


# Routes
@app.get("/")
def root():
    return {"message": "Reseller Commerce API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": None,
        "transactions": settings.mongo_transactions,
        "connection_status": "Not Connected",
        "collections": [],
    }
    db = database.db
    if db is None:
        response["database"] = "⚠️  Available but not initialized"
        return response
    response["database_name"] = db.name
    response["connection_status"] = "Connected"
    try:
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
    except Exception as e:
        logger.exception("Database diagnostics failed")
        response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
    return response


@app.get("/files/{key:path}")
def serve_file(key: str, storage: FileStorage = Depends(get_storage)):
    return FileResponse(storage.open_path(key))


# Seed demo catalogue on startup
DEMO_CATEGORIES = ["Skincare", "Bodycare", "Haircare"]

DEMO_PRODUCTS = [
    {"name": "Brightening Serum 30ml", "sku": "SKN-001", "category": "Skincare", "price": 85000,
     "purchase_price": 60000, "stock": 40, "description": "Niacinamide serum"},
    {"name": "Hydrating Toner 100ml", "sku": "SKN-002", "category": "Skincare", "price": 65000,
     "purchase_price": 45000, "stock": 25, "description": "Alcohol free toner"},
    {"name": "Body Lotion 250ml", "sku": "BDY-001", "category": "Bodycare", "price": 50000,
     "purchase_price": 32000, "stock": 4, "description": "Daily moisturising lotion"},
    {"name": "Hair Vitamin 6pcs", "sku": "HAI-001", "category": "Haircare", "price": 30000,
     "purchase_price": 18000, "stock": 0, "description": "Argan oil capsules"},
]


def seed_admin(db):
    if not (settings.admin_email and settings.admin_password):
        return
    if db["user"].count_documents({"role": "admin"}) > 0:
        return
    admin = UserSchema(
        name="Administrator",
        email=settings.admin_email,
        password_hash=hash_password(settings.admin_password),
        position="Owner",
        role="admin",
    )
    create_document(db, "user", admin)
    logger.info("Created initial admin %s", settings.admin_email)


def seed_demo_catalogue(db):
    if db["products"].count_documents({}) > 0:
        return
    for name in DEMO_CATEGORIES:
        db["product_categories"].update_one({"name": name}, {"$setOnInsert": {"name": name}}, upsert=True)
    for p in DEMO_PRODUCTS:
        create_document(db, "products", ProductSchema(**p))
    logger.info("Seeded %d demo products", len(DEMO_PRODUCTS))


@app.on_event("startup")
def startup():
    try:
        db = database.connect()
        ensure_indexes(db)
        seed_admin(db)
        if settings.seed_demo_data:
            seed_demo_catalogue(db)
    except Exception:
        # The API still starts so /test can report the connection problem
        logger.exception("Database initialisation failed")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8000)))
