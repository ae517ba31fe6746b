from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends

from auth import require_admin
from config import settings
from currency import format_currency, parse_currency
from database import get_db, naive_utc, now
from errors import ValidationError
from schemas import SALE_STATUSES
from routes.expenses import expenses_between
from stock import line_quantities, partition_by_stock_level, STOCK_LOW, STOCK_OUT

router = APIRouter(prefix="/api/reports", tags=["Reports"])


def _month_starts(at: datetime, count: int) -> List[datetime]:
    year, month = at.year, at.month
    starts = []
    for _ in range(count):
        starts.append(datetime(year, month, 1))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(starts))


def _range(start: Optional[datetime], end: Optional[datetime], days: int = 30):
    end = naive_utc(end) if end else now()
    start = naive_utc(start) if start else end - timedelta(days=days)
    if start > end:
        raise ValidationError("start must be before end")
    return start, end


def _sale_orders(db, start: datetime, end: datetime) -> List[Dict[str, Any]]:
    return list(db["orders"].find({
        "status": {"$in": list(SALE_STATUSES)},
        "date": {"$gte": start, "$lte": end},
    }))


@router.get("/dashboard")
def dashboard(admin=Depends(require_admin), db=Depends(get_db)):
    at = now()
    delivered = list(db["orders"].find({"status": "Delivered"}, {"total": 1, "date": 1}))
    revenue = sum(parse_currency(o.get("total")) for o in delivered)

    months = _month_starts(at, 6)
    monthly: Dict[str, int] = OrderedDict((m.strftime("%Y-%m"), 0) for m in months)
    for order in delivered:
        date = order.get("date")
        if isinstance(date, datetime) and date >= months[0]:
            key = date.strftime("%Y-%m")
            if key in monthly:
                monthly[key] += parse_currency(order.get("total"))

    products = list(db["products"].find({}, {"stock": 1}))
    levels = partition_by_stock_level(products)
    return {
        "revenue": revenue,
        "revenue_display": format_currency(revenue),
        "delivered_orders": len(delivered),
        "pending_orders": db["orders"].count_documents({"status": "Pending"}),
        "resellers": db["user"].count_documents({"role": "reseller"}),
        "products": len(products),
        "low_stock": len(levels[STOCK_LOW]),
        "out_of_stock": len(levels[STOCK_OUT]),
        "monthly_revenue": [{"month": k, "revenue": v} for k, v in monthly.items()],
    }


@router.get("/sales")
def sales_summary(start: Optional[datetime] = None, end: Optional[datetime] = None,
                  admin=Depends(require_admin), db=Depends(get_db)):
    start, end = _range(start, end)
    orders = _sale_orders(db, start, end)
    revenue = sum(parse_currency(o.get("total")) for o in orders)
    daily: Dict[str, Dict[str, int]] = {}
    for order in orders:
        day = daily.setdefault(order["date"].date().isoformat(), {"revenue": 0, "orders": 0})
        day["revenue"] += parse_currency(order.get("total"))
        day["orders"] += 1
    return {
        "start": start.isoformat(),
        "end": end.isoformat(),
        "revenue": revenue,
        "order_count": len(orders),
        "average_order_value": round(revenue / len(orders)) if orders else 0,
        "daily": [dict(date=d, **v) for d, v in sorted(daily.items())],
    }


@router.get("/product-sales")
def product_sales(start: Optional[datetime] = None, end: Optional[datetime] = None,
                  admin=Depends(require_admin), db=Depends(get_db)):
    start, end = _range(start, end)
    totals: Dict[str, Dict[str, Any]] = {}
    for order in _sale_orders(db, start, end):
        for line in order.get("products") or []:
            entry = totals.setdefault(str(line["product_id"]), {
                "product_id": str(line["product_id"]), "name": line.get("name"), "quantity": 0, "revenue": 0,
            })
            quantity = int(line.get("quantity") or 0)
            entry["quantity"] += quantity
            entry["revenue"] += parse_currency(line.get("price")) * quantity
    return sorted(totals.values(), key=lambda e: e["revenue"], reverse=True)


@router.get("/profit-loss")
def profit_loss(start: Optional[datetime] = None, end: Optional[datetime] = None,
                admin=Depends(require_admin), db=Depends(get_db)):
    """Revenue of shipped and delivered orders less cost of goods sold and operating costs.

    Cost of goods uses each product's current purchase price; lines of deleted
    products count at zero cost.
    """
    start, end = _range(start, end)
    orders = _sale_orders(db, start, end)
    revenue = sum(parse_currency(o.get("total")) for o in orders)

    sold: Dict[str, int] = {}
    for order in orders:
        for product_id, quantity in line_quantities(order.get("products")).items():
            sold[product_id] = sold.get(product_id, 0) + quantity
    ids = [ObjectId(pid) for pid in sold if ObjectId.is_valid(pid)]
    costs = {
        str(p["_id"]): parse_currency(p.get("purchase_price"))
        for p in db["products"].find({"_id": {"$in": ids}}, {"purchase_price": 1})
    }
    cogs = sum(costs.get(pid, 0) * quantity for pid, quantity in sold.items())

    by_category: Dict[str, int] = {}
    for expense in expenses_between(db, start, end):
        category = expense.get("category") or "misc"
        by_category[category] = by_category.get(category, 0) + int(expense.get("amount") or 0)
    expenses = sum(by_category.values())

    gross_profit = revenue - cogs
    net_profit = gross_profit - expenses
    return {
        "start": start.isoformat(),
        "end": end.isoformat(),
        "revenue": revenue,
        "cogs": cogs,
        "gross_profit": gross_profit,
        "expenses": expenses,
        "expenses_by_category": by_category,
        "net_profit": net_profit,
        "net_profit_display": format_currency(net_profit),
    }


@router.get("/receivables")
def receivables(admin=Depends(require_admin), db=Depends(get_db)):
    orders = list(db["orders"].find({
        "status": {"$in": list(SALE_STATUSES)},
        "payment_status": "Unpaid",
    }).sort("date", 1))
    at = now()
    rows = [
        {
            "id": str(o["_id"]),
            "customer": o.get("customer"),
            "status": o.get("status"),
            "date": o["date"].isoformat() if isinstance(o.get("date"), datetime) else o.get("date"),
            "total": parse_currency(o.get("total")),
            "age_days": (at - o["date"]).days if isinstance(o.get("date"), datetime) else None,
        }
        for o in orders
    ]
    outstanding = sum(r["total"] for r in rows)
    return {"orders": rows, "total_outstanding": outstanding, "total_display": format_currency(outstanding)}


@router.get("/inventory-valuation")
def inventory_valuation(admin=Depends(require_admin), db=Depends(get_db)):
    rows = []
    for product in db["products"].find({}).sort("name", 1):
        stock = int(product.get("stock") or 0)
        cost = parse_currency(product.get("purchase_price"))
        rows.append({
            "id": str(product["_id"]),
            "name": product.get("name"),
            "sku": product.get("sku"),
            "stock": stock,
            "purchase_price": cost,
            "value": max(stock, 0) * cost,
        })
    total = sum(r["value"] for r in rows)
    return {
        "products": rows,
        "total_value": total,
        "total_display": format_currency(total),
        "low_stock_threshold": settings.low_stock_threshold,
    }
