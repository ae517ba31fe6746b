import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from auth import require_admin
from currency import format_currency
from database import WriteBatch, get_db, get_or_404, naive_utc, now, serialize_doc
from errors import ValidationError
from schemas import EXPENSE_CATEGORIES, OperationalExpense

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/operational-expenses", tags=["Expenses"])


class ExpenseBatchRequest(BaseModel):
    items: List[OperationalExpense] = Field(..., min_length=1)


def expenses_between(db, start: datetime, end: datetime) -> List[Dict[str, Any]]:
    return list(db["operational_expenses"].find({"date": {"$gte": start, "$lte": end}}).sort("date", 1))


def _document(expense: OperationalExpense) -> Dict[str, Any]:
    doc = expense.model_dump()
    doc["date"] = naive_utc(doc["date"])
    doc["created_at"] = doc["updated_at"] = now()
    return doc


@router.post("", status_code=201)
def create_expense(req: OperationalExpense, admin=Depends(require_admin), db=Depends(get_db)):
    doc = _document(req)
    result = db["operational_expenses"].insert_one(doc)
    logger.info("Operational expense %s recorded: %s %s", result.inserted_id, req.category, req.amount)
    return serialize_doc(db["operational_expenses"].find_one({"_id": result.inserted_id}))


@router.post("/batch", status_code=201)
def create_expenses(req: ExpenseBatchRequest, admin=Depends(require_admin), db=Depends(get_db)):
    """Save several cost lines at once, all or none."""
    batch = WriteBatch(db)
    ids = [batch.insert("operational_expenses", _document(item)) for item in req.items]
    batch.commit()
    total = sum(item.amount for item in req.items)
    logger.info("Recorded %d operational expenses totalling %s", len(ids), total)
    return {"ids": [str(i) for i in ids], "total": total, "total_display": format_currency(total)}


@router.get("")
def list_expenses(start: Optional[datetime] = None, end: Optional[datetime] = None, category: Optional[str] = None,
                  admin=Depends(require_admin), db=Depends(get_db)):
    query: Dict[str, Any] = {}
    if start or end:
        query["date"] = {}
        if start:
            query["date"]["$gte"] = naive_utc(start)
        if end:
            query["date"]["$lte"] = naive_utc(end)
    if category:
        if category not in EXPENSE_CATEGORIES:
            raise ValidationError(f"Unknown expense category {category}")
        query["category"] = category
    expenses = list(db["operational_expenses"].find(query).sort("date", -1))
    total = sum(int(e.get("amount") or 0) for e in expenses)
    return {
        "expenses": [serialize_doc(e) for e in expenses],
        "total": total,
        "total_display": format_currency(total),
    }


@router.delete("/{expense_id}")
def delete_expense(expense_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    expense = get_or_404(db, "operational_expenses", expense_id, "Expense")
    db["operational_expenses"].delete_one({"_id": expense["_id"]})
    return {"deleted": True}
