"""
MongoDB access for the commerce API.

Collections:
- products, product_categories, promotions
- orders, notifications, cart
- purchase_transactions, purchase_history, stock_adjustments, suppliers
- operational_expenses
- user, bank_accounts, whatsapp_contacts
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

from config import settings
from errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)

client: Optional[MongoClient] = None
db = None


def connect(url: Optional[str] = None, name: Optional[str] = None):
    global client, db
    client = MongoClient(url or settings.database_url)
    db = client[name or settings.database_name]
    logger.info("Connected to MongoDB database %s", db.name)
    return db


def get_db():
    """FastAPI dependency returning the active database handle."""
    if db is None:
        connect()
    return db


def now() -> datetime:
    # BSON dates come back naive, so everything is stored as naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


def naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def to_object_id(value: Union[str, ObjectId], label: str = "Document") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not value or not ObjectId.is_valid(value):
        raise NotFoundError(f"{label} not found")
    return ObjectId(value)


def serialize_doc(doc: Optional[Dict[str, Any]]):
    if not doc:
        return doc
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    for k, v in list(doc.items()):
        if isinstance(v, datetime):
            doc[k] = v.isoformat()
        elif isinstance(v, ObjectId):
            doc[k] = str(v)
    return doc


def create_document(database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    if isinstance(data, BaseModel):
        data = data.model_dump()
    document = dict(data)
    timestamp = now()
    document.setdefault("created_at", timestamp)
    document["updated_at"] = timestamp
    result = database[collection_name].insert_one(document)
    return str(result.inserted_id)


def get_documents(database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: int = 0, sort: Optional[List] = None) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def get_or_404(database, collection_name: str, doc_id, label: str = "Document") -> Dict[str, Any]:
    doc = database[collection_name].find_one({"_id": to_object_id(doc_id, label)})
    if not doc:
        raise NotFoundError(f"{label} not found")
    return doc


def ensure_indexes(database) -> None:
    database["products"].create_index([("sku", ASCENDING)])
    database["products"].create_index([("stock", ASCENDING)])
    database["orders"].create_index([("date", DESCENDING)])
    database["orders"].create_index([("product_ids", ASCENDING)])
    database["orders"].create_index([("customer_id", ASCENDING)])
    if "idempotency_key_1" in database["orders"].index_information():
        # keys used to be unique across all customers
        database["orders"].drop_index("idempotency_key_1")
    database["orders"].create_index(
        [("customer_id", ASCENDING), ("idempotency_key", ASCENDING)],
        unique=True, partialFilterExpression={"idempotency_key": {"$exists": True}},
    )
    database["cart"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    database["purchase_history"].create_index([("transaction_id", ASCENDING)])
    database["stock_adjustments"].create_index([("product_id", ASCENDING), ("created_at", DESCENDING)])
    database["operational_expenses"].create_index([("date", DESCENDING)])
    database["user"].create_index("email", unique=True)


@dataclass
class _Operation:
    kind: str
    collection: str
    filter: Dict[str, Any] = field(default_factory=dict)
    payload: Any = None
    guarded: bool = False
    first: bool = False
    conflict: str = ""


class WriteBatch:
    """All-or-nothing group of writes.

    With transactions enabled the batch runs inside one MongoDB transaction.
    Without them, guard filters are checked up front and the writes are then
    applied in order: inserts staged with ``first`` (they can fail on a unique
    index), then guarded writes, then the rest.
    """

    def __init__(self, database, transactional: Optional[bool] = None):
        self.db = database
        self.transactional = settings.mongo_transactions if transactional is None else transactional
        self._ops: List[_Operation] = []

    def __len__(self):
        return len(self._ops)

    def insert(self, collection: str, document: Dict[str, Any], first: bool = False) -> ObjectId:
        """Stage an insert; ``first`` inserts run before every other write."""
        document = dict(document)
        document.setdefault("_id", ObjectId())
        self._ops.append(_Operation("insert", collection, payload=document, first=first))
        return document["_id"]

    def update(self, collection: str, doc_id: ObjectId, update: Dict[str, Any],
               guard: Optional[Dict[str, Any]] = None, conflict: str = "") -> None:
        filter_dict = {"_id": doc_id}
        if guard:
            filter_dict.update(guard)
        self._ops.append(_Operation(
            "update", collection, filter_dict, update,
            guarded=bool(guard), conflict=conflict or f"{collection} document changed concurrently",
        ))

    def increment(self, collection: str, doc_id: ObjectId, field_name: str, amount: int,
                  minimum: Optional[int] = None, conflict: str = "") -> None:
        guard = {field_name: {"$gte": minimum}} if minimum is not None else None
        self.update(collection, doc_id, {"$inc": {field_name: amount}}, guard=guard, conflict=conflict)

    def delete(self, collection: str, doc_id: ObjectId) -> None:
        self._ops.append(_Operation("delete", collection, {"_id": doc_id}))

    def delete_many(self, collection: str, filter_dict: Dict[str, Any]) -> None:
        self._ops.append(_Operation("delete_many", collection, dict(filter_dict)))

    def commit(self) -> None:
        if not self._ops:
            return
        ops = sorted(self._ops, key=lambda op: (not op.first, not op.guarded))
        try:
            if self.transactional:
                with self.db.client.start_session() as session:
                    session.with_transaction(lambda s: self._apply(ops, s))
            else:
                self._check_guards(ops)
                self._apply(ops, None)
        except ConflictError as e:
            logger.warning("Write batch rejected: %s", e.message)
            raise
        except Exception:
            logger.exception("Write batch of %d operations failed", len(ops))
            raise
        self._ops = []

    def _check_guards(self, ops: List[_Operation]) -> None:
        for op in ops:
            if op.guarded and self.db[op.collection].find_one(op.filter, {"_id": 1}) is None:
                raise ConflictError(op.conflict)

    def _apply(self, ops: List[_Operation], session) -> None:
        kwargs = {"session": session} if session is not None else {}
        for op in ops:
            collection = self.db[op.collection]
            if op.kind == "insert":
                collection.insert_one(op.payload, **kwargs)
            elif op.kind == "update":
                result = collection.update_one(op.filter, op.payload, **kwargs)
                if op.guarded and result.matched_count == 0:
                    raise ConflictError(op.conflict)
            elif op.kind == "delete":
                collection.delete_one(op.filter, **kwargs)
            elif op.kind == "delete_many":
                collection.delete_many(op.filter, **kwargs)
