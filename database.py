"""
Database helpers

MongoDB access for the shop backend. Every document carries an application
level integer `id` which is what all lookups key on; the store's own `_id`
never leaves this module.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pymongo import ASCENDING, MongoClient, ReturnDocument
from pymongo.database import Database

logger = logging.getLogger(__name__)

PRODUCTS = "products"
ORDERS = "orders"
USERS = "users"
COUNTERS = "counters"


def connect(url: str, name: str, timeout_ms: int = 5000) -> Database:
    client = MongoClient(url, serverSelectionTimeoutMS=timeout_ms, tz_aware=True)
    # MongoClient connects lazily, ping so an unreachable server fails here
    client.admin.command("ping")
    logger.info("Connected to MongoDB database %s", name)
    return client[name]


def ensure_indexes(db: Database) -> None:
    for collection in (PRODUCTS, ORDERS, USERS):
        db[collection].create_index([("id", ASCENDING)], unique=True)
    db[USERS].create_index([("email", ASCENDING)], unique=True)


def next_id(db: Database, collection: str) -> int:
    """Atomically take the next integer id for `collection`."""
    counter = db[COUNTERS].find_one_and_update(
        {"_id": collection},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return counter["seq"]


def serialize_doc(doc):
    if not doc:
        return doc
    doc = dict(doc)
    doc.pop("_id", None)
    for k, v in list(doc.items()):
        if isinstance(v, datetime):
            # stored datetimes are UTC, drivers without tz_aware hand them back naive
            if v.tzinfo is None:
                v = v.replace(tzinfo=timezone.utc)
            doc[k] = v.isoformat()
    return doc


def create_document(db: Database, collection: str, data: Dict[str, Any]) -> Dict[str, Any]:
    now = datetime.now(timezone.utc)
    doc = {**data, "id": next_id(db, collection), "createdAt": now, "updatedAt": now}
    result = db[collection].insert_one(doc)
    logger.debug("Inserted %s id=%s", collection, doc["id"])
    # answer with what the store kept, it truncates datetimes to milliseconds
    return serialize_doc(db[collection].find_one({"_id": result.inserted_id}))


def get_documents(db: Database, collection: str, sort: Optional[List[Tuple[str, int]]] = None) -> List[Dict[str, Any]]:
    cursor = db[collection].find({})
    if sort:
        cursor = cursor.sort(sort)
    return [serialize_doc(d) for d in cursor]
