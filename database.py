"""
MongoDB access for CourseCart.

`db` is the process-wide database handle. Request handlers receive it through
the `get_db` dependency so tests can swap in a different database.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from settings import DATABASE_NAME, DATABASE_URL

client: MongoClient = MongoClient(DATABASE_URL, tz_aware=False, connect=False)
db: Database = client[DATABASE_NAME]


def get_db() -> Database:
    return db


def _utcnow() -> datetime:
    # Mongo stores UTC without tzinfo; keep documents naive to compare cleanly
    return datetime.now(timezone.utc).replace(tzinfo=None)


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]], database: Optional[Database] = None) -> str:
    """Insert a document stamped with created_at/updated_at and return its id as a string."""
    database = database if database is not None else db
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = _utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def ensure_indexes(database: Optional[Database] = None) -> None:
    """Create the indexes the order lifecycle relies on. Safe to call repeatedly."""
    database = database if database is not None else db
    orders = database["order"]
    orders.create_index([("orderId", ASCENDING)], unique=True)
    orders.create_index([("orderStatus", ASCENDING)])
    orders.create_index([("user.email", ASCENDING)])
    orders.create_index([("created_at", DESCENDING)])
    # One active or completed purchase per (email, course title); the key is only present while active
    orders.create_index([("activeKey", ASCENDING)], unique=True, sparse=True)
    database["user"].create_index([("email", ASCENDING)], unique=True)
