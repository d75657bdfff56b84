"""
MongoDB access for the storefront.

The client is created once at import from DATABASE_URL / DATABASE_NAME. When
those are not set ``db`` stays ``None`` and the /test endpoint reports it.
Request handlers receive the handle through ``get_db`` so tests can swap in
an in-memory database.
"""
import os
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

from schemas import Pagination

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "storefront")

db: Optional[Database] = None

if DATABASE_URL:
    _client = MongoClient(DATABASE_URL)
    db = _client[DATABASE_NAME]


def ensure_indexes(database: Database) -> None:
    database["user"].create_index("email", unique=True)
    database["cart"].create_index("user_id", unique=True)
    database["wishlist"].create_index("user_id", unique=True)
    database["coupon"].create_index("code", unique=True)
    database["order"].create_index("order_number", unique=True)
    database["order"].create_index([("user_id", 1), ("created_at", -1)])
    database["product"].create_index("category_id")


def get_db() -> Database:
    if db is None:
        raise RuntimeError("Database is not configured")
    return db


def utcnow() -> datetime:
    # Naive UTC, matching what pymongo hands back from the server.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def oid(id_str: str) -> Optional[ObjectId]:
    """Parse a hex id, returning None when it is not a valid ObjectId."""
    if isinstance(id_str, ObjectId):
        return id_str
    if not id_str or not ObjectId.is_valid(id_str):
        return None
    return ObjectId(id_str)


def serialize_document(doc):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    return doc


def create_document(database: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document stamped with created/updated times and return its id."""
    if isinstance(data, BaseModel):
        doc = data.model_dump(exclude={"id"})
    else:
        doc = {k: v for k, v in data.items() if k != "id"}
    now = utcnow()
    if doc.get("created_at") is None:
        doc["created_at"] = now
    doc["updated_at"] = now
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(database: Database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None, sort: Optional[List] = None, skip: int = 0) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return [serialize_document(d) for d in cursor]


def paginate(database: Database, collection_name: str, filter_dict: Dict[str, Any], page: int, limit: int,
             sort: Optional[List] = None) -> Tuple[List[Dict[str, Any]], Pagination]:
    total = database[collection_name].count_documents(filter_dict)
    items = get_documents(database, collection_name, filter_dict, limit=limit, sort=sort, skip=(page - 1) * limit)
    total_pages = (total + limit - 1) // limit
    return items, Pagination(
        current_page=page,
        total_pages=total_pages,
        total=total,
        has_next_page=page < total_pages,
        has_prev_page=page > 1,
    )
