"""
MongoDB access helpers

`db` is None when DATABASE_URL / DATABASE_NAME are not set. Always go through
`collection()` so a missing database surfaces as a clean error instead of a
TypeError deep inside a handler.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient

import config
from errors import DatabaseUnavailable, InvalidIdError

logger = logging.getLogger(__name__)

_client = None
db = None

if config.DATABASE_URL and config.DATABASE_NAME:
    _client = MongoClient(config.DATABASE_URL)
    db = _client[config.DATABASE_NAME]


def collection(name: str):
    if db is None:
        raise DatabaseUnavailable()
    return db[name]


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document with created_at/updated_at stamps and return its id."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = data.copy()

    stamp = now_utc()
    data_dict["created_at"] = stamp
    data_dict["updated_at"] = stamp

    result = collection(collection_name).insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None,
                  sort: Optional[list] = None) -> list:
    cursor = collection(collection_name).find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return [serialize(d) for d in cursor]


def ensure_indexes():
    collection("users").create_index([("email", ASCENDING)], unique=True)
    collection("users").create_index([("userName", ASCENDING)], unique=True)
    collection("products").create_index([("sku", ASCENDING)], unique=True, sparse=True)
    collection("carts").create_index([("user", ASCENDING)], unique=True)
    collection("wishlists").create_index([("user", ASCENDING)], unique=True)
    collection("orders").create_index([("orderNumber", ASCENDING)], unique=True)
    logger.info("Database indexes ensured")


def to_object_id(value: str) -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise InvalidIdError(value)


def serialize(doc):
    if not doc:
        return None
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc
