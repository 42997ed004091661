"""
Database helpers

Thin layer over pymongo shared by every service. Collections:

- product
- order
- user
- notification
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from settings import get_settings

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None
_db: Optional[Database] = None


def utcnow() -> datetime:
    # naive UTC, matching what pymongo hands back on reads
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_db() -> Database:
    """Return the shared database handle, connecting on first use."""
    global _client, _db
    if _db is None:
        settings = get_settings()
        _client = MongoClient(settings.database_url, serverSelectionTimeoutMS=5000)
        _db = _client[settings.database_name]
        ensure_indexes(_db)
        logger.info("Connected to database %s", settings.database_name)
    return _db


def ensure_indexes(db: Database) -> None:
    db["user"].create_index("email", unique=True)
    db["order"].create_index("payment_reference")
    db["order"].create_index("user_id")
    db["notification"].create_index([("read", ASCENDING), ("created_at", DESCENDING)])


def parse_object_id(id_str: Optional[str]) -> Optional[ObjectId]:
    """Malformed ids behave like ids of records that do not exist."""
    if not id_str:
        return None
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        return None


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    if isinstance(data, BaseModel):
        doc = data.model_dump(mode="python")
    else:
        doc = dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(db: Database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None, skip: int = 0, sort=None):
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def _serialize_value(v: Any) -> Any:
    if isinstance(v, ObjectId):
        return str(v)
    if isinstance(v, datetime):
        return v.isoformat()
    if isinstance(v, dict):
        return {k: _serialize_value(x) for k, x in v.items()}
    if isinstance(v, list):
        return [_serialize_value(x) for x in v]
    return v


def serialize_doc(doc: Optional[Dict[str, Any]]):
    if not doc:
        return doc
    out = {}
    for k, v in doc.items():
        if k == "_id":
            out["id"] = str(v)
        else:
            out[k] = _serialize_value(v)
    return out
