"""MongoDB access shared by the routers.

The client is process-wide and created on first use; request handlers receive
the database through the ``get_db`` dependency so tests can swap it out.
"""
import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict

from bson import ObjectId
from fastapi import HTTPException
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import settings

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_client() -> MongoClient:
    logger.info("Connecting to MongoDB database %s", settings.database_name)
    return MongoClient(settings.database_url, tz_aware=True)


def get_db() -> Database:
    return get_client()[settings.database_name]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def oid(value: str) -> ObjectId:
    try:
        return ObjectId(value)
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid id")


def serialize(value: Any) -> Any:
    """Make a stored document JSON friendly: ``_id`` becomes ``id``, ObjectIds and
    datetimes become strings, recursively."""
    if isinstance(value, dict):
        d = {}
        for k, v in value.items():
            d["id" if k == "_id" else k] = serialize(v)
        return d
    if isinstance(value, list):
        return [serialize(v) for v in value]
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    return value


def create_document(db: Database, collection_name: str, data: Dict[str, Any]) -> Dict[str, Any]:
    doc = dict(data)
    doc.setdefault("created_at", utcnow())
    doc.setdefault("updated_at", utcnow())
    res = db[collection_name].insert_one(doc)
    doc["_id"] = res.inserted_id
    return doc


def ensure_indexes(db: Database) -> None:
    db["user"].create_index([("email", ASCENDING)], unique=True)
    db["profile"].create_index([("user_id", ASCENDING)], unique=True)
    db["mindmap"].create_index([("workspace_id", ASCENDING)], unique=True)
    db["workspace"].create_index([("workspace_title", ASCENDING), ("created_by", ASCENDING)], unique=True)
    db["workspace"].create_index([("members.user", ASCENDING)])
