"""
MongoDB helpers used by the persistent storage backend.
"""
import logging
from typing import Any, Dict, Iterable

from pymongo import MongoClient, ReturnDocument
from pymongo.database import Database

logger = logging.getLogger(__name__)

COUNTERS = "counters"


def connect(url: str, name: str) -> Database:
    client: MongoClient = MongoClient(url, tz_aware=False)
    db = client[name]
    logger.info("Using MongoDB database %s", name)
    return db


def next_id(db: Database, collection: str) -> int:
    """Allocate the next integer id for ``collection``. Ids are never handed out twice."""
    counter = db[COUNTERS].find_one_and_update(
        {"_id": collection},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return counter["seq"]


def sync_counter(db: Database, collection: str) -> None:
    """Raise the counter to the highest stored id (data written before counters existed)."""
    last = db[collection].find_one({}, sort=[("id", -1)])
    if last is not None:
        db[COUNTERS].update_one({"_id": collection}, {"$max": {"seq": last["id"]}}, upsert=True)


def create_document(db: Database, collection: str, data: Dict[str, Any]) -> Dict[str, Any]:
    doc = dict(data)
    db[collection].insert_one(doc)
    doc.pop("_id", None)
    return doc


def describe(db: Database, collections: Iterable[str]) -> Dict[str, Any]:
    return {
        "database": db.name,
        "collections": {name: db[name].count_documents({}) for name in collections},
    }
