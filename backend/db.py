"""
Centralized MongoDB connection.
Import `get_database()` here in app setup; stores take a collection so tests can hand them mongomock.
"""
import functools
import uuid
from datetime import datetime, timezone

from pymongo import MongoClient
from pymongo.errors import PyMongoError

from config import MONGODB_DB, MONGODB_URI
from errors import PersistenceUnavailable

AMBULANCES = "ambulances"
EMERGENCY_REQUESTS = "emergency_requests"
HOSPITALS = "hospitals"
DRIVERS = "drivers"

_mongo_client = None


def get_database():
    """Return the dispatch database; the client is created on first use."""
    global _mongo_client
    if _mongo_client is None:
        _mongo_client = MongoClient(MONGODB_URI)
    return _mongo_client[MONGODB_DB]


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC, which is what MongoDB hands back on reads."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def guarded(fn):
    """Surface driver failures as PersistenceUnavailable; no retries here."""
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except PyMongoError as e:
            raise PersistenceUnavailable(detail=str(e)) from e
    return wrapper


def serialize_doc(doc: dict) -> dict:
    """Convert MongoDB document to JSON-serializable format."""
    if doc is None:
        return None
    doc_dict = dict(doc)
    if "_id" in doc_dict:
        if "id" not in doc_dict:
            doc_dict["id"] = str(doc_dict["_id"])
        del doc_dict["_id"]
    for key, value in doc_dict.items():
        if isinstance(value, datetime):
            doc_dict[key] = value.isoformat() + "Z"
    return doc_dict
