"""MongoDB access: client handle, document helpers and the unit of work."""

import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

from bson import ObjectId
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from .errors import NotFoundError
from .schemas import utc_now
from .settings import Settings

log = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_client: Optional[MongoClient] = None


def connect(settings: Settings) -> Database:
    """Return the configured database, creating the client on first use."""
    global _client
    if _client is None:
        log.info("Connecting to MongoDB database %s", settings.database_name)
        _client = MongoClient(settings.database_url, tz_aware=False)
        ensure_indexes(_client[settings.database_name])
    return _client[settings.database_name]


def ensure_indexes(db: Database) -> None:
    db["user"].create_index("username", unique=True)
    db["user"].create_index("email", unique=True)
    db["product"].create_index("sku", unique=True)
    db["category"].create_index("slug", unique=True)
    db["order"].create_index("order_number", unique=True)
    db["cart"].create_index("user_id", unique=True)


def to_object_id(value: str, resource: str) -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not ObjectId.is_valid(value):
        raise NotFoundError(resource, "ID", value)
    return ObjectId(value)


def oid_str(oid):
    return str(oid) if isinstance(oid, ObjectId) else oid


def to_document(model: BaseModel) -> Dict[str, Any]:
    doc = model.model_dump(mode="python", exclude={"id"})
    for key, value in list(doc.items()):
        doc[key] = _plain(value)
    return doc


def _plain(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, list):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    return value


def from_document(model_cls: Type[M], doc: Optional[Dict[str, Any]]) -> Optional[M]:
    if doc is None:
        return None
    data = {**doc}
    data["id"] = oid_str(data.pop("_id"))
    return model_cls.model_validate(data)


def create_document(db: Database, collection_name: str, data: BaseModel | Dict[str, Any]) -> str:
    doc = to_document(data) if isinstance(data, BaseModel) else dict(data)
    now = utc_now()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    return str(db[collection_name].insert_one(doc).inserted_id)


def get_documents(db: Database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


class UnitOfWork:
    """
    Groups the writes of one operation.

    Each write registers a compensating action. Leaving the ``with`` block
    cleanly commits (the compensations are dropped); leaving it with an
    exception runs them newest-first and lets the exception propagate.
    """

    def __init__(self, db: Database):
        self.db = db
        self._compensations: List[Callable[[], Any]] = []
        self.active = False

    def __enter__(self) -> "UnitOfWork":
        self._compensations = []
        self.active = True
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            self.commit()
        else:
            self.rollback()
        return False

    def collection(self, name: str):
        return self.db[name]

    def on_rollback(self, action: Callable[[], Any]) -> None:
        self._compensations.append(action)

    def commit(self) -> None:
        self._compensations = []
        self.active = False

    def rollback(self) -> None:
        pending = list(reversed(self._compensations))
        self._compensations = []
        self.active = False
        if pending:
            log.warning("Rolling back unit of work (%d writes)", len(pending))
        for action in pending:
            try:
                action()
            except PyMongoError:
                log.exception("Compensating write failed during rollback")
