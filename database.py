"""
Database client

Wraps a pymongo database handle with an explicit lifecycle. main.py opens
one at startup, closes it at shutdown and hands it to every request through
a dependency instead of a module-level global.
"""

import os
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from dotenv import load_dotenv
from pydantic import BaseModel
from pymongo import MongoClient

from errors import InvalidRequest

load_dotenv()

logger = logging.getLogger(__name__)


def to_object_id(value: Any) -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise InvalidRequest("Invalid id")
    return ObjectId(value)


def serialize_doc(doc: Any) -> Any:
    """Make a stored document JSON friendly: `_id` becomes `id`, ObjectIds
    become strings and datetimes become ISO strings, recursively."""
    if isinstance(doc, dict):
        out = {}
        for k, v in doc.items():
            out["id" if k == "_id" else k] = serialize_doc(v)
        return out
    if isinstance(doc, list):
        return [serialize_doc(x) for x in doc]
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, datetime):
        return doc.isoformat()
    return doc


class Database:
    def __init__(self, db, client: Optional[MongoClient] = None):
        self.db = db
        self.client = client

    @classmethod
    def connect(cls, url: str, name: str) -> "Database":
        client = MongoClient(url)
        logger.info("Connected to MongoDB database %r", name)
        return cls(client[name], client)

    @classmethod
    def from_env(cls) -> Optional["Database"]:
        url = os.getenv("DATABASE_URL")
        name = os.getenv("DATABASE_NAME")
        if not url or not name:
            logger.warning("DATABASE_URL or DATABASE_NAME not set, running without a database")
            return None
        return cls.connect(url, name)

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
            logger.info("Closed MongoDB connection")

    def __getitem__(self, collection_name: str):
        return self.db[collection_name]

    def list_collection_names(self) -> List[str]:
        return self.db.list_collection_names()

    def create_document(self, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
        """Insert a document stamped with created_at/updated_at and return
        it as stored, `_id` included."""
        if isinstance(data, BaseModel):
            data_dict = data.model_dump()
        else:
            data_dict = dict(data)
        now = datetime.now(timezone.utc)
        data_dict["created_at"] = now
        data_dict["updated_at"] = now
        data_dict["_id"] = self.db[collection_name].insert_one(data_dict).inserted_id
        return data_dict

    def get_documents(self, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                      limit: Optional[int] = None) -> List[Dict[str, Any]]:
        cursor = self.db[collection_name].find(filter_dict or {})
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)

    def find_by_id(self, collection_name: str, doc_id: Any) -> Optional[Dict[str, Any]]:
        return self.db[collection_name].find_one({"_id": to_object_id(doc_id)})
