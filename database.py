"""
MongoDB access for the milk distributor backend.

`db` is None when no DATABASE_URL/DATABASE_NAME is configured; endpoints
that need storage answer 500 in that case. Timestamps are naive local
datetimes: the business runs on one wall clock and delivery times are
local "HH:mm" strings.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from bson.objectid import ObjectId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import MongoClient

from config import DATABASE_NAME, DATABASE_URL

logger = logging.getLogger(__name__)

db = None
if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]
else:
    logger.warning("DATABASE_URL/DATABASE_NAME not set; running without a database")


def require_db():
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document, stamping created_at/updated_at, and return its id."""
    database = require_db()
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    now = datetime.now()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None, limit: Optional[int] = None,
                  sort: Optional[List[tuple]] = None) -> List[dict]:
    database = require_db()
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def oid(id_str: str) -> ObjectId:
    if not ObjectId.is_valid(id_str):
        raise HTTPException(status_code=400, detail="Invalid id format")
    return ObjectId(id_str)


def serialize_doc(doc):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.get("_id")
    if isinstance(_id, ObjectId):
        doc["id"] = str(_id)
        del doc["_id"]
    # password hashes never leave the server
    doc.pop("password_hash", None)
    for k, v in list(doc.items()):
        if isinstance(v, datetime):
            doc[k] = v.isoformat()
        elif isinstance(v, ObjectId):
            doc[k] = str(v)
    return doc


def with_customer_info(docs, fields=("name", "email", "address")) -> List[dict]:
    """Serialize order documents, attaching the referenced customer's public fields."""
    docs = list(docs)
    ids = {ObjectId(d["customer"]) for d in docs if ObjectId.is_valid(d.get("customer") or "")}
    users = {}
    if ids:
        projection = {f: 1 for f in fields}
        users = {str(u["_id"]): u for u in require_db()["user"].find({"_id": {"$in": list(ids)}}, projection)}
    out = []
    for doc in docs:
        item = serialize_doc(doc)
        user = users.get(doc.get("customer"))
        item["customer_info"] = {f: user.get(f) for f in fields} if user else None
        out.append(item)
    return out
