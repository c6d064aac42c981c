"""
Database connection for the storefront.

A single process-wide MongoClient is created at import time when
DATABASE_URL and DATABASE_NAME are configured; `db` is None otherwise.
"""
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel
from pymongo import MongoClient

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")
DATABASE_TIMEOUT_MS = int(os.getenv("DATABASE_TIMEOUT_MS", "5000"))

_client: Optional[MongoClient] = None
db = None

if DATABASE_URL and DATABASE_NAME:
    _client = MongoClient(
        DATABASE_URL,
        serverSelectionTimeoutMS=DATABASE_TIMEOUT_MS,
        connectTimeoutMS=DATABASE_TIMEOUT_MS,
        socketTimeoutMS=DATABASE_TIMEOUT_MS,
        tz_aware=True,
    )
    db = _client[DATABASE_NAME]


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # Drivers without tz_aware hand back naive UTC datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]], database=None) -> str:
    """Insert a document stamped with created_at/updated_at and return its id."""
    database = db if database is None else database
    if database is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")

    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = data.copy()

    stamp = now_utc()
    data_dict.setdefault("created_at", stamp)
    data_dict.setdefault("updated_at", stamp)

    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    sort: Optional[List[Tuple[str, int]]] = None,
    database=None,
) -> List[Dict[str, Any]]:
    database = db if database is None else database
    if database is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")

    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    return list(cursor)
