"""
Document store adapters for orders and user address books.

Every pymongo failure is logged with its context and re-raised as
PersistenceFailure; nothing here retries.
"""
from typing import Any, Dict, List, Optional, Tuple

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from database import create_document, get_documents, now_utc
from errors import DuplicateOrderId, PersistenceFailure
from schemas import Address

logger = structlog.get_logger(__name__)

ORDER_COLLECTION = "order"
USER_COLLECTION = "user"


def to_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


class OrderStore:
    def __init__(self, db):
        self.db = db

    @property
    def collection(self):
        return self.db[ORDER_COLLECTION]

    def ensure_indexes(self) -> None:
        try:
            self.collection.create_index([("order_id", ASCENDING)], unique=True, name="order_id_unique")
            self.collection.create_index([("customer.email", ASCENDING), ("created_at", DESCENDING)])
            self.collection.create_index([("created_at", DESCENDING)])
        except PyMongoError as exc:
            logger.error("order_index_setup_failed", error=str(exc))
            raise PersistenceFailure("prepare order indexes", str(exc)) from exc

    def create(self, document: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        """Insert a new order and return (internal id, stored document)."""
        try:
            internal_id = create_document(ORDER_COLLECTION, document, database=self.db)
        except DuplicateKeyError as exc:
            logger.warning("order_id_collision", order_id=document.get("order_id"))
            raise DuplicateOrderId(document.get("order_id", "")) from exc
        except PyMongoError as exc:
            logger.error("order_create_failed", order_id=document.get("order_id"), error=str(exc))
            raise PersistenceFailure("process checkout", str(exc)) from exc
        return internal_id, {**document, "_id": ObjectId(internal_id)}

    def get(self, order_ref: str) -> Optional[Dict[str, Any]]:
        """Find an order by its human-facing id, falling back to the internal id."""
        try:
            doc = self.collection.find_one({"order_id": order_ref})
            if doc is None:
                oid = to_object_id(order_ref)
                if oid is not None:
                    doc = self.collection.find_one({"_id": oid})
        except PyMongoError as exc:
            logger.error("order_read_failed", order_ref=order_ref, error=str(exc))
            raise PersistenceFailure("load order", str(exc)) from exc
        return doc

    def list_all(self) -> List[Dict[str, Any]]:
        return self._list({})

    def list_for_customer(self, email: str) -> List[Dict[str, Any]]:
        return self._list({"customer.email": email})

    def _list(self, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        try:
            return get_documents(ORDER_COLLECTION, query, sort=[("created_at", DESCENDING)], database=self.db)
        except PyMongoError as exc:
            logger.error("order_list_failed", query=query, error=str(exc))
            raise PersistenceFailure("load orders", str(exc)) from exc

    def apply_transition(
        self,
        internal_id: ObjectId,
        expected_version: int,
        fields: Dict[str, Any],
        timeline_entry: Dict[str, Any],
    ) -> Optional[Dict[str, Any]]:
        """
        Set ``fields``, append one timeline entry and bump ``version`` in a
        single write, but only if the order is still at ``expected_version``.

        Returns the updated document, or None if another write got there first.
        """
        # Orders written before versioning have no version field
        version_guard: Dict[str, Any] = {"version": expected_version}
        if expected_version == 0:
            version_guard = {"$or": [{"version": 0}, {"version": {"$exists": False}}]}

        try:
            return self.collection.find_one_and_update(
                {"_id": internal_id, **version_guard},
                {
                    "$set": fields,
                    "$push": {"timeline": timeline_entry},
                    "$inc": {"version": 1},
                },
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as exc:
            logger.error("order_transition_failed", order_id=str(internal_id), fields=fields, error=str(exc))
            raise PersistenceFailure("update order status", str(exc)) from exc


class UserStore:
    def __init__(self, db):
        self.db = db

    @property
    def collection(self):
        return self.db[USER_COLLECTION]

    def get_by_id(self, user_id: Any) -> Optional[Dict[str, Any]]:
        oid = to_object_id(user_id)
        if oid is None:
            return None
        try:
            return self.collection.find_one({"_id": oid})
        except PyMongoError as exc:
            logger.error("user_read_failed", user_id=str(user_id), error=str(exc))
            raise PersistenceFailure("load user", str(exc)) from exc

    def get_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        try:
            return self.collection.find_one({"email": email})
        except PyMongoError as exc:
            logger.error("user_read_failed", email=email, error=str(exc))
            raise PersistenceFailure("load user", str(exc)) from exc

    def add_address(self, user: Dict[str, Any], address: Address) -> bool:
        """
        Append ``address`` to the user's address book unless the same
        street/city/state/zip is already saved. The first address becomes
        the default. Returns True when the book was changed.
        """
        saved = [Address.model_validate(a) for a in user.get("addresses") or []]
        if any(address.same_place(a) for a in saved):
            return False

        entry = address.model_copy(update={"is_default": not saved})
        try:
            res = self.collection.update_one(
                {"_id": user["_id"], "email": user["email"]},
                {"$push": {"addresses": entry.model_dump()}, "$set": {"updated_at": now_utc()}},
            )
        except PyMongoError as exc:
            logger.error("address_book_write_failed", user_id=str(user["_id"]), error=str(exc))
            raise PersistenceFailure("update address book", str(exc)) from exc
        return res.matched_count == 1
