"""Per-collection data access. Every write goes through the unit of work so it can be undone."""

import math
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Generic, List, Optional, Sequence, Tuple, Type, TypeVar

from pymongo import ASCENDING, DESCENDING, ReturnDocument

from .database import UnitOfWork, create_document, from_document, get_documents, to_document, to_object_id
from .errors import NotFoundError
from .schemas import (
    Address,
    Category,
    Order,
    OrderStatus,
    Product,
    Review,
    ShoppingCart,
    StatusHistoryEntry,
    User,
    utc_now,
)

M = TypeVar("M")
T = TypeVar("T")

Sort = Sequence[Tuple[str, int]]


@dataclass
class Page(Generic[T]):
    items: List[T]
    page: int
    page_size: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.page_size else 0

    def map(self, fn: Callable[[T], Any]) -> "Page":
        return Page([fn(item) for item in self.items], self.page, self.page_size, self.total)


def contains(text: str) -> Dict[str, str]:
    """Case-insensitive substring match."""
    return {"$regex": re.escape(text), "$options": "i"}


class Repository(Generic[M]):
    collection_name: str
    model: Type[M]
    resource: str

    def __init__(self, uow: UnitOfWork):
        self.uow = uow
        self.collection = uow.collection(self.collection_name)

    def _id(self, record_id: str):
        return to_object_id(record_id, self.resource)

    def find(self, record_id: str) -> Optional[M]:
        try:
            oid = self._id(record_id)
        except NotFoundError:
            return None
        return from_document(self.model, self.collection.find_one({"_id": oid}))

    def get(self, record_id: str) -> M:
        record = self.find(record_id)
        if record is None:
            raise NotFoundError(self.resource, "ID", record_id)
        return record

    def find_one(self, filter_dict: Dict[str, Any]) -> Optional[M]:
        return from_document(self.model, self.collection.find_one(filter_dict))

    def find_all(self, filter_dict: Optional[Dict[str, Any]] = None, sort: Optional[Sort] = None) -> List[M]:
        if sort is None:
            docs = get_documents(self.uow.db, self.collection_name, filter_dict)
        else:
            docs = list(self.collection.find(filter_dict or {}).sort(list(sort)))
        return [from_document(self.model, doc) for doc in docs]

    def exists(self, filter_dict: Dict[str, Any]) -> bool:
        return self.collection.count_documents(filter_dict, limit=1) > 0

    def count(self, filter_dict: Optional[Dict[str, Any]] = None) -> int:
        return self.collection.count_documents(filter_dict or {})

    def page(self, filter_dict: Dict[str, Any], page: int, page_size: int,
             sort: Optional[Sort] = None) -> Page[M]:
        total = self.collection.count_documents(filter_dict)
        cursor = self.collection.find(filter_dict).sort(list(sort or [("_id", ASCENDING)]))
        cursor = cursor.skip((page - 1) * page_size).limit(page_size)
        return Page([from_document(self.model, doc) for doc in cursor], page, page_size, total)

    def insert(self, record: M) -> M:
        inserted_id = create_document(self.uow.db, self.collection_name, record)
        oid = self._id(inserted_id)
        self.uow.on_rollback(lambda: self.collection.delete_one({"_id": oid}))
        return self.get(inserted_id)

    def save(self, record: M) -> M:
        doc = to_document(record)
        doc["updated_at"] = utc_now()
        oid = self._id(record.id)
        before = self.collection.find_one_and_replace(
            {"_id": oid}, doc, return_document=ReturnDocument.BEFORE
        )
        if before is None:
            raise NotFoundError(self.resource, "ID", record.id)
        self._restore_on_rollback(before)
        return self.get(record.id)

    def update(self, record_id: str, changes: Dict[str, Any], **operators: Dict[str, Any]) -> M:
        """Apply ``$set`` changes (plus any extra operators, e.g. ``inc=...``) atomically."""
        update: Dict[str, Any] = {"$set": {**changes, "updated_at": utc_now()}}
        for name, value in operators.items():
            update[f"${name}"] = value
        before = self.collection.find_one_and_update(
            {"_id": self._id(record_id)}, update, return_document=ReturnDocument.BEFORE
        )
        if before is None:
            raise NotFoundError(self.resource, "ID", record_id)
        self._restore_on_rollback(before)
        return self.get(record_id)

    def delete(self, record_id: str) -> None:
        doc = self.collection.find_one_and_delete({"_id": self._id(record_id)})
        if doc is None:
            raise NotFoundError(self.resource, "ID", record_id)
        self.uow.on_rollback(lambda: self.collection.insert_one(doc))

    def delete_many(self, filter_dict: Dict[str, Any]) -> int:
        docs = list(self.collection.find(filter_dict))
        if not docs:
            return 0
        self.collection.delete_many({"_id": {"$in": [doc["_id"] for doc in docs]}})
        self.uow.on_rollback(lambda: self.collection.insert_many(docs))
        return len(docs)

    def _restore_on_rollback(self, before: Dict[str, Any]) -> None:
        self.uow.on_rollback(lambda: self.collection.replace_one({"_id": before["_id"]}, before))


class UserRepository(Repository[User]):
    collection_name = "user"
    model = User
    resource = "User"

    def find_by_username(self, username: str) -> Optional[User]:
        return self.find_one({"username": username})

    def find_by_email(self, email: str) -> Optional[User]:
        return self.find_one({"email": email})

    def find_by_username_or_email(self, identifier: str) -> Optional[User]:
        return self.find_one({"$or": [{"username": identifier}, {"email": identifier}]})

    def exists_by_username(self, username: str) -> bool:
        return self.exists({"username": username})

    def exists_by_email(self, email: str) -> bool:
        return self.exists({"email": email})

    def update_failed_login_attempts(self, user_id: str, attempts: int) -> User:
        return self.update(user_id, {"failed_login_attempts": attempts})

    def update_last_login_date(self, user_id: str, login_date: datetime) -> User:
        return self.update(user_id, {"last_login_date": login_date})

    def lock_account(self, user_id: str, lockout_time: datetime) -> User:
        return self.update(user_id, {"account_non_locked": False, "lockout_time": lockout_time})

    def unlock_account(self, user_id: str) -> User:
        return self.update(user_id, {
            "account_non_locked": True,
            "lockout_time": None,
            "failed_login_attempts": 0,
        })

    def search(self, text: Optional[str], page: int, page_size: int) -> Page[User]:
        filt: Dict[str, Any] = {}
        if text:
            filt["$or"] = [{field: contains(text)} for field in ("username", "email", "first_name", "last_name")]
        return self.page(filt, page, page_size)


class CategoryRepository(Repository[Category]):
    collection_name = "category"
    model = Category
    resource = "Category"

    def find_by_slug(self, slug: str) -> Optional[Category]:
        return self.find_one({"slug": slug})

    def exists_by_slug(self, slug: str) -> bool:
        return self.exists({"slug": slug})

    def roots(self) -> List[Category]:
        return self.find_all({"parent_id": None, "active": True}, sort=[("sort_order", ASCENDING)])

    def children(self, parent_id: str) -> List[Category]:
        return self.find_all({"parent_id": parent_id, "active": True}, sort=[("sort_order", ASCENDING)])

    def subtree_ids(self, category_id: str) -> List[str]:
        """The category id followed by every descendant id (any depth, active or not)."""
        ids = [category_id]
        frontier = [category_id]
        while frontier:
            docs = self.collection.find({"parent_id": {"$in": frontier}}, {"_id": 1})
            frontier = [str(doc["_id"]) for doc in docs]
            ids.extend(frontier)
        return ids


class ProductRepository(Repository[Product]):
    collection_name = "product"
    model = Product
    resource = "Product"

    def find_by_sku(self, sku: str) -> Optional[Product]:
        return self.find_one({"sku": sku})

    def exists_by_sku(self, sku: str) -> bool:
        return self.exists({"sku": sku})

    def decrement_stock(self, product_id: str, quantity: int) -> int:
        """
        Take ``quantity`` units in one conditional write.

        The sufficiency check and the decrement are the same update, so two
        concurrent buyers cannot both drive stock below zero. Returns the
        number of affected documents: 1 on success, 0 when stock is short.
        """
        oid = self._id(product_id)
        result = self.collection.update_one(
            {"_id": oid, "stock_quantity": {"$gte": quantity}},
            {"$inc": {"stock_quantity": -quantity}, "$set": {"updated_at": utc_now()}},
        )
        if result.modified_count:
            self.uow.on_rollback(
                lambda: self.collection.update_one({"_id": oid}, {"$inc": {"stock_quantity": quantity}})
            )
        return result.modified_count

    def increment_stock(self, product_id: str, quantity: int) -> None:
        oid = self._id(product_id)
        self.collection.update_one({"_id": oid}, {"$inc": {"stock_quantity": quantity}})
        self.uow.on_rollback(
            lambda: self.collection.update_one({"_id": oid}, {"$inc": {"stock_quantity": -quantity}})
        )

    def increment_sales_count(self, product_id: str, quantity: int) -> None:
        oid = self._id(product_id)
        self.collection.update_one({"_id": oid}, {"$inc": {"sales_count": quantity}})
        self.uow.on_rollback(
            lambda: self.collection.update_one({"_id": oid}, {"$inc": {"sales_count": -quantity}})
        )

    def increment_view_count(self, product_id: str) -> None:
        self.collection.update_one({"_id": self._id(product_id)}, {"$inc": {"view_count": 1}})

    def update_rating(self, product_id: str, rating: Optional[float], count: int) -> Product:
        return self.update(product_id, {"average_rating": rating, "rating_count": count})

    def refresh_rating(self, product_id: str) -> None:
        """Recompute the average and count from approved reviews; deleted products are skipped."""
        ratings = ReviewRepository(self.uow).approved_ratings(product_id)
        average = round(sum(ratings) / len(ratings), 2) if ratings else None
        if self.find(product_id) is not None:
            self.update_rating(product_id, average, len(ratings))

    def low_stock(self) -> List[Product]:
        return [p for p in self.find_all(sort=[("stock_quantity", ASCENDING)]) if p.is_low_stock()]


class ReviewRepository(Repository[Review]):
    collection_name = "review"
    model = Review
    resource = "Review"

    def for_product(self, product_id: str, page: int, page_size: int, approved_only: bool = True) -> Page[Review]:
        filt: Dict[str, Any] = {"product_id": product_id}
        if approved_only:
            filt["approved"] = True
        return self.page(filt, page, page_size, sort=[("created_at", DESCENDING)])

    def approved_ratings(self, product_id: str) -> List[int]:
        docs = self.collection.find({"product_id": product_id, "approved": True}, {"rating": 1})
        return [doc["rating"] for doc in docs]


class AddressRepository(Repository[Address]):
    collection_name = "address"
    model = Address
    resource = "Address"

    def for_user(self, user_id: str) -> List[Address]:
        return self.find_all({"user_id": user_id, "active": True}, sort=[("created_at", ASCENDING)])

    def get_for_user(self, user_id: str, address_id: str) -> Address:
        address = self.find(address_id)
        if address is None or address.user_id != user_id:
            raise NotFoundError(self.resource, "ID", address_id)
        return address

    def clear_default(self, user_id: str, keep_id: Optional[str] = None) -> None:
        for address in self.find_all({"user_id": user_id, "is_default": True}):
            if address.id != keep_id:
                self.update(address.id, {"is_default": False})


class CartRepository(Repository[ShoppingCart]):
    collection_name = "cart"
    model = ShoppingCart
    resource = "ShoppingCart"

    def for_user(self, user_id: str) -> Optional[ShoppingCart]:
        return self.find_one({"user_id": user_id})

    def get_or_create(self, user_id: str) -> ShoppingCart:
        cart = self.for_user(user_id)
        if cart is None:
            cart = self.insert(ShoppingCart(user_id=user_id))
        return cart


class OrderRepository(Repository[Order]):
    collection_name = "order"
    model = Order
    resource = "Order"

    def insert(self, record: Order) -> Order:
        record.recompute_item_totals()
        return super().insert(record)

    def save(self, record: Order) -> Order:
        record.recompute_item_totals()
        return super().save(record)

    def find_by_number(self, order_number: str) -> Optional[Order]:
        return self.find_one({"order_number": order_number})

    def exists_by_number(self, order_number: str) -> bool:
        return self.exists({"order_number": order_number})

    def for_user(self, user_id: str, page: int, page_size: int) -> Page[Order]:
        return self.page({"user_id": user_id}, page, page_size, sort=[("order_date", DESCENDING)])

    def append_status(self, order_id: str, entry: StatusHistoryEntry, changes: Dict[str, Any]) -> Order:
        """Set the new status and push one history entry in a single update."""
        history = to_document(entry)
        return self.update(order_id, {"status": entry.status.value, **changes}, push={"status_history": history})

    def has_delivered_item(self, user_id: str, product_id: str) -> bool:
        return self.exists({
            "user_id": user_id,
            "status": OrderStatus.DELIVERED.value,
            "items.product_id": product_id,
        })


class RevokedTokenRepository:
    collection_name = "revoked_token"

    def __init__(self, uow: UnitOfWork):
        self.uow = uow
        self.collection = uow.collection(self.collection_name)

    def revoke(self, jti: str, expires_at: Optional[datetime]) -> None:
        if self.collection.count_documents({"jti": jti}, limit=1):
            return
        inserted = self.collection.insert_one({"jti": jti, "expires_at": expires_at, "revoked_at": utc_now()})
        self.uow.on_rollback(lambda: self.collection.delete_one({"_id": inserted.inserted_id}))

    def is_revoked(self, jti: Optional[str]) -> bool:
        return bool(jti) and self.collection.count_documents({"jti": jti}, limit=1) > 0
