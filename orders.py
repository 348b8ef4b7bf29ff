"""
Order service: checkout order creation, listing, status changes and reporting.

Orders live in the "order" collection. Each one embeds snapshots of the buyer and the course
taken at creation time; later edits to the user or course documents never reach them.
"""
import logging
import math
import re
import secrets
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import errors
from auth import is_admin
from database import create_document
from schemas import (
    ACTIVE_STATUSES,
    COMPLETED_STATUSES,
    DELETABLE_STATUSES,
    ORDER_STATUSES,
    TRANSITIONS,
    CourseSnapshot,
    Order,
    UserSnapshot,
)
from settings import ORDERS_MAX_PAGE_SIZE, ORDERS_PAGE_SIZE

logger = logging.getLogger("coursecart.orders")

COLLECTION = "order"
ORDER_ID_ATTEMPTS = 3


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _object_id(value: str) -> Optional[ObjectId]:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def _as_price(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _positive_int(value: Any, default: int) -> int:
    """Malformed or non-positive pagination values fall back to the default instead of failing."""
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def generate_order_id(now: Optional[datetime] = None) -> str:
    now = now or _utcnow()
    return f"ORD{now:%y%m%d%H%M%S}{secrets.token_hex(2).upper()}"


def active_key(email: str, title: str) -> str:
    return f"{email}|{title}"


def serialize_order(doc: Dict[str, Any]) -> Dict[str, Any]:
    out = {k: v for k, v in doc.items() if k not in ("_id", "activeKey", "created_at", "updated_at")}
    out["id"] = str(doc["_id"])
    out["createdAt"] = doc.get("created_at")
    out["updatedAt"] = doc.get("updated_at")
    return out


def find_course(db: Database, course_id: Optional[str]) -> Optional[Dict[str, Any]]:
    oid = _object_id(course_id) if course_id else None
    if oid is None:
        return None
    return db["course"].find_one({"_id": oid})


def empty_overview() -> Dict[str, Any]:
    return {
        "totalOrders": 0,
        "totalRevenue": 0,
        "averageOrderValue": 0,
        "pendingOrders": 0,
        "processingOrders": 0,
        "completedOrders": 0,
        "cancelledOrders": 0,
    }


def _count_when(statuses) -> Dict[str, Any]:
    return {"$sum": {"$cond": [_status_in(statuses), 1, 0]}}


def _status_in(statuses) -> Dict[str, Any]:
    return {"$or": [{"$eq": ["$orderStatus", s]} for s in statuses]}


class OrderService:
    def __init__(self, db: Database):
        self.db = db
        self.orders = db[COLLECTION]

    # Lookup
    def _get(self, order_id: str) -> Dict[str, Any]:
        oid = _object_id(order_id)
        query = {"_id": oid} if oid is not None else {"orderId": order_id}
        doc = self.orders.find_one(query)
        if not doc:
            raise errors.NotFound("Order not found")
        return doc

    def get_order(self, order_id: str, user: Dict[str, Any]) -> Dict[str, Any]:
        doc = self._get(order_id)
        if doc["user"]["email"] != user.get("email") and not is_admin(user):
            raise errors.Forbidden("Not authorized to view this order")
        return serialize_order(doc)

    # Create
    def create_order(self, user: Dict[str, Any], course_id: Optional[str], amount: Optional[float]) -> Dict[str, Any]:
        if not course_id or amount is None:
            raise errors.ValidationError("Course ID and amount are required")
        if not math.isfinite(amount):
            raise errors.ValidationError("Amount must be a finite number")
        if amount < 0:
            raise errors.ValidationError("Amount must not be negative")

        course = find_course(self.db, course_id)
        if not course:
            raise errors.NotFound("Course not found")

        email = user["email"]
        existing = self.orders.find_one({
            "user.email": email,
            "course.title": course["title"],
            "orderStatus": {"$in": list(ACTIVE_STATUSES)},
        })
        if existing:
            logger.info("Rejected duplicate purchase of %r by %s (order %s)", course["title"], email, existing.get("orderId"))
            raise errors.Conflict("You have already purchased this course or have a pending order for it")

        snapshot_user = UserSnapshot(
            name=user["name"],
            email=email,
            phone=user.get("phone") or user.get("mobile") or "N/A",
        )
        snapshot_course = CourseSnapshot(
            title=course["title"],
            price=_as_price(course.get("price")),
            image=course.get("imageUrl") or course.get("image") or "",
        )
        now = _utcnow()
        for attempt in range(ORDER_ID_ATTEMPTS):
            order = Order(
                orderId=generate_order_id(now),
                courseId=str(course["_id"]),
                user=snapshot_user,
                course=snapshot_course,
                amount=float(amount),
                orderStatus="pending",
                orderDate=now.date().isoformat(),
            )
            try:
                inserted_id = create_document(COLLECTION, order, database=self.db)
                break
            except DuplicateKeyError:
                if attempt == ORDER_ID_ATTEMPTS - 1:
                    raise
                logger.warning("Order id %s collided, regenerating", order.orderId)

        logger.info("Created order %s for %s (%r, amount=%s)", order.orderId, email, course["title"], order.amount)
        return serialize_order(self.orders.find_one({"_id": ObjectId(inserted_id)}))

    # Read
    def my_orders(self, user: Dict[str, Any]) -> List[Dict[str, Any]]:
        cursor = self.orders.find({"user.email": user.get("email")}).sort([("created_at", DESCENDING), ("_id", DESCENDING)])
        return [serialize_order(o) for o in cursor]

    def list_orders(self, page: Any = None, limit: Any = None, status: Optional[str] = None,
                    search: Optional[str] = None) -> Dict[str, Any]:
        page = _positive_int(page, 1)
        limit = min(_positive_int(limit, ORDERS_PAGE_SIZE), ORDERS_MAX_PAGE_SIZE)

        query: Dict[str, Any] = {}
        if status and status != "all":
            if status not in ORDER_STATUSES:
                raise errors.ValidationError("Invalid status")
            query["orderStatus"] = status
        if search:
            pattern = re.escape(search.strip())
            query["$or"] = [
                {"orderId": {"$regex": pattern, "$options": "i"}},
                {"user.name": {"$regex": pattern, "$options": "i"}},
                {"user.email": {"$regex": pattern, "$options": "i"}},
                {"course.title": {"$regex": pattern, "$options": "i"}},
            ]

        total = self.orders.count_documents(query)
        cursor = (self.orders.find(query)
                  .sort([("created_at", DESCENDING), ("_id", DESCENDING)])
                  .skip((page - 1) * limit)
                  .limit(limit))
        return {
            "orders": [serialize_order(o) for o in cursor],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "totalPages": math.ceil(total / limit),
            },
            "stats": self.overview(),
        }

    # Status
    def update_status(self, order_id: str, status: Optional[str], force: bool = False,
                      actor: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not status:
            raise errors.ValidationError("Status is required")
        if status not in ORDER_STATUSES:
            raise errors.ValidationError("Invalid status")
        doc = self._get(order_id)
        return self._transition(doc, status, force=force, actor=actor)

    def complete_payment(self, order_id: str, user: Dict[str, Any], status: Optional[str] = "delivered") -> Dict[str, Any]:
        """Owner-side transition after a successful payment."""
        status = status or "delivered"
        if status not in COMPLETED_STATUSES:
            raise errors.ValidationError("Invalid status")
        doc = self._get(order_id)
        if doc["user"]["email"] != user.get("email"):
            raise errors.Forbidden("Not authorized to update this order")
        return self._transition(doc, status, actor=user)

    def _transition(self, doc: Dict[str, Any], status: str, force: bool = False,
                    actor: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        current = doc["orderStatus"]
        if current == status:
            return serialize_order(doc)
        if status not in TRANSITIONS.get(current, ()):
            if not force:
                raise errors.InvalidState(f"Cannot change order status from {current} to {status}")
            logger.warning("Forced status change of order %s from %s to %s by %s",
                           doc["orderId"], current, status, (actor or {}).get("email"))

        update: Dict[str, Any] = {"$set": {"orderStatus": status, "updated_at": _utcnow()}}
        if status in ACTIVE_STATUSES:
            update["$set"]["activeKey"] = active_key(doc["user"]["email"], doc["course"]["title"])
        else:
            update["$unset"] = {"activeKey": ""}
        try:
            self.orders.update_one({"_id": doc["_id"]}, update)
        except DuplicateKeyError:
            logger.info("Order %s blocked: %s already has an active order for %r",
                        doc["orderId"], doc["user"]["email"], doc["course"]["title"])
            raise errors.Conflict("An active order for this course already exists")

        logger.info("Order %s status %s -> %s", doc["orderId"], current, status)
        return serialize_order(self.orders.find_one({"_id": doc["_id"]}))

    # Delete
    def delete_order(self, order_id: str) -> None:
        doc = self._get(order_id)
        if doc["orderStatus"] not in DELETABLE_STATUSES:
            raise errors.InvalidState("Cannot delete an order in progress or completed")
        self.orders.delete_one({"_id": doc["_id"]})
        logger.info("Deleted order %s (%s)", doc["orderId"], doc["orderStatus"])

    # Reporting
    def overview(self) -> Dict[str, Any]:
        completed = _status_in(COMPLETED_STATUSES)
        pipeline = [
            {"$group": {
                "_id": None,
                "totalOrders": {"$sum": 1},
                "totalRevenue": {"$sum": {"$cond": [completed, "$amount", 0]}},
                "averageOrderValue": {"$avg": "$amount"},
                "pendingOrders": _count_when(("pending",)),
                "processingOrders": _count_when(("processing",)),
                "completedOrders": _count_when(COMPLETED_STATUSES),
                "cancelledOrders": _count_when(("cancelled",)),
            }},
        ]
        result = list(self.orders.aggregate(pipeline))
        if not result:
            return empty_overview()
        overview = result[0]
        overview.pop("_id", None)
        if overview.get("averageOrderValue") is None:
            overview["averageOrderValue"] = 0
        return overview

    def monthly_revenue(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        now = now or _utcnow()
        pipeline = [
            {"$match": {
                "orderStatus": {"$in": list(COMPLETED_STATUSES)},
                "created_at": {"$gte": datetime(now.year, 1, 1)},
            }},
            {"$group": {
                "_id": {"year": {"$year": "$created_at"}, "month": {"$month": "$created_at"}},
                "revenue": {"$sum": "$amount"},
                "orders": {"$sum": 1},
            }},
            {"$sort": {"_id.year": 1, "_id.month": 1}},
        ]
        return [
            {"year": row["_id"]["year"], "month": row["_id"]["month"], "revenue": row["revenue"], "orders": row["orders"]}
            for row in self.orders.aggregate(pipeline)
        ]

    def stats(self) -> Dict[str, Any]:
        return {"overview": self.overview(), "monthlyStats": self.monthly_revenue()}
