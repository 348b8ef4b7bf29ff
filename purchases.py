"""
Purchased-courses cache.

A locally persisted projection of the courses the signed-in user owns. Entries written right after
an order is placed are tentative (`pending-local`) and are dropped by the next reconciliation,
which replaces the whole cache with what the server reports.
"""
import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel

from schemas import OWNED_STATUSES

logger = logging.getLogger("coursecart.purchases")

TENTATIVE_STATUS = "pending-local"


class PurchasedCourse(BaseModel):
    courseId: str
    title: str
    image: str = ""
    price: Any = 0
    purchaseDate: Optional[str] = None
    orderStatus: str = TENTATIVE_STATUS


class LocalStorage:
    """JSON file standing in for the browser's durable storage. Keys map to JSON values."""

    def __init__(self, path: str):
        self.path = path

    def _read(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                return json.load(fh)
        except (OSError, ValueError) as exc:
            logger.error("Could not read local storage %s: %s", self.path, exc)
            return {}

    def get(self, key: str, default: Any = None) -> Any:
        return self._read().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as fh:
            json.dump(data, fh)

    def remove(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            with open(self.path, "w", encoding="utf-8") as fh:
                json.dump(data, fh)


def entry_from_order(order: Dict[str, Any]) -> PurchasedCourse:
    course = order.get("course") or {}
    created = order.get("createdAt")
    return PurchasedCourse(
        courseId=str(order.get("courseId") or course.get("_id") or ""),
        title=course.get("title", ""),
        image=course.get("image") or course.get("imageUrl") or "",
        price=course.get("price", 0),
        purchaseDate=created.isoformat() if isinstance(created, datetime) else created,
        orderStatus=order.get("orderStatus", "pending"),
    )


class PurchasedCourses:
    STORAGE_KEY = "purchasedCourses"

    def __init__(self, storage: LocalStorage):
        self.storage = storage
        self._entries: List[PurchasedCourse] = []
        for raw in storage.get(self.STORAGE_KEY, []) or []:
            try:
                self._entries.append(PurchasedCourse(**raw))
            except (TypeError, ValueError) as exc:
                logger.error("Dropping unreadable purchased-course entry %r: %s", raw, exc)

    @property
    def entries(self) -> List[PurchasedCourse]:
        return list(self._entries)

    def _save(self) -> None:
        self.storage.set(self.STORAGE_KEY, [e.model_dump() for e in self._entries])

    def get(self, course_id: str) -> Optional[PurchasedCourse]:
        return next((e for e in self._entries if e.courseId == course_id), None)

    def is_purchased(self, course_id: str) -> bool:
        return self.get(course_id) is not None

    def add_tentative(self, course: Dict[str, Any]) -> bool:
        """Record a just-bought course before the server confirms it. Returns False if already present."""
        course_id = str(course["id"])
        if self.is_purchased(course_id):
            return False
        self._entries.append(PurchasedCourse(
            courseId=course_id,
            title=course.get("title", ""),
            image=course.get("imageUrl") or course.get("image") or "",
            price=course.get("price", 0),
            purchaseDate=datetime.now(timezone.utc).isoformat(),
            orderStatus=TENTATIVE_STATUS,
        ))
        self._save()
        return True

    def replace(self, orders: Iterable[Dict[str, Any]]) -> List[PurchasedCourse]:
        """Replace the cache wholesale with the owned courses in `orders` (newest first)."""
        entries: List[PurchasedCourse] = []
        seen = set()
        for order in orders:
            if order.get("orderStatus") not in OWNED_STATUSES:
                continue
            entry = entry_from_order(order)
            if entry.courseId in seen:
                continue
            seen.add(entry.courseId)
            entries.append(entry)
        self._entries = entries
        self._save()
        return self.entries

    def reconcile(self, api) -> List[PurchasedCourse]:
        """Fetch the caller's orders and replace the cache with them."""
        return self.replace(api.my_orders())

    def clear(self) -> None:
        self._entries = []
        self.storage.remove(self.STORAGE_KEY)
