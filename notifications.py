"""Admin-facing notifications about orders and payments."""

import logging
import math
from typing import Any, Dict, Optional

from pymongo import ReturnDocument
from pymongo.database import Database

from database import create_document, parse_object_id, serialize_doc
from errors import Forbidden, NotificationNotFound
from schemas import Notification, NotificationType
from security import is_admin

logger = logging.getLogger(__name__)


class NotificationService:
    def __init__(self, db: Database):
        self.db = db
        self.notifications = db["notification"]

    def notify(self, type: NotificationType, message: str,
               order_id: Optional[str] = None, user_id: Optional[str] = None) -> Optional[str]:
        """Store a notification. Never raises: the caller's work is already done."""
        try:
            notification = Notification(type=type, message=message, order_id=order_id, user_id=user_id)
            return create_document(self.db, "notification", notification)
        except Exception:
            logger.exception("Could not store %s notification for order %s", type, order_id)
            return None

    def list_recent(self, unread_only: bool = False, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        query: Dict[str, Any] = {"read": False} if unread_only else {}
        page = max(page, 1)
        total = self.notifications.count_documents(query)
        docs = (
            self.notifications.find(query)
            .sort("created_at", -1)
            .skip((page - 1) * limit)
            .limit(limit)
        )
        return {
            "notifications": [serialize_doc(d) for d in docs],
            "total": total,
            "pages": math.ceil(total / limit),
            "page": page,
        }

    def _get(self, notification_id: str) -> Dict[str, Any]:
        oid = parse_object_id(notification_id)
        doc = self.notifications.find_one({"_id": oid}) if oid else None
        if not doc:
            raise NotificationNotFound(notification_id)
        return doc

    def mark_read(self, notification_id: str, user: Dict[str, Any]) -> Dict[str, Any]:
        doc = self._get(notification_id)
        if not is_admin(user) and doc.get("user_id") != str(user["_id"]):
            raise Forbidden("Not authorized")
        return self.notifications.find_one_and_update(
            {"_id": doc["_id"]}, {"$set": {"read": True}}, return_document=ReturnDocument.AFTER
        )

    def mark_all_read(self, user: Dict[str, Any]) -> int:
        query: Dict[str, Any] = {"read": False}
        if not is_admin(user):
            query["user_id"] = str(user["_id"])
        result = self.notifications.update_many(query, {"$set": {"read": True}})
        return result.modified_count

    def delete(self, notification_id: str) -> None:
        doc = self._get(notification_id)
        self.notifications.delete_one({"_id": doc["_id"]})
