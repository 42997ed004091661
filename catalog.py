"""
Catalog store

Owns product documents. Stock only moves through adjust_stock and
release_stock, both single conditional updates so concurrent checkouts on the
same product can never take stock below zero.
"""

import logging
import math
import re
from typing import Any, Dict, Optional

from pymongo import ReturnDocument
from pymongo.database import Database

from database import create_document, parse_object_id, serialize_doc, utcnow
from errors import InsufficientStock, ProductNotFound, ValidationError
from events import EventBus, bus
from schemas import PriceHistoryEntry, Product, ProductCreate, ProductUpdate

logger = logging.getLogger(__name__)

PAGE_SIZE = 12


def product_out(doc: Dict[str, Any]) -> Dict[str, Any]:
    out = serialize_doc(doc)
    out["in_stock"] = doc.get("stock", 0) > 0
    return out


class CatalogStore:
    def __init__(self, db: Database, events: Optional[EventBus] = None):
        self.db = db
        self.products = db["product"]
        self.events = events if events is not None else bus

    def _emit(self, event: str, doc: Dict[str, Any]) -> None:
        self.events.emit(event, product_out(doc))

    def create_product(self, fields: ProductCreate) -> Dict[str, Any]:
        now = utcnow()
        product = Product(
            **fields.model_dump(),
            price_history=[PriceHistoryEntry(price=fields.price, date=now)],
        )
        product_id = create_document(self.db, "product", product)
        doc = self.products.find_one({"_id": parse_object_id(product_id)})
        logger.info("Created product %s (%s)", product_id, doc["name"])
        self._emit("products:created", doc)
        return doc

    def get_by_id(self, product_id: str) -> Dict[str, Any]:
        """Admin read: returns inactive products too."""
        oid = parse_object_id(product_id)
        doc = self.products.find_one({"_id": oid}) if oid else None
        if not doc:
            raise ProductNotFound(product_id)
        return doc

    def get_active_by_id(self, product_id: str) -> Optional[Dict[str, Any]]:
        oid = parse_object_id(product_id)
        if oid is None:
            return None
        return self.products.find_one({"_id": oid, "is_active": True})

    def list_active(self, keyword: Optional[str] = None, category: Optional[str] = None,
                    page: int = 1, page_size: int = PAGE_SIZE) -> Dict[str, Any]:
        query: Dict[str, Any] = {"is_active": True}
        return self._page(query, keyword, category, page, page_size)

    def list_all(self, keyword: Optional[str] = None, category: Optional[str] = None,
                 page: int = 1, page_size: int = PAGE_SIZE) -> Dict[str, Any]:
        return self._page({}, keyword, category, page, page_size)

    def _page(self, query, keyword, category, page, page_size):
        if keyword:
            query["name"] = {"$regex": re.escape(keyword), "$options": "i"}
        if category:
            query["category"] = category
        page = max(page, 1)
        total = self.products.count_documents(query)
        docs = self.products.find(query).sort("created_at", -1).skip(page_size * (page - 1)).limit(page_size)
        return {
            "items": [product_out(d) for d in docs],
            "page": page,
            "pages": math.ceil(total / page_size),
            "total": total,
        }

    def update_product(self, product_id: str, patch: ProductUpdate) -> Dict[str, Any]:
        current = self.get_by_id(product_id)
        changes = patch.model_dump(exclude_unset=True, exclude_none=True, mode="json")
        if not changes:
            raise ValidationError("No fields to update")
        update: Dict[str, Any] = {"$set": {**changes, "updated_at": utcnow()}}
        if "price" in changes and changes["price"] != current.get("price"):
            update["$push"] = {"price_history": {"price": changes["price"], "date": utcnow()}}
        doc = self.products.find_one_and_update(
            {"_id": current["_id"]}, update, return_document=ReturnDocument.AFTER
        )
        if doc is None:
            raise ProductNotFound(product_id)
        self._emit("products:updated", doc)
        return doc

    def deactivate_product(self, product_id: str) -> Dict[str, Any]:
        oid = parse_object_id(product_id)
        doc = None
        if oid is not None:
            doc = self.products.find_one_and_update(
                {"_id": oid},
                {"$set": {"is_active": False, "updated_at": utcnow()}},
                return_document=ReturnDocument.AFTER,
            )
        if doc is None:
            raise ProductNotFound(product_id)
        logger.info("Deactivated product %s", product_id)
        self._emit("products:deleted", doc)
        return doc

    def adjust_stock(self, product_id: str, delta: int) -> Dict[str, Any]:
        """Apply stock += delta in one conditional update.

        A negative delta is a sale and also raises sold by |delta|. Fails with
        InsufficientStock when the result would be negative.
        """
        oid = parse_object_id(product_id)
        if oid is None:
            raise ProductNotFound(product_id)
        inc = {"stock": delta}
        if delta < 0:
            inc["sold"] = -delta
        doc = self.products.find_one_and_update(
            {"_id": oid, "stock": {"$gte": max(-delta, 0)}},
            {"$inc": inc, "$set": {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            current = self.products.find_one({"_id": oid}, {"name": 1, "stock": 1})
            if current is None:
                raise ProductNotFound(product_id)
            raise InsufficientStock(product_id, current.get("name"), current.get("stock", 0))
        self._emit("products:updated", doc)
        return doc

    def release_stock(self, product_id: str, quantity: int) -> Dict[str, Any]:
        """Undo a sale that never committed: units go back on the shelf and off sold.

        Returns of committed sales go through adjust_stock with a positive delta,
        which leaves sold alone.
        """
        oid = parse_object_id(product_id)
        doc = None
        if oid is not None:
            doc = self.products.find_one_and_update(
                {"_id": oid},
                {"$inc": {"stock": quantity, "sold": -quantity}, "$set": {"updated_at": utcnow()}},
                return_document=ReturnDocument.AFTER,
            )
        if doc is None:
            raise ProductNotFound(product_id)
        self._emit("products:updated", doc)
        return doc
