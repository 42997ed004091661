"""
Order lifecycle

Turns a submitted cart into a price-checked order and moves it through

    pending -> processing -> shipped -> delivered
    pending | processing -> cancelled

Every transition is a single update conditioned on the current state, so two
racing callers cannot both apply it.
"""

import logging
import math
import os
from typing import Any, Dict, List, Optional, Tuple

from pymongo import ReturnDocument
from pymongo.database import Database

from catalog import CatalogStore
from database import create_document, get_documents, parse_object_id, serialize_doc, utcnow
from errors import (
    EmptyOrder,
    Forbidden,
    InsufficientStock,
    InvalidTransition,
    NotAuthorized,
    OrderNotFound,
    ProductUnavailable,
    TotalMismatch,
    ValidationError,
)
from notifications import NotificationService
from schemas import (
    CreateOrderRequest,
    NotificationType,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from security import is_admin
from settings import Settings
from users import UserService

logger = logging.getLogger(__name__)

PAGE_SIZE = 10

PENDING = OrderStatus.PENDING.value
PROCESSING = OrderStatus.PROCESSING.value
SHIPPED = OrderStatus.SHIPPED.value
DELIVERED = OrderStatus.DELIVERED.value
CANCELLED = OrderStatus.CANCELLED.value

# manual status moves; delivery and cancellation have their own operations
NEXT_STATUS = {
    PENDING: {PROCESSING},
    PROCESSING: {SHIPPED},
}


def cents(amount: float) -> int:
    return int(round(amount * 100))


def compute_shipping(items_price: float, threshold: float, fee: float) -> float:
    """Free shipping strictly above the threshold, flat fee otherwise."""
    return 0.0 if items_price > threshold else float(fee)


def can_cancel(order: Dict[str, Any]) -> bool:
    return order.get("status") in (PENDING, PROCESSING)


def order_out(doc: Dict[str, Any]) -> Dict[str, Any]:
    return serialize_doc(doc)


def _new_order_number() -> str:
    return f"DF-{utcnow():%Y%m%d}-{os.urandom(3).hex().upper()}"


def _new_payment_reference() -> str:
    return "DRN-" + os.urandom(8).hex().upper()


class OrderManager:
    def __init__(self, db: Database, catalog: CatalogStore, users: UserService,
                 notifications: NotificationService, settings: Settings):
        self.db = db
        self.orders = db["order"]
        self.catalog = catalog
        self.users = users
        self.notifications = notifications
        self.settings = settings

    # --- creation ---

    def price_items(self, request: CreateOrderRequest) -> Tuple[List[OrderItem], float, float, float]:
        """Snapshot every line at the current server price and compute totals."""
        items: List[OrderItem] = []
        items_price = 0.0
        for line in request.order_items:
            product = self.catalog.get_active_by_id(line.product_id)
            if not product:
                raise ProductUnavailable(line.product_id)
            if product.get("stock", 0) < line.quantity:
                raise InsufficientStock(line.product_id, product["name"], product.get("stock", 0))
            price = float(product["price"])
            items_price += price * line.quantity
            items.append(OrderItem(
                product_id=str(product["_id"]),
                name=product["name"],
                price=price,
                quantity=line.quantity,
                image=product.get("image", ""),
                weight=product.get("weight", 0),
            ))
        items_price = round(items_price, 2)
        shipping_price = compute_shipping(
            items_price, self.settings.free_shipping_threshold, self.settings.shipping_fee
        )
        total_price = items_price + shipping_price
        return items, items_price, shipping_price, total_price

    def submit_order(self, request: CreateOrderRequest, user: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Create an order from a cart, taking stock for every line.

        Client totals must equal the server totals once both are expressed in
        whole cents; amounts below a cent are currency rounding and are not
        compared, so 50.004 and 50.00 are the same total.
        """
        if not request.order_items:
            raise EmptyOrder()
        if user is None and not request.guest_email:
            raise ValidationError("Guest email is required for guest checkout")

        items, items_price, shipping_price, total_price = self.price_items(request)

        client = (cents(request.items_price), cents(request.shipping_price), cents(request.total_price))
        server = (cents(items_price), cents(shipping_price), cents(total_price))
        if client != server:
            logger.info("Rejected order totals: client %s, server %s", client, server)
            raise TotalMismatch()

        order = Order(
            user_id=str(user["_id"]) if user else None,
            guest_email=None if user else request.guest_email.lower(),
            session_id=request.session_id,
            order_number=_new_order_number(),
            order_items=items,
            shipping_address=request.shipping_address,
            payment_method=request.payment_method,
            payment_reference=_new_payment_reference() if request.payment_method == PaymentMethod.CARD else None,
            items_price=items_price,
            shipping_price=shipping_price,
            total_price=total_price,
        )

        # stock is taken line by line; any failure hands back what was taken
        reserved: List[OrderItem] = []
        try:
            for item in items:
                self.catalog.adjust_stock(item.product_id, -item.quantity)
                reserved.append(item)
            order_id = create_document(self.db, "order", order)
        except Exception:
            self._release(reserved)
            raise

        created = self.orders.find_one({"_id": parse_object_id(order_id)})
        logger.info("Created order %s (%s) total %.2f", order_id, order.order_number, total_price)
        self.notifications.notify(
            NotificationType.NEW_ORDER,
            f"New order #{order.order_number} placed",
            order_id=order_id,
            user_id=order.user_id,
        )
        return created

    def _release(self, items: List[OrderItem]) -> None:
        for item in items:
            try:
                self.catalog.release_stock(item.product_id, item.quantity)
            except Exception:
                logger.exception("Could not return %d units of %s to stock", item.quantity, item.product_id)

    def _restock(self, items: List[OrderItem]) -> None:
        # a cancelled sale still counts as sold
        for item in items:
            try:
                self.catalog.adjust_stock(item.product_id, item.quantity)
            except Exception:
                logger.exception("Could not restock %d units of %s", item.quantity, item.product_id)

    # --- reads ---

    def get_order(self, order_id: str) -> Dict[str, Any]:
        oid = parse_object_id(order_id)
        doc = self.orders.find_one({"_id": oid}) if oid else None
        if not doc:
            raise OrderNotFound()
        return doc

    def get_order_for(self, order_id: str, user: Optional[Dict[str, Any]],
                      guest_email: Optional[str] = None) -> Dict[str, Any]:
        order = self.get_order(order_id)
        if user and (is_admin(user) or order.get("user_id") == str(user["_id"])):
            return order
        if order.get("user_id") is None and guest_email and order.get("guest_email") == guest_email.strip().lower():
            return order
        raise NotAuthorized("Not authorized to view this order")

    def find_by_payment_reference(self, reference: str) -> Dict[str, Any]:
        doc = self.orders.find_one({"payment_reference": reference})
        if not doc:
            raise OrderNotFound(f"No order for payment reference {reference}")
        return doc

    def list_for_user(self, user: Dict[str, Any]) -> List[Dict[str, Any]]:
        return get_documents(self.db, "order", {"user_id": str(user["_id"])}, sort=[("created_at", -1)])

    def list_orders(self, page: int = 1, page_size: int = PAGE_SIZE) -> Dict[str, Any]:
        page = max(page, 1)
        total = self.orders.count_documents({})
        docs = self.orders.find({}).sort("created_at", -1).skip(page_size * (page - 1)).limit(page_size)
        return {
            "orders": [order_out(d) for d in docs],
            "page": page,
            "pages": math.ceil(total / page_size),
            "total": total,
        }

    # --- transitions ---

    def mark_paid(self, order_id: str, payment_result: Optional[Dict[str, Any]] = None) -> Tuple[Dict[str, Any], bool]:
        """Apply the PAID transition. Returns (order, applied).

        Applying it to an order that is already paid is a no-op.
        """
        order = self.get_order(order_id)
        now = utcnow()
        paid = {
            "is_paid": True,
            "paid_at": now,
            "payment_status": PaymentStatus.PAID.value,
            "payment_result": payment_result,
            "updated_at": now,
        }
        doc = self.orders.find_one_and_update(
            {"_id": order["_id"], "is_paid": False, "status": PENDING},
            {"$set": {**paid, "status": PROCESSING}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            # paying for an order that was already moved along by hand
            doc = self.orders.find_one_and_update(
                {"_id": order["_id"], "is_paid": False, "status": {"$in": [PROCESSING, SHIPPED, DELIVERED]}},
                {"$set": paid},
                return_document=ReturnDocument.AFTER,
            )
        applied = doc is not None
        if not applied:
            current = self.get_order(order_id)
            if not current.get("is_paid"):
                raise InvalidTransition(current.get("status"), "paid")
            doc = current
        else:
            logger.info("Order %s marked paid", order_id)
            self.notifications.notify(
                NotificationType.PAYMENT_RECEIVED,
                f"Payment received for Order #{doc.get('order_number')}",
                order_id=str(doc["_id"]),
                user_id=doc.get("user_id"),
            )

        # also runs on repeats, finishing a credit an earlier attempt never reached
        self._credit_purchases(doc)
        return self.get_order(order_id), applied

    def _credit_purchases(self, order: Dict[str, Any]) -> None:
        if not order.get("user_id") or order.get("purchases_credited"):
            return
        claimed = self.orders.find_one_and_update(
            {"_id": order["_id"], "is_paid": True, "purchases_credited": False},
            {"$set": {"purchases_credited": True}},
        )
        if claimed is None:
            return
        self.users.credit_purchase(order["user_id"], order["total_price"])

    def mark_delivered(self, order_id: str) -> Dict[str, Any]:
        order = self.get_order(order_id)
        now = utcnow()
        doc = self.orders.find_one_and_update(
            {"_id": order["_id"], "status": {"$in": [PENDING, PROCESSING, SHIPPED]}},
            {"$set": {"is_delivered": True, "delivered_at": now, "status": DELIVERED, "updated_at": now}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            current = self.get_order(order_id)
            if current.get("status") == DELIVERED:
                return current
            raise InvalidTransition(current.get("status"), DELIVERED)
        if not doc.get("is_paid"):
            logger.warning("Order %s delivered before payment was confirmed", order_id)
        self._notify_updated(doc)
        return doc

    def update_status(self, order_id: str, status: OrderStatus, user: Dict[str, Any]) -> Dict[str, Any]:
        target = OrderStatus(status).value
        if target == DELIVERED:
            return self.mark_delivered(order_id)
        if target == CANCELLED:
            return self.cancel(order_id, user)
        order = self.get_order(order_id)
        current = order.get("status")
        if target not in NEXT_STATUS.get(current, set()):
            raise InvalidTransition(current, target)
        doc = self.orders.find_one_and_update(
            {"_id": order["_id"], "status": current},
            {"$set": {"status": target, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise InvalidTransition(self.get_order(order_id).get("status"), target)
        self._notify_updated(doc)
        return doc

    def cancel(self, order_id: str, user: Dict[str, Any]) -> Dict[str, Any]:
        order = self.get_order(order_id)
        if not is_admin(user) and order.get("user_id") != str(user["_id"]):
            raise Forbidden("Not authorized to cancel this order")
        doc = self.orders.find_one_and_update(
            {"_id": order["_id"], "status": {"$in": [PENDING, PROCESSING]}},
            {"$set": {"status": CANCELLED, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise InvalidTransition(self.get_order(order_id).get("status"), CANCELLED)
        self._restock([OrderItem(**item) for item in doc.get("order_items", [])])
        logger.info("Order %s cancelled", order_id)
        self._notify_updated(doc)
        return doc

    def _notify_updated(self, doc: Dict[str, Any]) -> None:
        self.notifications.notify(
            NotificationType.ORDER_UPDATED,
            f"Order #{doc.get('order_number')} is now {doc.get('status')}",
            order_id=str(doc["_id"]),
            user_id=doc.get("user_id"),
        )
