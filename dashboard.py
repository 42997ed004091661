"""Aggregated admin dashboard metrics."""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from pymongo.database import Database

from database import utcnow

PERIOD = timedelta(days=30)


def format_change(current: float, previous: float) -> str:
    """Percentage change between two periods, e.g. "+12.5%" or "-3%"."""
    if previous == 0:
        return "+100%" if current > 0 else "0%"
    change = (current - previous) / abs(previous) * 100
    rounded = round(change, 1)
    if rounded == int(rounded):
        rounded = int(rounded)
    return f"{'+' if rounded >= 0 else ''}{rounded}%"


def _paid_revenue(db: Database, start: datetime, end: Optional[datetime] = None) -> float:
    created: Dict[str, Any] = {"$gte": start}
    if end is not None:
        created["$lt"] = end
    rows = list(db["order"].aggregate([
        {"$match": {"is_paid": True, "created_at": created}},
        {"$group": {"_id": None, "total": {"$sum": "$total_price"}}},
    ]))
    return round(rows[0]["total"], 2) if rows else 0.0


def _count(db: Database, collection: str, start: datetime, end: Optional[datetime] = None) -> int:
    created: Dict[str, Any] = {"$gte": start}
    if end is not None:
        created["$lt"] = end
    return db[collection].count_documents({"created_at": created})


def dashboard_stats(db: Database, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    this_start = now - PERIOD
    prev_start = this_start - PERIOD

    revenue = _paid_revenue(db, this_start)
    prev_revenue = _paid_revenue(db, prev_start, this_start)
    orders = _count(db, "order", this_start)
    prev_orders = _count(db, "order", prev_start, this_start)
    users = _count(db, "user", this_start)
    prev_users = _count(db, "user", prev_start, this_start)

    top = db["order"].aggregate([
        {"$match": {"created_at": {"$gte": this_start}, "status": {"$ne": "cancelled"}}},
        {"$unwind": "$order_items"},
        {"$group": {
            "_id": "$order_items.product_id",
            "name": {"$first": "$order_items.name"},
            "total_qty": {"$sum": "$order_items.quantity"},
        }},
        {"$sort": {"total_qty": -1}},
        {"$limit": 5},
    ])

    return {
        "revenue": {"total": revenue, "change": format_change(revenue, prev_revenue)},
        "orders": {
            "total": db["order"].count_documents({}),
            "this_period": orders,
            "change": format_change(orders, prev_orders),
        },
        "users": {
            "total": db["user"].count_documents({}),
            "this_period": users,
            "change": format_change(users, prev_users),
        },
        "top_products": [
            {"product_id": row["_id"], "name": row["name"], "quantity": row["total_qty"]}
            for row in top
        ],
    }
