"""
Users and reward tiers

A user's reward tier is a pure step function of lifetime paid spend. The tier
stored on the user document is a cached projection of total_purchases and is
only ever rewritten from it.
"""

import logging
from typing import Any, Dict, Optional

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError
from werkzeug.security import check_password_hash, generate_password_hash

from database import create_document, parse_object_id, serialize_doc
from errors import NotAuthorized, NotFound, ValidationError
from schemas import Role, User

logger = logging.getLogger(__name__)

# (minimum lifetime spend, tier), highest first
REWARD_TIERS = [
    (1_000_000, "diamond"),
    (500_000, "platinum"),
    (100_000, "gold"),
    (50_000, "silver"),
    (0, "bronze"),
]


def reward_tier_for(total_purchases: float) -> str:
    for threshold, tier in REWARD_TIERS:
        if total_purchases >= threshold:
            return tier
    return "bronze"


def public_user(doc: Dict[str, Any]) -> Dict[str, Any]:
    out = serialize_doc(doc)
    out.pop("password_hash", None)
    return out


class UserService:
    def __init__(self, db: Database):
        self.users = db["user"]
        self.db = db

    def get(self, user_id: str) -> Dict[str, Any]:
        oid = parse_object_id(user_id)
        doc = self.users.find_one({"_id": oid}) if oid else None
        if not doc:
            raise NotFound(f"User not found: {user_id}")
        return doc

    def signup(self, name: str, email: str, password: str) -> Dict[str, Any]:
        email = email.lower()
        if self.users.find_one({"email": email}):
            raise ValidationError("Email already registered")
        user = User(name=name, email=email, password_hash=generate_password_hash(password))
        try:
            user_id = create_document(self.db, "user", user)
        except DuplicateKeyError:
            raise ValidationError("Email already registered")
        logger.info("Registered user %s", user_id)
        return self.users.find_one({"_id": parse_object_id(user_id)})

    def authenticate(self, email: str, password: str) -> Dict[str, Any]:
        user = self.users.find_one({"email": email.lower()})
        if not user or not check_password_hash(user.get("password_hash", ""), password):
            raise NotAuthorized("Invalid email or password")
        return user

    def upsert_admin(self, name: str, email: str, password: str) -> Dict[str, Any]:
        return self.users.find_one_and_update(
            {"email": email.lower()},
            {
                "$set": {
                    "name": name,
                    "email": email.lower(),
                    "password_hash": generate_password_hash(password),
                    "role": Role.ADMIN.value,
                },
                "$setOnInsert": {"total_purchases": 0, "reward_tier": reward_tier_for(0)},
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )

    def credit_purchase(self, user_id: Optional[str], amount: float) -> Optional[Dict[str, Any]]:
        """Add a paid order total to lifetime spend and refresh the tier.

        Callers guarantee at-most-once per order; this only does the arithmetic.
        """
        oid = parse_object_id(user_id)
        if oid is None:
            return None
        user = self.users.find_one_and_update(
            {"_id": oid},
            {"$inc": {"total_purchases": amount}},
            return_document=ReturnDocument.AFTER,
        )
        if user is None:
            logger.warning("Cannot credit purchase: user %s no longer exists", user_id)
            return None
        self.refresh_tier(user)
        return user

    def refresh_tier(self, user: Dict[str, Any]) -> str:
        total = user.get("total_purchases", 0)
        tier = reward_tier_for(total)
        # only write if nobody has credited the user since we read total
        self.users.update_one(
            {"_id": user["_id"], "total_purchases": total},
            {"$set": {"reward_tier": tier}},
        )
        user["reward_tier"] = tier
        return tier
