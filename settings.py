"""
Runtime configuration

Everything is read from environment variables once and cached.
Routes receive the settings through the get_settings dependency.
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List


def _split_origins(raw: str) -> List[str]:
    return [o.strip() for o in raw.split(",") if o.strip()] or ["*"]


@dataclass(frozen=True)
class Settings:
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "derin_foods"
    jwt_secret: str = "change-me"
    jwt_expires_days: int = 30
    paystack_secret_key: str = ""
    paystack_base_url: str = "https://api.paystack.co"
    payment_timeout: float = 10.0
    free_shipping_threshold: float = 50.0
    shipping_fee: float = 10.0
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", "mongodb://localhost:27017"),
        database_name=os.getenv("DATABASE_NAME", "derin_foods"),
        jwt_secret=os.getenv("JWT_SECRET", "change-me"),
        jwt_expires_days=int(os.getenv("JWT_EXPIRES_DAYS", 30)),
        paystack_secret_key=os.getenv("PAYSTACK_SECRET_KEY", ""),
        paystack_base_url=os.getenv("PAYSTACK_BASE_URL", "https://api.paystack.co"),
        payment_timeout=float(os.getenv("PAYMENT_TIMEOUT", 10)),
        free_shipping_threshold=float(os.getenv("FREE_SHIPPING_THRESHOLD", 50)),
        shipping_fee=float(os.getenv("SHIPPING_FEE", 10)),
        cors_origins=_split_origins(os.getenv("CORS_ORIGINS", "*")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
