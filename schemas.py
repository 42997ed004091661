"""
Database Schemas

Pydantic models that define the MongoDB collections used by the app, plus the
request bodies accepted by the API. Collection names are the lowercase of the
document class name:

- Product -> "product"
- Order -> "order"
- User -> "user"
- Notification -> "notification"
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class Category(str, Enum):
    FOOD = "Food"
    BEVERAGES = "Beverages"
    SNACKS = "Snacks"
    DESSERTS = "Desserts"
    OTHERS = "Others"


class PaymentMethod(str, Enum):
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    CASH_ON_DELIVERY = "cash_on_delivery"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


class NotificationType(str, Enum):
    NEW_ORDER = "new_order"
    PAYMENT_RECEIVED = "payment_received"
    ORDER_UPDATED = "order_updated"


class Document(BaseModel):
    """Base for stored documents; enums are kept as their plain values."""

    model_config = ConfigDict(use_enum_values=True, validate_default=True)


# Product collection
class PriceHistoryEntry(BaseModel):
    price: float = Field(..., ge=0)
    date: datetime


class Product(Document):
    name: str = Field(..., max_length=100, description="Product name")
    description: str = Field(..., description="Product description")
    price: float = Field(..., ge=0, description="Unit price")
    category: Category = Field(..., description="Product category")
    stock: int = Field(0, ge=0, description="Units available for sale")
    sold: int = Field(0, ge=0, description="Units sold to date")
    image: str = Field("", description="Image URL")
    weight: float = Field(0, ge=0)
    min_order_qty: int = Field(1, ge=1)
    is_active: bool = Field(True, description="Soft-delete flag")
    price_history: List[PriceHistoryEntry] = Field(default_factory=list)


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    category: Category
    stock: int = Field(0, ge=0)
    image: str = ""
    weight: float = Field(0, ge=0)
    min_order_qty: int = Field(1, ge=1)


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    category: Optional[Category] = None
    stock: Optional[int] = Field(None, ge=0)
    image: Optional[str] = None
    weight: Optional[float] = Field(None, ge=0)
    min_order_qty: Optional[int] = Field(None, ge=1)
    is_active: Optional[bool] = None


# Order Item (embedded in Order)
class OrderItem(BaseModel):
    product_id: str = Field(..., description="Referenced product _id as string")
    name: str = Field(..., description="Snapshot of product name at purchase time")
    price: float = Field(..., ge=0, description="Unit price at purchase time")
    quantity: int = Field(..., ge=1, description="Quantity ordered")
    image: str = ""
    weight: float = 0


class ShippingAddress(BaseModel):
    full_name: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)


class PaymentResult(BaseModel):
    id: Optional[str] = None
    status: Optional[str] = None
    update_time: Optional[str] = None
    email_address: Optional[str] = None


# Order collection
class Order(Document):
    user_id: Optional[str] = Field(None, description="Owning user, None for guest orders")
    guest_email: Optional[str] = None
    session_id: Optional[str] = None
    order_number: str
    order_items: List[OrderItem]
    shipping_address: ShippingAddress
    payment_method: PaymentMethod = PaymentMethod.CARD
    payment_reference: Optional[str] = None
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_result: Optional[PaymentResult] = None
    items_price: float = Field(..., ge=0)
    shipping_price: float = Field(..., ge=0)
    total_price: float = Field(..., ge=0)
    is_paid: bool = False
    paid_at: Optional[datetime] = None
    is_delivered: bool = False
    delivered_at: Optional[datetime] = None
    status: OrderStatus = OrderStatus.PENDING
    purchases_credited: bool = Field(False, description="Whether total_price was added to the user's lifetime spend")


class OrderLineRequest(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)


class CreateOrderRequest(BaseModel):
    order_items: List[OrderLineRequest] = Field(default_factory=list)
    shipping_address: ShippingAddress
    payment_method: PaymentMethod = PaymentMethod.CARD
    items_price: float = Field(..., ge=0)
    shipping_price: float = Field(..., ge=0)
    total_price: float = Field(..., ge=0)
    guest_email: Optional[EmailStr] = None
    session_id: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    status: OrderStatus


# User collection
class User(Document):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password_hash: str = Field(..., description="Password hash")
    role: Role = Role.USER
    total_purchases: float = Field(0, ge=0, description="Lifetime paid spend")
    reward_tier: str = "bronze"


class SignUpRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)


class SignInRequest(BaseModel):
    email: EmailStr
    password: str


# Notification collection
class Notification(Document):
    type: NotificationType
    message: str
    order_id: Optional[str] = None
    user_id: Optional[str] = None
    read: bool = False


class VerifyPaymentRequest(BaseModel):
    reference: str = Field(..., min_length=1)
