import logging
import os
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database
from starlette.concurrency import run_in_threadpool

from catalog import CatalogStore, product_out
from dashboard import dashboard_stats
from database import get_db, serialize_doc
from errors import ProductNotFound, StorefrontError
from events import bus
from notifications import NotificationService
from orders import OrderManager, order_out
from payments import SIGNATURE_HEADER, PaymentService, PaystackGateway
from schemas import (
    Category,
    CreateOrderRequest,
    PaymentResult,
    ProductCreate,
    ProductUpdate,
    SignInRequest,
    SignUpRequest,
    StatusUpdateRequest,
    VerifyPaymentRequest,
)
from security import create_access_token, get_current_user, get_optional_user, require_admin
from settings import Settings, get_settings
from users import UserService, public_user

settings = get_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Derin Foods API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Errors

@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error_type": exc.code},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": list(e.get("loc", [])), "msg": e.get("msg")}
        for e in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"detail": "Invalid request", "error_type": "ValidationError", "errors": errors},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "error_type": "InternalError"},
    )


# Services

def get_catalog(db: Database = Depends(get_db)) -> CatalogStore:
    return CatalogStore(db, bus)


def get_users(db: Database = Depends(get_db)) -> UserService:
    return UserService(db)


def get_notifications(db: Database = Depends(get_db)) -> NotificationService:
    return NotificationService(db)


def get_orders(
    db: Database = Depends(get_db),
    catalog: CatalogStore = Depends(get_catalog),
    users: UserService = Depends(get_users),
    notifications: NotificationService = Depends(get_notifications),
    settings: Settings = Depends(get_settings),
) -> OrderManager:
    return OrderManager(db, catalog, users, notifications, settings)


def get_payment_gateway(settings: Settings = Depends(get_settings)) -> PaystackGateway:
    return PaystackGateway(settings.paystack_secret_key, settings.paystack_base_url, settings.payment_timeout)


def get_payments(
    orders: OrderManager = Depends(get_orders),
    gateway: PaystackGateway = Depends(get_payment_gateway),
    settings: Settings = Depends(get_settings),
) -> PaymentService:
    return PaymentService(orders, gateway, settings.paystack_secret_key)


@app.get("/")
def read_root():
    return {"message": "Derin Foods API is running"}


@app.get("/test")
def test_database(db: Database = Depends(get_db)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": db.name,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except Exception as e:
        logger.warning("Database check failed: %s", e)
        response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
    return response


# Auth

@app.post("/auth/signup", status_code=201)
def signup(payload: SignUpRequest, users: UserService = Depends(get_users),
           settings: Settings = Depends(get_settings)):
    user = users.signup(payload.name, payload.email, payload.password)
    return {"token": create_access_token(str(user["_id"]), settings), "user": public_user(user)}


@app.post("/auth/signin")
def signin(payload: SignInRequest, users: UserService = Depends(get_users),
           settings: Settings = Depends(get_settings)):
    user = users.authenticate(payload.email, payload.password)
    return {"token": create_access_token(str(user["_id"]), settings), "user": public_user(user)}


@app.get("/auth/me")
def me(user: Dict[str, Any] = Depends(get_current_user)):
    return public_user(user)


# Products

@app.get("/products")
def list_products(
    keyword: Optional[str] = None,
    category: Optional[Category] = None,
    page: int = Query(1, ge=1),
    catalog: CatalogStore = Depends(get_catalog),
):
    return catalog.list_active(keyword, category.value if category else None, page)


@app.get("/products/admin")
def list_all_products(
    keyword: Optional[str] = None,
    category: Optional[Category] = None,
    page: int = Query(1, ge=1),
    admin: Dict[str, Any] = Depends(require_admin),
    catalog: CatalogStore = Depends(get_catalog),
):
    return catalog.list_all(keyword, category.value if category else None, page)


@app.get("/products/{product_id}")
def get_product(product_id: str, catalog: CatalogStore = Depends(get_catalog)):
    doc = catalog.get_active_by_id(product_id)
    if not doc:
        raise ProductNotFound(product_id)
    return product_out(doc)


@app.post("/products", status_code=201)
def create_product(payload: ProductCreate, admin: Dict[str, Any] = Depends(require_admin),
                   catalog: CatalogStore = Depends(get_catalog)):
    return product_out(catalog.create_product(payload))


@app.put("/products/{product_id}")
def update_product(product_id: str, payload: ProductUpdate, admin: Dict[str, Any] = Depends(require_admin),
                   catalog: CatalogStore = Depends(get_catalog)):
    return product_out(catalog.update_product(product_id, payload))


@app.delete("/products/{product_id}")
def delete_product(product_id: str, admin: Dict[str, Any] = Depends(require_admin),
                   catalog: CatalogStore = Depends(get_catalog)):
    catalog.deactivate_product(product_id)
    return {"message": "Product removed"}


# Orders

@app.post("/orders", status_code=201)
def create_order(payload: CreateOrderRequest, user: Optional[Dict[str, Any]] = Depends(get_optional_user),
                 orders: OrderManager = Depends(get_orders)):
    return order_out(orders.submit_order(payload, user))


@app.get("/orders")
def list_orders(page: int = Query(1, ge=1), admin: Dict[str, Any] = Depends(require_admin),
                orders: OrderManager = Depends(get_orders)):
    return orders.list_orders(page)


@app.get("/orders/myorders")
def my_orders(user: Dict[str, Any] = Depends(get_current_user), orders: OrderManager = Depends(get_orders)):
    return [order_out(o) for o in orders.list_for_user(user)]


@app.get("/orders/{order_id}")
def get_order(order_id: str, guest_email: Optional[str] = None,
              user: Optional[Dict[str, Any]] = Depends(get_optional_user),
              orders: OrderManager = Depends(get_orders)):
    return order_out(orders.get_order_for(order_id, user, guest_email))


@app.put("/orders/{order_id}/pay")
def pay_order(order_id: str, payload: PaymentResult, admin: Dict[str, Any] = Depends(require_admin),
              orders: OrderManager = Depends(get_orders)):
    order, _ = orders.mark_paid(order_id, payload.model_dump())
    return order_out(order)


@app.put("/orders/{order_id}/deliver")
def deliver_order(order_id: str, admin: Dict[str, Any] = Depends(require_admin),
                  orders: OrderManager = Depends(get_orders)):
    return order_out(orders.mark_delivered(order_id))


@app.put("/orders/{order_id}/status")
def update_order_status(order_id: str, payload: StatusUpdateRequest,
                        admin: Dict[str, Any] = Depends(require_admin),
                        orders: OrderManager = Depends(get_orders)):
    return order_out(orders.update_status(order_id, payload.status, admin))


@app.put("/orders/{order_id}/cancel")
def cancel_order(order_id: str, user: Dict[str, Any] = Depends(get_current_user),
                 orders: OrderManager = Depends(get_orders)):
    return order_out(orders.cancel(order_id, user))


# Payments

@app.post("/payments/verify")
def verify_payment(payload: VerifyPaymentRequest, user: Dict[str, Any] = Depends(get_current_user),
                   payments: PaymentService = Depends(get_payments)):
    order = payments.verify_payment(payload.reference)
    return {"success": True, "message": "Payment verified successfully", "order": order_out(order)}


@app.post("/payments/webhook")
async def payment_webhook(request: Request,
                          signature: Optional[str] = Header(None, alias=SIGNATURE_HEADER),
                          payments: PaymentService = Depends(get_payments)):
    body = await request.body()
    await run_in_threadpool(payments.handle_webhook, body, signature)
    return {"received": True}


# Notifications

@app.get("/notifications")
def list_notifications(
    unread_only: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    admin: Dict[str, Any] = Depends(require_admin),
    notifications: NotificationService = Depends(get_notifications),
):
    return notifications.list_recent(unread_only, page, limit)


@app.put("/notifications/read-all")
def read_all_notifications(user: Dict[str, Any] = Depends(get_current_user),
                           notifications: NotificationService = Depends(get_notifications)):
    count = notifications.mark_all_read(user)
    return {"message": "All notifications marked as read", "updated": count}


@app.put("/notifications/{notification_id}/read")
def read_notification(notification_id: str, user: Dict[str, Any] = Depends(get_current_user),
                      notifications: NotificationService = Depends(get_notifications)):
    return serialize_doc(notifications.mark_read(notification_id, user))


@app.delete("/notifications/{notification_id}")
def delete_notification(notification_id: str, admin: Dict[str, Any] = Depends(require_admin),
                        notifications: NotificationService = Depends(get_notifications)):
    notifications.delete(notification_id)
    return {"message": "Notification removed"}


# Dashboard

@app.get("/dashboard/stats")
def get_dashboard_stats(admin: Dict[str, Any] = Depends(require_admin), db: Database = Depends(get_db)):
    return dashboard_stats(db)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
