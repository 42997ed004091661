"""Error kinds raised by the storefront services.

Each kind carries a stable machine readable code and the HTTP status the API
answers with. Route handlers never build error responses themselves; the
exception handlers in main.py translate these.
"""

from typing import Optional


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    code = "InternalError"
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(StorefrontError):
    code = "ValidationError"
    status_code = 400
    default_message = "Invalid request"


class NotFound(StorefrontError):
    code = "NotFound"
    status_code = 404
    default_message = "Resource not found"


class ProductNotFound(NotFound):
    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class OrderNotFound(NotFound):
    code = "OrderNotFound"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or "Order not found")


class NotificationNotFound(NotFound):
    def __init__(self, notification_id: str):
        self.notification_id = notification_id
        super().__init__(f"Notification not found: {notification_id}")


class NotAuthorized(StorefrontError):
    code = "NotAuthorized"
    status_code = 401
    default_message = "Not authorized"


class Forbidden(StorefrontError):
    code = "Forbidden"
    status_code = 403
    default_message = "Not authorized as an admin"


class EmptyOrder(StorefrontError):
    code = "EmptyOrder"
    status_code = 400
    default_message = "No order items"


class ProductUnavailable(StorefrontError):
    """Raised when an ordered product is missing or no longer active."""

    code = "ProductUnavailable"
    status_code = 404

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not available: {product_id}")


class InsufficientStock(StorefrontError):
    """Raised when a stock decrement would take a product below zero."""

    code = "InsufficientStock"
    status_code = 400

    def __init__(self, product_id: str, name: Optional[str] = None, available: Optional[int] = None):
        self.product_id = product_id
        self.available = available
        label = name or product_id
        msg = f"Insufficient stock for {label}"
        if available is not None:
            msg = f"{msg}. Only {available} available."
        super().__init__(msg)


class TotalMismatch(StorefrontError):
    code = "TotalMismatch"
    status_code = 400
    default_message = "Order totals do not match"


class InvalidTransition(StorefrontError):
    """Raised when an order state change is not allowed from its current status."""

    code = "InvalidTransition"
    status_code = 409

    def __init__(self, status: str, target: str):
        self.status = status
        self.target = target
        super().__init__(f"Cannot move order from '{status}' to '{target}'")


class PaymentNotFound(StorefrontError):
    code = "PaymentNotFound"
    status_code = 400

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"No transaction found for reference {reference}")


class PaymentNotSuccessful(StorefrontError):
    code = "PaymentNotSuccessful"
    status_code = 400
    default_message = "Payment not successful"


class InvalidSignature(StorefrontError):
    code = "InvalidSignature"
    status_code = 400
    default_message = "Invalid signature"


class UpstreamUnavailable(StorefrontError):
    """The payment processor could not be reached or answered with a 5xx.

    Clients should retry; this is never a payment denial.
    """

    code = "UpstreamUnavailable"
    status_code = 502
    default_message = "Payment processor unavailable"


class UpstreamTimeout(UpstreamUnavailable):
    code = "UpstreamTimeout"
    status_code = 504
    default_message = "Payment processor timed out"
