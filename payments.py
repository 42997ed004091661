"""
Payment reconciliation

Bridges Paystack confirmations, pulled through the verify endpoint or pushed
through the signed webhook, to the order PAID transition. Both paths end in
reconcile(), and the transition itself is idempotent, so a client poll racing
the webhook applies the payment once.
"""

import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests

from errors import (
    InvalidSignature,
    InvalidTransition,
    OrderNotFound,
    PaymentNotFound,
    PaymentNotSuccessful,
    UpstreamTimeout,
    UpstreamUnavailable,
    ValidationError,
)
from orders import OrderManager, cents

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-paystack-signature"


class PaystackGateway:
    """Pull side of the processor API."""

    def __init__(self, secret_key: str, base_url: str = "https://api.paystack.co",
                 timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch_transaction(self, reference: str) -> Dict[str, Any]:
        url = f"{self.base_url}/transaction/verify/{quote(reference, safe='')}"
        try:
            response = self.session.get(
                url,
                headers={"Authorization": f"Bearer {self.secret_key}"},
                timeout=self.timeout,
            )
        except requests.Timeout:
            logger.warning("Paystack verify timed out for %s", reference)
            raise UpstreamTimeout()
        except requests.RequestException as e:
            logger.warning("Paystack verify failed for %s: %s", reference, e)
            raise UpstreamUnavailable("Error connecting to payment processor")

        if response.status_code >= 500 or response.status_code in (401, 403):
            logger.error("Paystack answered %s for %s", response.status_code, reference)
            raise UpstreamUnavailable()
        try:
            body = response.json()
        except ValueError:
            raise UpstreamUnavailable("Invalid response from payment processor")
        if response.status_code >= 400 or not body.get("status") or not body.get("data"):
            raise PaymentNotFound(reference)
        return body["data"]


class PaymentService:
    def __init__(self, orders: OrderManager, gateway: PaystackGateway, secret_key: str):
        self.orders = orders
        self.gateway = gateway
        self.secret_key = secret_key

    def verify_payment(self, reference: str) -> Dict[str, Any]:
        data = self.gateway.fetch_transaction(reference)
        data.setdefault("reference", reference)
        return self.reconcile(data)

    def reconcile(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply a processor transaction record to its order and return the order."""
        if data.get("status") != "success":
            raise PaymentNotSuccessful()
        reference = data.get("reference")
        if not reference:
            raise PaymentNotSuccessful("Transaction has no reference")
        order = self.orders.find_by_payment_reference(reference)

        amount = data.get("amount")
        if amount is not None and int(amount) < cents(order["total_price"]):
            logger.warning("Payment %s of %s does not cover order %s", reference, amount, order["_id"])
            raise PaymentNotSuccessful("Amount paid does not cover the order total")

        result = {
            "id": str(data.get("id", reference)),
            "status": data.get("status"),
            "update_time": data.get("paid_at"),
            "email_address": (data.get("customer") or {}).get("email"),
        }
        order, applied = self.orders.mark_paid(str(order["_id"]), result)
        if not applied:
            logger.info("Payment %s already applied to order %s", reference, order["_id"])
        return order

    def verify_signature(self, body: bytes, signature: Optional[str]) -> None:
        if not self.secret_key or not signature:
            raise InvalidSignature()
        expected = hmac.new(self.secret_key.encode(), body, hashlib.sha512).hexdigest()
        if not hmac.compare_digest(expected, signature):
            raise InvalidSignature()

    def handle_webhook(self, body: bytes, signature: Optional[str]) -> bool:
        """Process a pushed event. Returns whether an order was reconciled.

        Nothing in the payload is looked at before the signature checks out.
        """
        self.verify_signature(body, signature)
        try:
            event = json.loads(body)
        except ValueError:
            raise ValidationError("Malformed webhook payload")
        if not isinstance(event, dict) or not isinstance(event.get("data", {}), dict):
            raise ValidationError("Malformed webhook payload")

        if event.get("event") != "charge.success":
            logger.info("Ignoring webhook event %s", event.get("event"))
            return False
        try:
            self.reconcile(event.get("data") or {})
        except (OrderNotFound, PaymentNotSuccessful, InvalidTransition) as e:
            # acknowledged anyway; retries would hit the same wall
            logger.warning("Webhook payment not applied: %s", e)
            return False
        return True
