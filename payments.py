"""Xendit invoice API client."""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

from config import settings
from errors import PaymentGatewayError

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ["BCA", "BNI", "BRI", "MANDIRI", "OVO", "DANA", "GOPAY", "SHOPEEPAY", "QRIS"]


class XenditClient:
    def __init__(self, secret_key: Optional[str] = None, base_url: Optional[str] = None, timeout: int = 15):
        self.secret_key = secret_key if secret_key is not None else settings.xendit_api_key
        self.base_url = (base_url or settings.xendit_base_url).rstrip("/")
        self.timeout = timeout

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        if not self.secret_key:
            raise PaymentGatewayError("XENDIT_API_KEY is not configured")
        try:
            response = requests.request(
                method, f"{self.base_url}{path}", auth=(self.secret_key, ""),
                timeout=self.timeout, **kwargs
            )
        except requests.RequestException as e:
            logger.error("Xendit %s %s failed: %s", method, path, e)
            raise PaymentGatewayError("Payment gateway unreachable") from e
        if response.status_code >= 400:
            logger.error("Xendit %s %s returned %s: %s", method, path, response.status_code, response.text[:200])
            try:
                message = response.json().get("message")
            except ValueError:
                message = None
            raise PaymentGatewayError(message or "Payment gateway rejected the request")
        return response.json()

    def create_invoice(self, external_id: str, amount: int, customer: Dict[str, Any],
                       items: List[Dict[str, Any]], success_redirect_url: str,
                       failure_redirect_url: str) -> Dict[str, Any]:
        payload = {
            "external_id": external_id,
            "amount": amount,
            "currency": "IDR",
            "customer": {k: v for k, v in customer.items() if v},
            "items": items,
            "success_redirect_url": success_redirect_url,
            "failure_redirect_url": failure_redirect_url,
            "payment_methods": PAYMENT_METHODS,
        }
        return self._request("POST", "/v2/invoices", json=payload)

    def get_invoice(self, invoice_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/v2/invoices/{invoice_id}")


def get_payment_client() -> XenditClient:
    return XenditClient()


def invoice_expired(invoice: Dict[str, Any], at: Optional[datetime] = None) -> bool:
    expiry = invoice.get("expiry_date")
    if not expiry:
        return False
    expiry_at = datetime.fromisoformat(str(expiry).replace("Z", "+00:00"))
    if expiry_at.tzinfo is None:
        expiry_at = expiry_at.replace(tzinfo=timezone.utc)
    return expiry_at < (at or datetime.now(timezone.utc))


def order_invoice(db, client: XenditClient, order: Dict[str, Any], amount: int,
                  customer: Dict[str, Any], items: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Return the order's open invoice, creating a new one when none is usable."""
    order_id = str(order["_id"])
    invoice_id = order.get("xendit_invoice_id")
    if invoice_id:
        invoice = client.get_invoice(invoice_id)
        if not invoice_expired(invoice):
            return invoice
        logger.info("Invoice %s for order %s expired, creating a new one", invoice_id, order_id)
    base_url = settings.public_base_url.rstrip("/")
    invoice = client.create_invoice(
        external_id=order_id,
        amount=amount,
        customer=customer,
        items=items,
        success_redirect_url=f"{base_url}/reseller/orders?payment_success=true&order_id={order_id}",
        failure_redirect_url=f"{base_url}/reseller/orders?payment_failed=true&order_id={order_id}",
    )
    db["orders"].update_one({"_id": order["_id"]}, {"$set": {"xendit_invoice_id": invoice.get("id")}})
    return invoice
