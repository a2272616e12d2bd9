"""Tabby: buy-now-pay-later. The buyer authorizes on Tabby's page, the merchant captures."""

from typing import Optional

import httpx
import structlog

from orderpay.core.config import TabbyConfig
from orderpay.db.models import Order, Payment, now_utc
from orderpay.errors import CaptureError, GatewayError, RefundError
from orderpay.gateways.base import CheckoutSession, buyer_of, check_refund_amount, format_amount, status_url
from orderpay.gateways.http import GatewayHTTP, GatewayReply

logger = structlog.get_logger(__name__)

PAID_STATUSES = frozenset({"AUTHORIZED", "CLOSED"})
CAPTURED_STATUS = "CLOSED"


class TabbyGateway:
    name = "tabby"
    auto_capture = False

    def __init__(self, config: TabbyConfig, timeout: float = 20.0, locale: str = "en",
                 transport: Optional[httpx.BaseTransport] = None):
        self.config = config
        self.currency = config.currency
        self.locale = locale
        self.http = GatewayHTTP(self.name, config.base_url, config.api_key, timeout, transport)

    def create_checkout_session(self, order: Order) -> CheckoutSession:
        buyer = buyer_of(order)
        address = order.delivery_address
        payload = {
            "payment": {
                "amount": format_amount(order.total_cents),
                "currency": self.currency,
                "description": f"Order #{order.order_number}",
                "buyer": {"phone": buyer["phone"], "email": buyer["email"], "name": buyer["name"]},
                "shipping_address": {
                    "city": address.get("city", ""),
                    "address": address.get("address", ""),
                    "zip": address.get("zip") or "",
                },
                "order": {
                    "tax_amount": format_amount(order.tax_cents),
                    "shipping_amount": format_amount(order.shipping_cents),
                    "discount_amount": format_amount(order.discount_cents),
                    "updated_at": now_utc().isoformat() + "Z",
                    "reference_id": order.order_number,
                    "items": self._items(order),
                },
                "buyer_history": {
                    "registered_since": order.created_at.isoformat() + "Z",
                    "loyalty_level": 0,
                    "is_phone_number_verified": bool(buyer["phone"]),
                    "is_email_verified": False,
                },
            },
            "lang": "ar" if self.locale == "ar" else "en",
            "merchant_code": self.config.merchant_code,
            "merchant_urls": {
                status: status_url(self.config.callback_url, self.name, status)
                for status in ("success", "cancel", "failure")
            },
        }
        reply = self.http.post("/checkout", payload)
        self._raise_for_error("/checkout", payload, reply)
        if reply.get("status") == "rejected":
            reason = self._rejection_reason(reply)
            message = "Tabby rejected the payment request" + (f": {reason}" if reason else "")
            raise self.http.fail("/checkout", payload, reply, message)

        products = (reply.get("configuration") or {}).get("available_products") or {}
        installments = products.get("installments") or [{}]
        payment = reply.get("payment") or {}
        external_id = payment.get("id") or reply.get("id")
        return CheckoutSession(
            payment_url=installments[0].get("web_url"),
            external_payment_id=str(external_id) if external_id else None,
            raw=reply.data if isinstance(reply.data, dict) else {},
        )

    def verify_payment(self, external_payment_id: str) -> bool:
        endpoint = f"/payments/{external_payment_id}"
        reply = self.http.get(endpoint)
        self._raise_for_error(endpoint, None, reply)
        return reply.get("status") in PAID_STATUSES

    def capture_payment(self, order: Order, external_payment_id: str) -> dict:
        endpoint = f"/payments/{external_payment_id}/captures"
        payload = {
            "amount": format_amount(order.total_cents),
            "tax_amount": format_amount(order.tax_cents),
            "shipping_amount": format_amount(order.shipping_cents),
            "discount_amount": format_amount(order.discount_cents),
            "created_at": now_utc().isoformat() + "Z",
            "items": self._items(order),
            "reference_id": order.order_number,
        }
        reply = self.http.post(endpoint, payload)
        self._raise_for_error(endpoint, payload, reply, CaptureError)
        if reply.get("status") != CAPTURED_STATUS:
            raise self.http.fail(endpoint, payload, reply, "Failed to capture Tabby payment", CaptureError)
        captures = reply.get("captures") or []
        return {
            "captured": True,
            "capture_id": captures[-1].get("id") if captures else reply.get("id"),
        }

    def refund_payment(self, payment: Payment, amount_cents: int) -> dict:
        check_refund_amount(self.name, payment, amount_cents)
        endpoint = f"/payments/{payment.payment_id}/refunds"
        payload = {"amount": format_amount(amount_cents)}
        reply = self.http.post(endpoint, payload)
        self._raise_for_error(endpoint, payload, reply, RefundError)
        refunds = reply.get("refunds") or []
        return {
            "refund_id": refunds[-1].get("id") if refunds else reply.get("id"),
            "amount": payload["amount"],
        }

    def handle_webhook(self, payload: dict) -> None:
        logger.info("webhook_received", gateway=self.name, status=payload.get("status"), payload=payload)

    def webhook_payment_id(self, payload: dict) -> Optional[str]:
        pid = payload.get("id")
        return str(pid) if pid else None

    def _items(self, order: Order) -> list:
        items = []
        for it in order.items:
            product = it.product
            items.append({
                "title": it.title_snapshot,
                "description": (product.description if product is not None else "") or "",
                "quantity": it.qty,
                "unit_price": format_amount(it.unit_price_cents),
                "discount_amount": "0.00",
                "reference_id": str(it.product_id),
                "image_url": (product.image_url if product is not None else "") or "",
                "category": "product",
            })
        return items

    def _rejection_reason(self, reply: GatewayReply) -> Optional[str]:
        products = (reply.get("configuration") or {}).get("products") or {}
        installments = products.get("installments") or {}
        return installments.get("rejection_reason") if isinstance(installments, dict) else None

    def _raise_for_error(self, endpoint: str, payload: Optional[dict], reply: GatewayReply,
                         error_cls: type[GatewayError] = GatewayError) -> None:
        if reply.ok:
            return
        message = reply.get("error") or reply.get("message") or (reply.data if isinstance(reply.data, str) else "")
        raise self.http.fail(endpoint, payload, reply,
                             message or f"Tabby request failed with status {reply.status_code}", error_cls)
