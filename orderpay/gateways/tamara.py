"""Tamara: instalments keyed by Tamara's own ``order_id``; approved orders must be authorised, then captured."""

from typing import Optional

import httpx
import structlog

from orderpay.core.config import TamaraConfig
from orderpay.db.models import Order, Payment, now_utc
from orderpay.errors import CaptureError, GatewayError, RefundError
from orderpay.gateways.base import CheckoutSession, buyer_of, check_refund_amount, status_url, to_amount
from orderpay.gateways.http import GatewayHTTP, GatewayReply

logger = structlog.get_logger(__name__)

PAID_STATUSES = frozenset({"approved", "authorised", "partially_captured", "fully_captured"})


class TamaraGateway:
    name = "tamara"
    auto_capture = False

    def __init__(self, config: TamaraConfig, timeout: float = 20.0, locale: str = "en",
                 transport: Optional[httpx.BaseTransport] = None):
        self.config = config
        self.currency = config.currency
        self.locale = locale
        self.http = GatewayHTTP(self.name, config.base_url, config.api_key, timeout, transport)

    def money(self, cents: int) -> dict:
        return {"amount": float(to_amount(cents)), "currency": self.currency}

    def create_checkout_session(self, order: Order) -> CheckoutSession:
        buyer = buyer_of(order)
        first, _, last = buyer["name"].partition(" ")
        payload = {
            "order_reference_id": order.order_number,
            "order_number": order.order_number,
            "total_amount": self.money(order.total_cents),
            "description": f"Order #{order.order_number}",
            "country_code": self.config.country,
            "payment_type": "PAY_BY_INSTALMENTS",
            "locale": "ar_SA" if self.locale == "ar" else "en_US",
            "items": self._items(order),
            "consumer": {
                "first_name": first,
                "last_name": last or first,
                "phone_number": buyer["phone"],
                "email": buyer["email"],
            },
            "billing_address": self._address(order.billing_address or {}),
            "shipping_address": self._address(order.delivery_address),
            "tax_amount": self.money(order.tax_cents),
            "shipping_amount": self.money(order.shipping_cents),
            "discount": {"name": "discount", "amount": self.money(order.discount_cents)},
            "merchant_url": {
                "success": status_url(self.config.callback_url, self.name, "success"),
                "cancel": status_url(self.config.callback_url, self.name, "cancel"),
                "failure": status_url(self.config.callback_url, self.name, "failure"),
                "notification": self.config.webhook_url,
            },
        }
        reply = self.http.post("/checkout", payload)
        self._raise_for_error("/checkout", payload, reply)
        order_id = reply.get("order_id")
        return CheckoutSession(
            payment_url=reply.get("checkout_url"),
            external_payment_id=str(order_id) if order_id else None,
            raw=reply.data if isinstance(reply.data, dict) else {},
        )

    def verify_payment(self, external_payment_id: str) -> bool:
        endpoint = f"/orders/{external_payment_id}"
        reply = self.http.get(endpoint)
        self._raise_for_error(endpoint, None, reply)
        return reply.get("status") in PAID_STATUSES

    def capture_payment(self, order: Order, external_payment_id: str) -> dict:
        authorise = f"/orders/{external_payment_id}/authorise"
        reply = self.http.post(authorise, {})
        self._raise_for_error(authorise, {}, reply, CaptureError)
        if not reply.get("order_id"):
            raise self.http.fail(authorise, {}, reply, "Failed to authorise Tamara payment", CaptureError)

        payload = {
            "order_id": external_payment_id,
            "total_amount": self.money(order.total_cents),
            "tax_amount": self.money(order.tax_cents),
            "shipping_amount": self.money(order.shipping_cents),
            "discount_amount": self.money(order.discount_cents),
            "items": self._items(order),
            "shipping_info": {
                "shipped_at": now_utc().isoformat() + "Z",
                "shipping_company": self.config.merchant_name,
            },
        }
        reply = self.http.post("/payments/capture", payload)
        self._raise_for_error("/payments/capture", payload, reply, CaptureError)
        if not reply.get("capture_id"):
            raise self.http.fail("/payments/capture", payload, reply, "Failed to capture Tamara payment", CaptureError)
        return {"captured": True, "capture_id": reply.get("capture_id")}

    def refund_payment(self, payment: Payment, amount_cents: int) -> dict:
        check_refund_amount(self.name, payment, amount_cents)
        order_number = payment.order.order_number if payment.order is not None else payment.order_id
        payload = {
            "order_id": payment.payment_id,
            "total_amount": self.money(amount_cents),
            "comment": f"Refund for order #{order_number}",
        }
        reply = self.http.post("/payments/refund", payload)
        self._raise_for_error("/payments/refund", payload, reply, RefundError)
        if not reply.get("refund_id"):
            raise self.http.fail("/payments/refund", payload, reply, "Tamara did not confirm the refund", RefundError)
        return {"refund_id": reply.get("refund_id"), "amount": payload["total_amount"]["amount"]}

    def handle_webhook(self, payload: dict) -> None:
        logger.info("webhook_received", gateway=self.name, event_type=payload.get("event_type"), payload=payload)

    def webhook_payment_id(self, payload: dict) -> Optional[str]:
        oid = payload.get("order_id")
        return str(oid) if oid else None

    def payment_options(self, amount_cents: int, phone: Optional[str] = None) -> list:
        payload = {
            "country": self.config.country,
            "order_value": self.money(amount_cents),
            "phone_number": phone or "",
            "is_vip": False,
        }
        endpoint = "/checkout/payment-options-pre-check"
        reply = self.http.post(endpoint, payload)
        self._raise_for_error(endpoint, payload, reply)
        if not reply.get("has_available_payment_options"):
            return []
        return reply.get("available_payment_labels") or []

    def _items(self, order: Order) -> list:
        items = []
        for it in order.items:
            product = it.product
            items.append({
                "reference_id": str(it.product_id),
                "type": "Physical",
                "name": it.title_snapshot,
                "sku": f"PROD-{it.product_id}",
                "image_url": (product.image_url if product is not None else "") or "",
                "quantity": it.qty,
                "unit_price": self.money(it.unit_price_cents),
                "discount_amount": self.money(0),
                "tax_amount": self.money(0),
                "total_amount": self.money(it.total_price_cents),
            })
        return items

    def _address(self, address: dict) -> dict:
        name = address.get("name") or ""
        first, _, last = name.partition(" ")
        return {
            "first_name": first,
            "last_name": last or first,
            "line1": address.get("address", ""),
            "line2": "",
            "region": address.get("region") or "",
            "postal_code": address.get("zip") or "",
            "city": address.get("city", ""),
            "country_code": self.config.country,
            "phone_number": address.get("phone", ""),
        }

    def _raise_for_error(self, endpoint: str, payload: Optional[dict], reply: GatewayReply,
                         error_cls: type[GatewayError] = GatewayError) -> None:
        if reply.ok:
            return
        message = reply.get("message") or ""
        errors = reply.get("errors")
        if errors:
            details = ", ".join(str(e.get("error_code", e)) if isinstance(e, dict) else str(e) for e in errors)
            message = f"{message}: {details}" if message else details
        if not message and isinstance(reply.data, str):
            message = reply.data
        raise self.http.fail(endpoint, payload, reply,
                             message or f"Tamara request failed with status {reply.status_code}", error_cls)
