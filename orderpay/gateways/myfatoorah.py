"""MyFatoorah: invoice based, captures automatically.

Checkout returns an ``InvoiceId`` which is what gets persisted. The browser
redirect only carries the ``PaymentId`` of the attempt, so callbacks are
resolved through :meth:`MyFatoorahGateway.resolve_order_reference`, which reads
the ``CustomerReference`` (our order number) back from the provider.
"""

from typing import Optional

import httpx
import structlog

from orderpay.core.config import MyFatoorahConfig
from orderpay.db.models import Order, Payment
from orderpay.errors import RefundError
from orderpay.gateways.base import (
    CheckoutSession, PaymentReference, buyer_of, check_refund_amount, to_amount,
)
from orderpay.gateways.http import GatewayHTTP, GatewayReply

logger = structlog.get_logger(__name__)

PAID_STATUS = "Paid"


class MyFatoorahGateway:
    name = "myfatoorah"
    auto_capture = True

    def __init__(self, config: MyFatoorahConfig, timeout: float = 20.0, locale: str = "en",
                 transport: Optional[httpx.BaseTransport] = None):
        self.config = config
        self.currency = config.currency
        self.locale = locale
        self.http = GatewayHTTP(self.name, config.base_url, config.api_key, timeout, transport)

    def create_checkout_session(self, order: Order) -> CheckoutSession:
        buyer = buyer_of(order)
        payload = {
            "PaymentMethodId": self.config.payment_method_id,
            "CustomerName": buyer["name"],
            "InvoiceValue": float(to_amount(order.total_cents)),
            "DisplayCurrencyIso": self.currency,
            "CustomerEmail": buyer["email"],
            "CustomerMobile": buyer["phone"],
            "CallBackUrl": self.config.callback_url,
            "ErrorUrl": self.config.error_url,
            "Language": "ar" if self.locale == "ar" else "en",
            "CustomerReference": order.order_number,
            "UserDefinedField": str(order.id),
            "InvoiceItems": [
                {
                    "ItemName": it.title_snapshot,
                    "Quantity": it.qty,
                    "UnitPrice": float(to_amount(it.unit_price_cents)),
                }
                for it in order.items
            ],
        }
        data = self._call("v2/ExecutePayment", payload)
        invoice_id = data.get("InvoiceId")
        return CheckoutSession(
            payment_url=data.get("PaymentURL"),
            external_payment_id=str(invoice_id) if invoice_id is not None else None,
            raw=data,
        )

    def verify_payment(self, external_payment_id: str) -> bool:
        data = self.get_payment_status(external_payment_id, key_type="InvoiceId")
        return data.get("InvoiceStatus") == PAID_STATUS

    def resolve_order_reference(self, external_id: str) -> PaymentReference:
        data = self.get_payment_status(external_id, key_type="PaymentId")
        return PaymentReference(
            order_reference=data.get("CustomerReference") or None,
            paid=data.get("InvoiceStatus") == PAID_STATUS,
            raw=data,
        )

    def capture_payment(self, order: Order, external_payment_id: str) -> dict:
        # funds are captured by MyFatoorah at payment time
        return self.get_payment_status(external_payment_id, key_type="InvoiceId")

    def refund_payment(self, payment: Payment, amount_cents: int) -> dict:
        check_refund_amount(self.name, payment, amount_cents)
        if payment.transaction_id:
            key, key_type = payment.transaction_id, "PaymentId"
        else:
            key, key_type = payment.payment_id, "InvoiceId"
        order_number = payment.order.order_number if payment.order is not None else payment.order_id
        payload = {
            "KeyType": key_type,
            "Key": key,
            "RefundChargeOnCustomer": False,
            "ServiceChargeOnCustomer": False,
            "Amount": float(to_amount(amount_cents)),
            "Comment": f"Refund for order #{order_number}",
        }
        data = self._call("v2/MakeRefund", payload, error_cls=RefundError)
        return {
            "refund_id": data.get("RefundId"),
            "refund_reference": data.get("RefundReference"),
            "amount": float(to_amount(amount_cents)),
        }

    def handle_webhook(self, payload: dict) -> None:
        logger.info("webhook_received", gateway=self.name, event=payload.get("Event"), payload=payload)

    def webhook_payment_id(self, payload: dict) -> Optional[str]:
        data = payload.get("Data") or {}
        invoice_id = data.get("InvoiceId")
        return str(invoice_id) if invoice_id is not None else None

    def get_payment_status(self, key: str, key_type: str = "PaymentId") -> dict:
        return self._call("v2/GetPaymentStatus", {"Key": key, "KeyType": key_type})

    def payment_options(self, amount_cents: int, phone: Optional[str] = None) -> list:
        payload = {"InvoiceAmount": float(to_amount(amount_cents)), "CurrencyIso": self.currency}
        data = self._call("v2/InitiatePayment", payload)
        return data.get("PaymentMethods") or []

    def _call(self, endpoint: str, payload: dict, error_cls=None) -> dict:
        reply = self.http.post(endpoint, payload)
        self._raise_for_error(endpoint, payload, reply, error_cls)
        data = reply.get("Data")
        return data if isinstance(data, dict) else {}

    def _raise_for_error(self, endpoint: str, payload: dict, reply: GatewayReply, error_cls=None) -> None:
        if reply.ok and reply.get("IsSuccess") is not False:
            return
        message = ""
        errors = reply.get("ValidationErrors")
        if errors:
            message = ", ".join(str(e.get("Error")) for e in errors if isinstance(e, dict) and e.get("Error"))
        if not message:
            message = reply.get("Message") or ""
        if not message and not isinstance(reply.data, dict):
            message = str(reply.data or "")
        kwargs = {"error_cls": error_cls} if error_cls else {}
        raise self.http.fail(endpoint, payload, reply, message or "Unknown payment gateway error", **kwargs)
