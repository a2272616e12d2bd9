"""The capability interface every payment provider client satisfies.

Clients are independent classes that share an HTTP helper by composition;
the orchestrator only ever sees :class:`PaymentGateway`.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional, Protocol, runtime_checkable

from orderpay.db.models import Order, Payment
from orderpay.errors import RefundError


@dataclass(frozen=True)
class CheckoutSession:
    payment_url: Optional[str]
    external_payment_id: Optional[str]
    raw: dict = field(default_factory=dict)


@dataclass(frozen=True)
class PaymentReference:
    """What a provider's status-detail call says about a callback identifier."""

    order_reference: Optional[str]
    paid: bool
    raw: dict = field(default_factory=dict)


@runtime_checkable
class PaymentGateway(Protocol):
    name: str
    currency: str
    auto_capture: bool

    def create_checkout_session(self, order: Order) -> CheckoutSession: ...

    def verify_payment(self, external_payment_id: str) -> bool: ...

    def capture_payment(self, order: Order, external_payment_id: str) -> dict: ...

    def refund_payment(self, payment: Payment, amount_cents: int) -> dict: ...

    def handle_webhook(self, payload: dict) -> None: ...

    def webhook_payment_id(self, payload: dict) -> Optional[str]: ...


def to_amount(cents: int) -> Decimal:
    return (Decimal(int(cents)) / 100).quantize(Decimal("0.01"))


def format_amount(cents: int) -> str:
    return f"{to_amount(cents):.2f}"


def buyer_of(order: Order) -> dict[str, Any]:
    billing = order.billing_address or {}
    return {
        "name": billing.get("name") or order.user_email,
        "phone": billing.get("phone") or "",
        "email": billing.get("email") or order.user_email,
    }


def status_url(callback_url: str, gateway: str, status: str) -> str:
    sep = "&" if "?" in callback_url else "?"
    return f"{callback_url}{sep}gateway={gateway}&status={status}"


def check_refund_amount(gateway: str, payment: Payment, amount_cents: int) -> None:
    if amount_cents <= 0:
        raise RefundError(gateway, f"Refund amount must be positive, got {amount_cents}")
    if amount_cents > payment.amount_cents:
        raise RefundError(gateway, f"Refund amount {amount_cents} exceeds payment amount {payment.amount_cents}")
