"""Payment orchestration: checkout, reconciliation, capture and refund.

Every state change here is one transaction covering the Payment row, its
Order and, for refunds, the restored stock. Rows are locked Order first, then
Payment. Gateway clients never touch the database; they only answer questions
about the provider.
"""

import uuid
from dataclasses import dataclass
from typing import Mapping, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from orderpay.db.models import (
    SETTLED_PAYMENT_STATUSES, Order, OrderPaymentStatus, OrderStatus, Payment, PaymentMethod,
    PaymentStatus, now_utc,
)
from orderpay.db.session import transaction
from orderpay.errors import (
    GatewayError, NotRefundableError, OrderNotPayableError, PaymentNotFoundError, PaymentNotPaidError,
    ReferenceNotFoundError, RefundExceedsAmountError, ValidationError,
)
from orderpay.gateways.registry import GatewayRegistry
from orderpay.services.events import EventEmitter
from orderpay.services.orders import OrderManager
from orderpay.services.stock import StockLedger

logger = structlog.get_logger(__name__)

# identifier field names the providers use on their redirect callbacks
CALLBACK_ID_FIELDS = ("paymentId", "Id", "payment_id", "order_id", "orderId")


@dataclass
class InitiatedPayment:
    payment_url: Optional[str]
    payment: Payment


class PaymentOrchestrator:
    def __init__(self, registry: GatewayRegistry, orders: Optional[OrderManager] = None,
                 ledger: Optional[StockLedger] = None, events: Optional[EventEmitter] = None):
        self.registry = registry
        self.events = events or EventEmitter()
        self.ledger = ledger or StockLedger()
        self.orders = orders or OrderManager(ledger=self.ledger, events=self.events)

    # ---------- lookups ----------
    def get_payment(self, db: Session, payment_pk: int) -> Payment:
        payment = db.get(Payment, payment_pk)
        if payment is None:
            raise PaymentNotFoundError(payment_pk)
        return payment

    def _lock(self, db: Session, *criteria) -> Optional[Payment]:
        """Lock the payment's order, then the payment itself."""
        order_id = db.scalar(select(Payment.order_id).where(*criteria))
        if order_id is None:
            return None
        self.orders.lock(db, order_id)
        q = select(Payment).where(*criteria).with_for_update().execution_options(populate_existing=True)
        return db.scalars(q).first()

    # ---------- checkout ----------
    @staticmethod
    def _check_payable(order: Order) -> None:
        if order.deleted_at is not None or order.order_status == OrderStatus.CANCELLED:
            raise OrderNotPayableError(order.order_number, "order is cancelled")
        if order.payment_status != OrderPaymentStatus.PENDING:
            raise OrderNotPayableError(order.order_number, f"payment status is {order.payment_status.value}")

    def initiate(self, db: Session, order: Order) -> InitiatedPayment:
        self._check_payable(order)

        gateway = self.registry.resolve(order.payment_method)
        try:
            session = gateway.create_checkout_session(order)
        except GatewayError as exc:
            logger.error("payment_initiation_failed", order_id=order.id, gateway=gateway.name, error=str(exc))
            raise

        with transaction(db):
            order = self.orders.lock(db, order.id)
            self._check_payable(order)
            payment = Payment(
                order_id=order.id,
                payment_id=session.external_payment_id or f"payment_{uuid.uuid4().hex}",
                gateway=gateway.name,
                amount_cents=order.total_cents,
                currency=gateway.currency,
                status=PaymentStatus.PENDING,
                gateway_response=session.raw or None,
            )
            db.add(payment)

        logger.info("payment_initiated", order_id=order.id, gateway=gateway.name,
                    payment_id=payment.payment_id, payment_url=session.payment_url)
        self.events.payment_event("payment.initiated", payment, payment_url=session.payment_url)
        return InitiatedPayment(payment_url=session.payment_url, payment=payment)

    # ---------- reconciliation ----------
    def reconcile(self, db: Session, external_payment_id: str, gateway_name: str) -> Payment:
        gateway = self.registry.resolve(gateway_name)
        with transaction(db):
            payment = self._lock(db, Payment.payment_id == external_payment_id, Payment.gateway == gateway.name)
            if payment is None:
                raise PaymentNotFoundError(external_payment_id)
            if payment.status in SETTLED_PAYMENT_STATUSES:
                logger.info("payment_already_reconciled", payment_id=payment.payment_id, status=payment.status.value)
                return payment
            paid = gateway.verify_payment(payment.payment_id)
            self._apply_outcome(payment, paid)
        self._emit_outcome(payment)
        return payment

    def reconcile_by_reference(self, db: Session, external_payment_id: str,
                               gateway_name: str = PaymentMethod.MYFATOORAH.value) -> Payment:
        """Reconcile a callback whose identifier was never stored.

        The provider's status details are fetched for the callback id, the
        embedded order reference locates the order, and the newest payment for
        that order and gateway is updated. The callback id is kept as the
        payment's ``transaction_id``.
        """
        gateway = self.registry.resolve(gateway_name)
        resolver = getattr(gateway, "resolve_order_reference", None)
        if resolver is None:
            raise ValidationError(f"{gateway.name} does not support order reference lookups")

        with transaction(db):
            ref = resolver(external_payment_id)
            if not ref.order_reference:
                raise ReferenceNotFoundError(gateway.name, external_payment_id)
            order = self.orders.get_by_number(db, ref.order_reference, for_update=True)
            payment = db.scalars(
                select(Payment)
                .where(Payment.order_id == order.id, Payment.gateway == gateway.name)
                .order_by(Payment.created_at.desc(), Payment.id.desc())
                .limit(1)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).first()
            if payment is None:
                raise PaymentNotFoundError(f"{gateway.name} payment for order {order.order_number}")
            if payment.status in SETTLED_PAYMENT_STATUSES:
                logger.info("payment_already_reconciled", payment_id=payment.payment_id, status=payment.status.value)
                return payment
            self._apply_outcome(payment, ref.paid, transaction_id=external_payment_id, details=ref.raw)
        self._emit_outcome(payment)
        return payment

    def handle_callback(self, db: Session, gateway_name: str, params: Mapping) -> Payment:
        gateway = self.registry.resolve(gateway_name)
        external_id = next((str(params[f]) for f in CALLBACK_ID_FIELDS if params.get(f)), None)
        if not external_id:
            raise ValidationError("Payment ID not provided")
        if hasattr(gateway, "resolve_order_reference"):
            return self.reconcile_by_reference(db, external_id, gateway.name)
        return self.reconcile(db, external_id, gateway.name)

    def handle_webhook(self, db: Session, gateway_name: str, payload: dict, trusted: bool = False) -> Optional[Payment]:
        """Record a webhook; trusted ones are re-verified through :meth:`reconcile`."""
        gateway = self.registry.resolve(gateway_name)
        gateway.handle_webhook(payload)
        if not trusted:
            return None
        external_id = gateway.webhook_payment_id(payload)
        if not external_id:
            return None
        known = db.scalar(select(Payment.id).where(Payment.payment_id == external_id, Payment.gateway == gateway.name))
        if known is None:
            logger.warning("webhook_payment_unknown", gateway=gateway.name, payment_id=external_id)
            return None
        return self.reconcile(db, external_id, gateway.name)

    def _apply_outcome(self, payment: Payment, paid: bool, transaction_id: Optional[str] = None,
                       details: Optional[dict] = None) -> None:
        order = payment.order
        if details:
            payment.gateway_response = {**(payment.gateway_response or {}), "verification": details}
        if transaction_id and transaction_id != payment.payment_id:
            payment.transaction_id = transaction_id

        if paid:
            payment.status = PaymentStatus.PAID
            payment.paid_at = now_utc()
            self.orders.set_payment_status(order, OrderPaymentStatus.PAID)
            if order.order_status == OrderStatus.PENDING:
                self.orders.set_order_status(order, OrderStatus.PROCESSING)
            elif order.order_status == OrderStatus.CANCELLED:
                logger.warning("payment_received_for_cancelled_order", order_id=order.id,
                               payment_id=payment.payment_id)
            logger.info("payment_verified", payment_id=payment.payment_id, order_id=order.id, gateway=payment.gateway)
        else:
            payment.status = PaymentStatus.FAILED
            # a stale failed attempt never undoes a paid order
            if order.payment_status != OrderPaymentStatus.PAID:
                self.orders.set_payment_status(order, OrderPaymentStatus.FAILED)
            logger.warning("payment_verification_failed", payment_id=payment.payment_id,
                           order_id=order.id, gateway=payment.gateway)

    def _emit_outcome(self, payment: Payment) -> None:
        event = "payment.succeeded" if payment.status == PaymentStatus.PAID else "payment.failed"
        self.events.payment_event(event, payment)

    # ---------- fulfilment ----------
    def capture(self, db: Session, payment: Payment) -> Payment:
        if not payment.is_paid:
            raise PaymentNotPaidError(payment.payment_id)
        gateway = self.registry.resolve(payment.gateway)
        with transaction(db):
            payment = self._lock(db, Payment.id == payment.id)
            if not payment.is_paid:
                raise PaymentNotPaidError(payment.payment_id)
            order = payment.order
            if payment.status == PaymentStatus.PAID and not gateway.auto_capture:
                result = gateway.capture_payment(order, payment.payment_id)
                payment.status = PaymentStatus.CAPTURED
                payment.gateway_response = {**(payment.gateway_response or {}), "capture": result}
            if order.order_status != OrderStatus.COMPLETED:
                self.orders.set_order_status(order, OrderStatus.COMPLETED)
        logger.info("order_completed", payment_id=payment.payment_id, order_id=payment.order_id)
        self.events.order_event("order.completed", payment.order, payment_id=payment.payment_id)
        return payment

    def refund(self, db: Session, payment: Payment, amount_cents: Optional[int] = None) -> Payment:
        with transaction(db):
            payment = self._lock(db, Payment.id == payment.id)
            if not payment.can_be_refunded:
                raise NotRefundableError(payment.payment_id, payment.status.value)
            amount = payment.amount_cents if amount_cents is None else int(amount_cents)
            if amount > payment.amount_cents:
                raise RefundExceedsAmountError(amount, payment.amount_cents)
            if amount <= 0:
                raise ValidationError("Refund amount must be positive")

            gateway = self.registry.resolve(payment.gateway)
            result = gateway.refund_payment(payment, amount)

            payment.status = PaymentStatus.REFUNDED
            payment.gateway_response = {**(payment.gateway_response or {}), "refund": result}
            order = payment.order
            self.orders.set_payment_status(order, OrderPaymentStatus.REFUNDED)
            self.ledger.release(db, order)

        logger.info("payment_refunded", payment_id=payment.payment_id, order_id=payment.order_id, amount_cents=amount)
        self.events.payment_event("payment.refunded", payment, refund_amount_cents=amount)
        return payment

    # ---------- provider extras ----------
    def payment_options(self, gateway_name: str, amount_cents: int, phone: Optional[str] = None) -> list:
        gateway = self.registry.resolve(gateway_name)
        lookup = getattr(gateway, "payment_options", None)
        if lookup is None:
            raise ValidationError(f"{gateway.name} does not publish payment options")
        return lookup(amount_cents, phone)
