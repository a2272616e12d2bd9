"""Order lifecycle: creation with stock reservation, edits, cancellation and deletion."""

import secrets
from typing import Iterable, Optional, Sequence

import structlog
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from orderpay.db.models import (
    Order, OrderItem, OrderPaymentStatus, OrderStatus, Payment, PaymentMethod, now_utc,
)
from orderpay.db.session import transaction
from orderpay.errors import (
    OrderAlreadyPaidError, OrderHasPaymentsError, OrderNotCancellableError, OrderNotFoundError,
    ProductNotFoundError, ValidationError,
)
from orderpay.schemas import OrderCreate, OrderUpdate
from orderpay.services.events import EventEmitter
from orderpay.services.pricing import PricingPolicy
from orderpay.services.stock import StockLedger

logger = structlog.get_logger(__name__)


def _pairs(items: Iterable) -> list[tuple[int, int]]:
    """Normalise request items (schemas or plain dicts) to (product_id, qty)."""
    pairs = []
    for it in items:
        if isinstance(it, dict):
            product_id, qty = it.get("product_id"), it.get("qty", it.get("quantity"))
        else:
            product_id, qty = it.product_id, it.qty
        if product_id is None or qty is None:
            raise ValidationError("Each item needs a product_id and a quantity")
        pairs.append((int(product_id), int(qty)))
    return pairs


def generate_order_number(db: Session) -> str:
    while True:
        number = f"ORD-{now_utc():%Y%m%d}-{secrets.token_hex(3).upper()}"
        if db.scalar(select(Order.id).where(Order.order_number == number)) is None:
            return number


class OrderManager:
    def __init__(self, ledger: Optional[StockLedger] = None, pricing: Optional[PricingPolicy] = None,
                 events: Optional[EventEmitter] = None):
        self.ledger = ledger or StockLedger()
        self.pricing = pricing or PricingPolicy.from_settings()
        self.events = events or EventEmitter()

    # ---------- reads ----------
    def get_order(self, db: Session, order_id: int, user_email: Optional[str] = None) -> Order:
        q = select(Order).where(Order.id == order_id, Order.deleted_at.is_(None))
        if user_email is not None:
            q = q.where(Order.user_email == user_email)
        order = db.scalars(q).first()
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    def get_by_number(self, db: Session, order_number: str, for_update: bool = False) -> Order:
        q = select(Order).where(Order.order_number == order_number, Order.deleted_at.is_(None))
        if for_update:
            q = q.with_for_update().execution_options(populate_existing=True)
        order = db.scalars(q).first()
        if order is None:
            raise OrderNotFoundError(order_number)
        return order

    def lock(self, db: Session, order_id: int) -> Order:
        """Row-lock the order and reload it, discarding whatever the session held.

        Order is always locked before any of its Payment rows.
        """
        q = (
            select(Order)
            .where(Order.id == order_id, Order.deleted_at.is_(None))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        order = db.scalars(q).first()
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    def list_orders(self, db: Session, user_email: str, status: Optional[str] = None,
                    payment_status: Optional[str] = None, page: int = 1, per_page: int = 15):
        q = select(Order).where(Order.user_email == user_email, Order.deleted_at.is_(None))
        if status:
            q = q.where(Order.order_status == OrderStatus(status))
        if payment_status:
            q = q.where(Order.payment_status == OrderPaymentStatus(payment_status))
        total = db.scalar(select(func.count()).select_from(q.subquery()))
        page, per_page = max(1, page), max(1, min(per_page, 100))
        rows = db.scalars(
            q.order_by(Order.created_at.desc(), Order.id.desc()).offset((page - 1) * per_page).limit(per_page)
        ).all()
        return rows, total

    def validate_stock(self, db: Session, items: Iterable) -> bool:
        for product_id, qty in _pairs(items):
            product = self.ledger.find(db, product_id)
            if product is None or not product.active or product.stock < qty:
                return False
        return True

    # ---------- writes ----------
    def create_order(self, db: Session, user_email: str, items: Sequence, data: OrderCreate) -> Order:
        pairs = _pairs(items)
        if not pairs:
            raise ValidationError("Order must contain at least one item")
        if any(qty < 1 for _, qty in pairs):
            raise ValidationError("Quantity must be at least 1")
        try:
            method = PaymentMethod(str(getattr(data.payment_method, "value", data.payment_method)).lower())
        except ValueError:
            raise ValidationError(f"Invalid payment method: {data.payment_method}")

        with transaction(db):
            products = {}
            for product_id, _ in pairs:
                product = self.ledger.find(db, product_id)
                if product is None or not product.active:
                    raise ProductNotFoundError(product_id)
                products[product_id] = product

            subtotal = sum(products[pid].price_cents * qty for pid, qty in pairs)
            price = self.pricing.quote(subtotal, data.discount_cents)
            billing = data.billing_address.model_dump(mode="json") if data.billing_address else None
            shipping = data.shipping_address.model_dump(mode="json") if data.shipping_address else billing

            order = Order(
                order_number=generate_order_number(db),
                user_email=user_email,
                subtotal_cents=price.subtotal_cents,
                tax_cents=price.tax_cents,
                shipping_cents=price.shipping_cents,
                discount_cents=price.discount_cents,
                total_cents=price.total_cents,
                payment_method=method,
                payment_status=OrderPaymentStatus.PENDING,
                order_status=OrderStatus.PENDING,
                notes=data.notes,
                billing_address=billing,
                shipping_address=shipping,
            )
            db.add(order)
            db.flush()

            for product_id, qty in pairs:
                product = products[product_id]
                self.ledger.decrement(db, product_id, qty)
                db.add(OrderItem(
                    order_id=order.id,
                    product_id=product_id,
                    qty=qty,
                    unit_price_cents=product.price_cents,
                    total_price_cents=product.price_cents * qty,
                    title_snapshot=product.title,
                ))

        db.refresh(order)
        logger.info("order_created", order_id=order.id, order_number=order.order_number,
                    user_email=user_email, total_cents=order.total_cents, payment_method=method.value)
        self.events.order_event("order.created", order, items=[
            {"product_id": it.product_id, "qty": it.qty, "unit_price_cents": it.unit_price_cents}
            for it in order.items
        ])
        return order

    def update_order(self, db: Session, order: Order, data: OrderUpdate) -> Order:
        with transaction(db):
            order = self.lock(db, order.id)
            if order.is_paid:
                raise OrderAlreadyPaidError(order.order_number, "update")
            if data.notes is not None:
                order.notes = data.notes
            if data.billing_address is not None:
                order.billing_address = data.billing_address.model_dump(mode="json")
            if data.shipping_address is not None:
                order.shipping_address = data.shipping_address.model_dump(mode="json")
        logger.info("order_updated", order_id=order.id, order_number=order.order_number)
        return order

    def delete_order(self, db: Session, order: Order) -> None:
        with transaction(db):
            order = self.lock(db, order.id)
            if db.scalar(select(Payment.id).where(Payment.order_id == order.id).limit(1)) is not None:
                raise OrderHasPaymentsError(order.order_number)
            if order.is_paid:
                raise OrderAlreadyPaidError(order.order_number, "delete")
            self.ledger.release(db, order)
            for item in list(order.items):
                db.delete(item)
            order.deleted_at = now_utc()
        logger.info("order_deleted", order_id=order.id, order_number=order.order_number)
        self.events.order_event("order.deleted", order)

    def cancel_order(self, db: Session, order: Order) -> Order:
        with transaction(db):
            order = self.lock(db, order.id)
            if not order.can_be_cancelled:
                raise OrderNotCancellableError(order.order_number, order.order_status.value,
                                               order.payment_status.value)
            self.ledger.release(db, order)
            order.order_status = OrderStatus.CANCELLED
            order.payment_status = OrderPaymentStatus.FAILED
        logger.info("order_cancelled", order_id=order.id, order_number=order.order_number)
        self.events.order_event("order.cancelled", order)
        return order

    # ---------- transitions (caller owns the transaction) ----------
    def set_payment_status(self, order: Order, status: OrderPaymentStatus) -> Order:
        order.payment_status = status
        logger.info("order_payment_status_updated", order_id=order.id,
                    order_number=order.order_number, payment_status=status.value)
        return order

    def set_order_status(self, order: Order, status: OrderStatus) -> Order:
        order.order_status = status
        logger.info("order_status_updated", order_id=order.id,
                    order_number=order.order_number, order_status=status.value)
        return order
