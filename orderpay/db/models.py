
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Text, Boolean, DateTime, ForeignKey, BigInteger, JSON, CheckConstraint, Enum as SAEnum, event
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Any
from orderpay.db.session import Base

def now_utc() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)

def _enum(cls):
    return SAEnum(cls, native_enum=False, length=32, values_callable=lambda e: [m.value for m in e])

class PaymentMethod(str, Enum):
    MYFATOORAH = "myfatoorah"
    TABBY = "tabby"
    TAMARA = "tamara"

class OrderPaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"

class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

class PaymentStatus(str, Enum):
    PENDING = "pending"
    AUTHORIZED = "authorized"
    PAID = "paid"
    CAPTURED = "captured"
    FAILED = "failed"
    REFUNDED = "refunded"

# statuses a callback must not re-verify
SETTLED_PAYMENT_STATUSES = frozenset({PaymentStatus.PAID, PaymentStatus.CAPTURED, PaymentStatus.REFUNDED})

class Product(Base):
    __tablename__ = "products"
    __table_args__ = (CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(240), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    price_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    stock: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    image_url: Mapped[str] = mapped_column(String(1024), default="")
    active: Mapped[bool] = mapped_column(Boolean, default=True)

class Order(Base):
    __tablename__ = "orders"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_number: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    user_email: Mapped[str] = mapped_column(String(255), index=True)
    subtotal_cents: Mapped[int] = mapped_column(BigInteger)
    tax_cents: Mapped[int] = mapped_column(BigInteger, default=0)
    shipping_cents: Mapped[int] = mapped_column(BigInteger, default=0)
    discount_cents: Mapped[int] = mapped_column(BigInteger, default=0)
    total_cents: Mapped[int] = mapped_column(BigInteger)
    payment_method: Mapped[PaymentMethod] = mapped_column(_enum(PaymentMethod))
    payment_status: Mapped[OrderPaymentStatus] = mapped_column(_enum(OrderPaymentStatus), default=OrderPaymentStatus.PENDING, index=True)
    order_status: Mapped[OrderStatus] = mapped_column(_enum(OrderStatus), default=OrderStatus.PENDING, index=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    billing_address: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    shipping_address: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    stock_released: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(DateTime(), default=now_utc, onupdate=now_utc)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    payments = relationship("Payment", back_populates="order", order_by="Payment.id")

    @property
    def is_paid(self) -> bool:
        return self.payment_status == OrderPaymentStatus.PAID

    @property
    def can_be_cancelled(self) -> bool:
        return (
            self.order_status in (OrderStatus.PENDING, OrderStatus.PROCESSING)
            and self.payment_status not in (OrderPaymentStatus.PAID, OrderPaymentStatus.REFUNDED)
        )

    @property
    def delivery_address(self) -> dict:
        return self.shipping_address or self.billing_address or {}

class OrderItem(Base):
    __tablename__ = "order_items"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"))
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id"))
    qty: Mapped[int] = mapped_column(Integer)
    unit_price_cents: Mapped[int] = mapped_column(BigInteger)
    total_price_cents: Mapped[int] = mapped_column(BigInteger)
    title_snapshot: Mapped[str] = mapped_column(String(255))

    order = relationship("Order", back_populates="items")
    product = relationship("Product")

@event.listens_for(OrderItem, "before_insert")
@event.listens_for(OrderItem, "before_update")
def _recompute_item_total(mapper, connection, item: OrderItem):
    item.total_price_cents = item.qty * item.unit_price_cents

class Payment(Base):
    __tablename__ = "payments"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True)
    payment_id: Mapped[str] = mapped_column(String(190), unique=True, index=True)
    gateway: Mapped[str] = mapped_column(String(40), index=True)
    amount_cents: Mapped[int] = mapped_column(BigInteger)
    currency: Mapped[str] = mapped_column(String(3), default="SAR")
    status: Mapped[PaymentStatus] = mapped_column(_enum(PaymentStatus), default=PaymentStatus.PENDING, index=True)
    transaction_id: Mapped[Optional[str]] = mapped_column(String(190), nullable=True)
    gateway_response: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(DateTime(), default=now_utc, onupdate=now_utc)

    order = relationship("Order", back_populates="payments")

    @property
    def is_paid(self) -> bool:
        return self.status in (PaymentStatus.PAID, PaymentStatus.CAPTURED)

    @property
    def can_be_refunded(self) -> bool:
        return self.is_paid
