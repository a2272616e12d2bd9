"""Stock ledger: the only code path that changes product inventory."""

from typing import Optional

import structlog
from sqlalchemy import update
from sqlalchemy.orm import Session

from orderpay.db.models import Order, Product
from orderpay.errors import InsufficientStockError, ProductNotFoundError, ValidationError

logger = structlog.get_logger(__name__)


class StockLedger:
    """Atomic inventory adjustments.

    ``decrement`` is a conditional UPDATE (compare-and-set on ``stock >= qty``)
    so two transactions racing for the last unit cannot both succeed, whatever
    they read beforehand. Callers own the surrounding transaction; loaded
    Product objects are not synchronised, refresh them before reading ``stock``.
    """

    def find(self, db: Session, product_id: int) -> Optional[Product]:
        return db.get(Product, product_id)

    def decrement(self, db: Session, product_id: int, qty: int) -> None:
        if qty <= 0:
            raise ValidationError(f"Quantity must be at least 1 (product_id {product_id})")
        result = db.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock >= qty)
            .values(stock=Product.stock - qty)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return
        product = db.get(Product, product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        db.refresh(product, ["stock"])
        raise InsufficientStockError(product.title, qty, product.stock)

    def increment(self, db: Session, product_id: int, qty: int) -> None:
        if qty <= 0:
            return
        result = db.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(stock=Product.stock + qty)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ProductNotFoundError(product_id)

    def release(self, db: Session, order: Order) -> bool:
        """Give back every item's stock once per order. Returns False if already released."""
        if order.stock_released:
            return False
        for item in order.items:
            self.increment(db, item.product_id, item.qty)
        order.stock_released = True
        logger.info("stock_released", order_id=order.id, order_number=order.order_number,
                    items=[{"product_id": it.product_id, "qty": it.qty} for it in order.items])
        return True
