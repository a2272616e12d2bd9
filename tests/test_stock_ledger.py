"""Tests for the stock ledger."""

import pytest

from orderpay.db.models import Product
from orderpay.errors import InsufficientStockError, ProductNotFoundError, ValidationError
from orderpay.services.stock import StockLedger


@pytest.fixture
def widget(products):
    return products["widget"]


class TestDecrement:
    def test_reduces_stock(self, db, ledger, widget):
        ledger.decrement(db, widget.id, 3)
        db.commit()
        db.refresh(widget)
        assert widget.stock == 7

    def test_exact_remaining_stock_is_allowed(self, db, ledger, widget):
        ledger.decrement(db, widget.id, 10)
        db.commit()
        db.refresh(widget)
        assert widget.stock == 0

    def test_over_request_is_rejected_without_change(self, db, ledger, widget):
        with pytest.raises(InsufficientStockError) as exc:
            ledger.decrement(db, widget.id, 11)
        assert exc.value.requested == 11
        assert exc.value.available == 10
        assert "Widget" in str(exc.value)
        db.rollback()
        db.refresh(widget)
        assert widget.stock == 10

    def test_unknown_product(self, db, ledger, products):
        with pytest.raises(ProductNotFoundError):
            ledger.decrement(db, 9999, 1)

    def test_zero_quantity_is_invalid(self, db, ledger, widget):
        with pytest.raises(ValidationError):
            ledger.decrement(db, widget.id, 0)


class TestIncrement:
    def test_adds_stock(self, db, ledger, widget):
        ledger.increment(db, widget.id, 4)
        db.commit()
        db.refresh(widget)
        assert widget.stock == 14

    def test_unknown_product(self, db, ledger, products):
        with pytest.raises(ProductNotFoundError):
            ledger.increment(db, 9999, 1)


class TestRelease:
    def test_restores_each_item_once(self, db, ledger, make_order, products):
        order = make_order(items=[(products["widget"].id, 2), (products["gadget"].id, 1)])
        assert ledger.release(db, order) is True
        db.commit()
        assert ledger.release(db, order) is False
        db.commit()
        db.refresh(products["widget"])
        db.refresh(products["gadget"])
        assert products["widget"].stock == 10
        assert products["gadget"].stock == 3
        assert order.stock_released is True


class TestLastUnitRace:
    """Two buyers both saw one unit left; only one of them may get it."""

    def test_stale_read_cannot_oversell(self, file_db):
        first, second = file_db.open(), file_db.open()
        ledger = StockLedger()
        seen_by_first = first.get(Product, file_db.last_one)
        seen_by_second = second.get(Product, file_db.last_one)
        assert seen_by_first.stock == seen_by_second.stock == 1
        first.rollback()
        second.rollback()

        ledger.decrement(first, file_db.last_one, 1)
        first.commit()

        with pytest.raises(InsufficientStockError) as exc:
            ledger.decrement(second, file_db.last_one, 1)
        second.rollback()
        assert exc.value.available == 0
        assert file_db.stock(file_db.last_one) == 0
