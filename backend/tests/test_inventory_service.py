"""Stock ledger: deductions, reversals, manual adjustments and the sum invariant."""

import pytest

from billing.extensions import db
from billing.models import StockMovement, ActivityEvent
from billing.services import inventory_service
from billing.services.inventory_service import InsufficientStockError
from billing.services.reconciliation_service import product_ledger_quantity
from billing.validation import NotFoundError, ValidationError


def _assert_ledger_matches(product):
    db.session.refresh(product)
    assert product.current_stock_qty == product_ledger_quantity(product.id)


class TestOpeningStock:
    def test_opening_stock_is_a_movement(self, db_session, make_product):
        product = make_product(stock=25)

        movements = db_session.query(StockMovement).filter_by(product_id=product.id).all()
        assert [(m.reason, m.quantity_delta) for m in movements] == [("OPENING", 25)]
        _assert_ledger_matches(product)

    def test_zero_opening_stock_writes_nothing(self, db_session, make_product):
        product = make_product(stock=0)

        assert db_session.query(StockMovement).filter_by(product_id=product.id).count() == 0
        assert product.current_stock_qty == 0


class TestReserveAndDeduct:
    def test_deducts_and_records_sale(self, db_session, product):
        movement = inventory_service.reserve_and_deduct(product.id, 5, "SALE")
        db_session.commit()

        assert movement.quantity_delta == -5
        assert movement.reason == "SALE"
        assert product.current_stock_qty == 95
        _assert_ledger_matches(product)

    def test_insufficient_stock(self, db_session, make_product):
        product = make_product(stock=3)

        with pytest.raises(InsufficientStockError) as exc_info:
            inventory_service.reserve_and_deduct(product.id, 10, "SALE")
        db_session.rollback()

        assert exc_info.value.details["available"] == 3
        assert exc_info.value.details["required"] == 10
        assert "Insufficient stock" in str(exc_info.value)
        db_session.refresh(product)
        assert product.current_stock_qty == 3
        _assert_ledger_matches(product)

    def test_can_deduct_to_exactly_zero(self, db_session, make_product):
        product = make_product(stock=4)

        inventory_service.reserve_and_deduct(product.id, 4, "SALE")
        db_session.commit()

        assert product.current_stock_qty == 0

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            inventory_service.reserve_and_deduct(99999, 1, "SALE")

    def test_rejects_non_positive_quantity(self, db_session, product):
        with pytest.raises(ValidationError):
            inventory_service.reserve_and_deduct(product.id, 0, "SALE")


class TestReverse:
    def test_reverse_movement_restores_stock(self, db_session, product):
        movement = inventory_service.reserve_and_deduct(product.id, 7, "SALE")
        db_session.commit()

        reversals = inventory_service.reverse(movement_id=movement.id)
        db_session.commit()

        assert len(reversals) == 1
        assert reversals[0].quantity_delta == 7
        assert reversals[0].reversal_of_id == movement.id
        assert product.current_stock_qty == 100
        _assert_ledger_matches(product)

    def test_reverse_is_idempotent(self, db_session, product):
        movement = inventory_service.reserve_and_deduct(product.id, 7, "SALE")
        db_session.commit()
        inventory_service.reverse(movement_id=movement.id)
        db_session.commit()

        again = inventory_service.reverse(movement_id=movement.id)
        db_session.commit()

        assert again == []
        assert product.current_stock_qty == 100
        assert db_session.query(StockMovement).filter_by(reason="REVERSAL").count() == 1

    def test_reverse_requires_exactly_one_reference(self, db_session):
        with pytest.raises(ValidationError):
            inventory_service.reverse()
        with pytest.raises(ValidationError):
            inventory_service.reverse(invoice_id=1, movement_id=1)

    def test_reverse_unknown_movement(self, db_session):
        with pytest.raises(NotFoundError):
            inventory_service.reverse(movement_id=99999)


class TestAdjustStock:
    def test_adjust_in(self, db_session, product):
        updated = inventory_service.adjust_stock(product.id, 10, "in", "Recount", actor="admin")

        assert updated.current_stock_qty == 110
        movement = db_session.query(StockMovement).filter_by(reason="MANUAL_IN").one()
        assert movement.quantity_delta == 10
        assert movement.note == "Recount"
        assert movement.actor == "admin"
        _assert_ledger_matches(updated)

    def test_adjust_out(self, db_session, product):
        updated = inventory_service.adjust_stock(product.id, 30, "out", "Damaged")

        assert updated.current_stock_qty == 70
        assert db_session.query(StockMovement).filter_by(reason="MANUAL_OUT").one().quantity_delta == -30

    def test_adjust_out_cannot_go_negative(self, db_session, make_product):
        product = make_product(stock=5)

        with pytest.raises(InsufficientStockError):
            inventory_service.adjust_stock(product.id, 6, "out", "Damaged")

        db_session.refresh(product)
        assert product.current_stock_qty == 5
        assert db_session.query(StockMovement).filter_by(reason="MANUAL_OUT").count() == 0

    def test_adjust_records_activity(self, db_session, product):
        inventory_service.adjust_stock(product.id, 3, "in", "Found in back room", actor="admin")

        event = db_session.query(ActivityEvent).filter_by(event_type="stock.adjusted").one()
        assert event.product_id == product.id
        assert event.actor == "admin"

    @pytest.mark.parametrize("quantity, adjust_type", [(0, "in"), (-1, "out"), (5, "sideways")])
    def test_adjust_validation(self, db_session, product, quantity, adjust_type):
        with pytest.raises(ValidationError):
            inventory_service.adjust_stock(product.id, quantity, adjust_type)

    def test_adjust_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            inventory_service.adjust_stock(99999, 1, "in")


class TestLowStock:
    def test_lists_products_at_or_below_threshold(self, db_session, make_product):
        low = make_product(stock=2, name="Low")
        edge = make_product(stock=10, name="Edge")
        make_product(stock=50, name="Plenty")

        result = inventory_service.get_low_stock_products(10)

        assert [p.id for p in result] == [low.id, edge.id]


def test_sum_invariant_after_mixed_operations(db_session, product):
    m1 = inventory_service.reserve_and_deduct(product.id, 12, "SALE")
    inventory_service.manual_adjust(product.id, 5, "Recount")
    m3 = inventory_service.reserve_and_deduct(product.id, 40, "SALE")
    db_session.commit()
    inventory_service.reverse(movement_id=m1.id)
    inventory_service.manual_adjust(product.id, -3, "Breakage")
    inventory_service.reverse(movement_id=m3.id)
    db_session.commit()

    assert product.current_stock_qty == 100 + 5 - 3
    _assert_ledger_matches(product)
