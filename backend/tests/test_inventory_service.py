# Overview: Pytest coverage for the inventory guard.

"""
Inventory Guard Tests

Stock never goes negative, every change writes exactly one movement, and
stock_quantity always equals opening_quantity + SUM(signed movements).
"""

import pytest
from sqlalchemy.exc import IntegrityError

from pos_core.errors import (
    InsufficientStockError,
    InvariantViolationError,
    ProductNotFoundError,
    ValidationError,
)
from pos_core.extensions import db
from pos_core.models import Product, StockMovement
from pos_core.models.inventory import MOVEMENT_ADJUSTMENT, MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_RETURN
from pos_core.services import inventory_service


def _movements(product_id):
    return (
        db.session.query(StockMovement)
        .filter_by(product_id=product_id)
        .order_by(StockMovement.id)
        .all()
    )


class TestReserveStock:
    """Atomic check-and-decrement."""

    def test_reserve_decrements_and_writes_out_movement(self, db_session, product_a):
        movement = inventory_service.reserve_stock(product_a.id, 4, reason="Sale", user_id=7)

        assert inventory_service.get_stock_level(product_a.id) == 6
        assert movement.movement_type == MOVEMENT_OUT
        assert movement.quantity == 4
        assert movement.signed_quantity == -4
        assert movement.resulting_quantity == 6
        assert movement.user_id == 7
        assert len(_movements(product_a.id)) == 1

    def test_reserve_entire_stock_reaches_zero(self, db_session, product_a):
        inventory_service.reserve_stock(product_a.id, 10)
        assert inventory_service.get_stock_level(product_a.id) == 0

    def test_reserve_more_than_available_is_rejected(self, db_session, product_a):
        with pytest.raises(InsufficientStockError) as exc_info:
            inventory_service.reserve_stock(product_a.id, 11)

        details = exc_info.value.details
        assert details["product_id"] == product_a.id
        assert details["requested_quantity"] == 11
        assert details["available_quantity"] == 10
        assert exc_info.value.category == "business_rule"

        assert inventory_service.get_stock_level(product_a.id) == 10
        assert _movements(product_a.id) == []

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, True, "2"])
    def test_reserve_rejects_non_positive_or_non_integer_quantity(self, db_session, product_a, quantity):
        with pytest.raises(ValidationError):
            inventory_service.reserve_stock(product_a.id, quantity)
        assert inventory_service.get_stock_level(product_a.id) == 10

    def test_reserve_unknown_product(self, db_session):
        with pytest.raises(ProductNotFoundError):
            inventory_service.reserve_stock(99999, 1)

    def test_reserve_records_reference(self, db_session, product_a):
        movement = inventory_service.reserve_stock(
            product_a.id, 1, reference_type="order", reference_id=42
        )
        assert movement.reference_type == "order"
        assert movement.reference_id == 42

    def test_reserve_without_commit_is_rolled_back_with_caller(self, db_session, product_a):
        inventory_service.reserve_stock(product_a.id, 3, commit=False)
        db.session.rollback()

        assert inventory_service.get_stock_level(product_a.id) == 10
        assert _movements(product_a.id) == []


class TestRestoreStock:
    """Atomic increment with RETURN or ADJUSTMENT movements."""

    def test_reserve_then_restore_returns_to_prior_value(self, db_session, product_a):
        inventory_service.reserve_stock(product_a.id, 3)
        inventory_service.restore_stock(product_a.id, 3, reason="Customer return")

        assert inventory_service.get_stock_level(product_a.id) == 10
        movements = _movements(product_a.id)
        assert [m.movement_type for m in movements] == [MOVEMENT_OUT, MOVEMENT_RETURN]
        assert inventory_service.verify_stock_ledger(product_a.id)["consistent"]

    def test_restore_as_adjustment(self, db_session, product_a):
        movement = inventory_service.restore_stock(product_a.id, 2, movement_type=MOVEMENT_ADJUSTMENT)
        assert movement.movement_type == MOVEMENT_ADJUSTMENT
        assert inventory_service.get_stock_level(product_a.id) == 12

    def test_restore_rejects_out_movement_type(self, db_session, product_a):
        with pytest.raises(ValidationError):
            inventory_service.restore_stock(product_a.id, 2, movement_type=MOVEMENT_OUT)

    def test_restore_unknown_product(self, db_session):
        with pytest.raises(ProductNotFoundError):
            inventory_service.restore_stock(99999, 1)


class TestReceiveAndAdjust:
    """Goods received and counted adjustments."""

    def test_receive_stock_writes_in_movement(self, db_session, product_a):
        movement = inventory_service.receive_stock(product_a.id, 15)
        assert movement.movement_type == MOVEMENT_IN
        assert inventory_service.get_stock_level(product_a.id) == 25

    def test_adjust_down_books_out_movement(self, db_session, product_a):
        movement = inventory_service.adjust_stock(product_a.id, 7, reason="Cycle count")
        assert movement.movement_type == MOVEMENT_OUT
        assert movement.quantity == 3
        assert inventory_service.get_stock_level(product_a.id) == 7

    def test_adjust_up_books_adjustment_movement(self, db_session, product_a):
        movement = inventory_service.adjust_stock(product_a.id, 14, reason="Found stock")
        assert movement.movement_type == MOVEMENT_ADJUSTMENT
        assert movement.quantity == 4
        assert inventory_service.get_stock_level(product_a.id) == 14

    def test_adjust_to_same_quantity_is_noop(self, db_session, product_a):
        assert inventory_service.adjust_stock(product_a.id, 10, reason="Count") is None
        assert _movements(product_a.id) == []

    def test_adjust_rejects_negative_quantity(self, db_session, product_a):
        with pytest.raises(ValidationError):
            inventory_service.adjust_stock(product_a.id, -1, reason="Count")


class TestLedger:
    """stock_quantity == opening_quantity + SUM(signed movements)."""

    def test_ledger_holds_after_mixed_movements(self, db_session, product_a):
        inventory_service.reserve_stock(product_a.id, 4)
        inventory_service.receive_stock(product_a.id, 6)
        inventory_service.restore_stock(product_a.id, 1)
        inventory_service.adjust_stock(product_a.id, 5, reason="Shrinkage")

        result = inventory_service.assert_stock_ledger(product_a.id)
        assert result["consistent"] is True
        assert result["opening_quantity"] == 10
        assert result["movement_total"] == -5
        assert result["stock_quantity"] == 5

    def test_ledger_detects_out_of_band_change(self, db_session, product_a):
        db.session.query(Product).filter_by(id=product_a.id).update({"stock_quantity": 3})
        db.session.commit()

        assert inventory_service.verify_stock_ledger(product_a.id)["consistent"] is False
        with pytest.raises(InvariantViolationError):
            inventory_service.assert_stock_ledger(product_a.id)

    def test_movements_are_append_only(self, db_session, product_a):
        movement = inventory_service.reserve_stock(product_a.id, 1)

        movement.reason = "edited"
        with pytest.raises(InvariantViolationError):
            db.session.flush()
        db.session.rollback()

        movement = db.session.get(StockMovement, movement.id)
        db.session.delete(movement)
        with pytest.raises(InvariantViolationError):
            db.session.flush()
        db.session.rollback()

    def test_database_rejects_negative_stock(self, db_session, product_a):
        with pytest.raises(IntegrityError):
            db.session.query(Product).filter_by(id=product_a.id).update({"stock_quantity": -1})
        db.session.rollback()


class TestLowStock:
    """Threshold crossing notices and the low-stock listing."""

    def test_crossing_threshold_notifies_after_commit(self, db_session, product_a, low_stock_notices):
        inventory_service.reserve_stock(product_a.id, 6)
        assert low_stock_notices == []

        inventory_service.reserve_stock(product_a.id, 1)
        assert len(low_stock_notices) == 1
        notice = low_stock_notices[0]
        assert notice.product_id == product_a.id
        assert notice.stock_quantity == 3
        assert notice.low_stock_threshold == 3

        # Already below: no repeat notice
        inventory_service.reserve_stock(product_a.id, 1)
        assert len(low_stock_notices) == 1

    def test_rolled_back_work_never_notifies(self, db_session, product_a, low_stock_notices):
        inventory_service.reserve_stock(product_a.id, 9, commit=False)
        db.session.rollback()
        assert low_stock_notices == []

    def test_list_low_stock_products(self, db_session, product_a, product_b):
        inventory_service.reserve_stock(product_a.id, 8)

        low = inventory_service.list_low_stock_products()
        assert [p.id for p in low] == [product_a.id]

    def test_list_stock_movements_newest_first(self, db_session, product_a):
        inventory_service.reserve_stock(product_a.id, 1)
        inventory_service.receive_stock(product_a.id, 2)

        movements = inventory_service.list_stock_movements(product_a.id)
        assert [m.movement_type for m in movements] == [MOVEMENT_IN, MOVEMENT_OUT]
