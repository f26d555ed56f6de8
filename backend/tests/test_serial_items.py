# Overview: Pytest coverage for serialized products and their tracked units.

"""
Serialized Unit Tests

Every unit of a serialized product is a row; stock equals the count of
AVAILABLE units. A sale marks its unit SOLD, and cancellation or return
puts it back.
"""

import pytest

from pos_core.errors import InvariantViolationError, SerialItemNotAvailableError, ValidationError
from pos_core.extensions import db
from pos_core.models import Order, SerialItem
from pos_core.models.inventory import SERIAL_STATUS_AVAILABLE, SERIAL_STATUS_SOLD
from pos_core.services import catalog_service, inventory_service
from pos_core.services.order_service import cancel_order, create_order, get_order
from pos_core.services.payment_service import record_payment
from pos_core.services.return_service import create_return
from pos_core.validation import require_serial_numbers


def _unit(product, serial_number):
    return db.session.query(SerialItem).filter_by(product_id=product.id, serial_number=serial_number).one()


def _available_count(product):
    return len(inventory_service.list_serial_items(product.id, status=SERIAL_STATUS_AVAILABLE))


class TestSerializedCatalog:
    """Creation and receiving keep stock equal to available units."""

    def test_created_units_are_available(self, db_session, serialized_product):
        assert serialized_product.is_serialized
        assert inventory_service.get_stock_level(serialized_product.id) == 2
        units = inventory_service.list_serial_items(serialized_product.id)
        assert [u.serial_number for u in units] == ["SN-A", "SN-B"]
        assert {u.status for u in units} == {SERIAL_STATUS_AVAILABLE}

    def test_stock_quantity_not_accepted_for_serialized(self, db_session):
        with pytest.raises(ValidationError):
            catalog_service.create_product(
                sku="PHN-SER-2", name="Other Phone", price_cents=100,
                stock_quantity=3, is_serialized=True,
            )

    def test_serials_need_a_serialized_product(self, db_session):
        with pytest.raises(ValidationError):
            catalog_service.create_product(
                sku="CABLE-1", name="Cable", price_cents=100, serial_numbers=["X-1"],
            )

    def test_serial_numbers_are_unique_across_products(self, db_session, serialized_product):
        with pytest.raises(ValidationError) as exc_info:
            catalog_service.create_product(
                sku="PHN-SER-2", name="Other Phone", price_cents=100,
                is_serialized=True, serial_numbers=["SN-B", "SN-Z"],
            )
        assert exc_info.value.details["serial_numbers"] == ["SN-B"]

    def test_receive_serial_items(self, db_session, serialized_product):
        units = inventory_service.receive_serial_items(serialized_product.id, ["SN-C", " SN-D "], user_id=4)

        assert [u.serial_number for u in units] == ["SN-C", "SN-D"]
        assert inventory_service.get_stock_level(serialized_product.id) == 4
        assert _available_count(serialized_product) == 4
        movements = inventory_service.list_stock_movements(serialized_product.id)
        assert [(m.movement_type, m.quantity) for m in movements] == [("IN", 2)]
        assert inventory_service.verify_stock_ledger(serialized_product.id)["consistent"]

    def test_receive_rejects_known_serial(self, db_session, serialized_product):
        with pytest.raises(ValidationError):
            inventory_service.receive_serial_items(serialized_product.id, ["SN-A"])
        assert inventory_service.get_stock_level(serialized_product.id) == 2

    def test_receive_needs_serialized_product(self, db_session, product_a):
        with pytest.raises(ValidationError):
            inventory_service.receive_serial_items(product_a.id, ["SN-X"])

    def test_bulk_stock_changes_refused(self, db_session, serialized_product):
        with pytest.raises(ValidationError):
            inventory_service.receive_stock(serialized_product.id, 5)
        with pytest.raises(ValidationError):
            inventory_service.adjust_stock(serialized_product.id, 1, "Recount")
        assert inventory_service.get_stock_level(serialized_product.id) == 2


class TestSerializedSales:
    """One named unit per line, claimed inside create_order."""

    def test_sale_marks_unit_sold(self, db_session, zero_tax, serialized_product):
        unit = _unit(serialized_product, "SN-A")
        order = create_order([{"product_id": serialized_product.id, "quantity": 1, "serial_item_id": unit.id}])

        item = get_order(order.id).items[0]
        assert item.serial_item_id == unit.id
        assert item.serial_number == "SN-A"
        assert item.warranty_expiry is not None
        assert db.session.get(SerialItem, unit.id).status == SERIAL_STATUS_SOLD
        assert inventory_service.get_stock_level(serialized_product.id) == 1
        assert _available_count(serialized_product) == 1

    def test_two_units_on_two_lines(self, db_session, zero_tax, serialized_product):
        a = _unit(serialized_product, "SN-A")
        b = _unit(serialized_product, "SN-B")
        order = create_order([
            {"product_id": serialized_product.id, "quantity": 1, "serial_item_id": a.id},
            {"product_id": serialized_product.id, "quantity": 1, "serial_item_id": b.id},
        ])

        assert len(get_order(order.id).items) == 2
        assert order.subtotal_cents == 100000
        assert inventory_service.get_stock_level(serialized_product.id) == 0

    def test_unit_cannot_be_sold_twice(self, db_session, zero_tax, serialized_product, product_a):
        unit = _unit(serialized_product, "SN-A")
        create_order([{"product_id": serialized_product.id, "quantity": 1, "serial_item_id": unit.id}])

        with pytest.raises(SerialItemNotAvailableError) as exc_info:
            create_order([
                {"product_id": product_a.id, "quantity": 2},
                {"product_id": serialized_product.id, "quantity": 1, "serial_item_id": unit.id},
            ])

        assert exc_info.value.details["serial_item_id"] == unit.id
        assert db.session.query(Order).count() == 1
        assert inventory_service.get_stock_level(product_a.id) == 10
        assert inventory_service.get_stock_level(serialized_product.id) == 1

    def test_unit_of_another_product(self, db_session, zero_tax, serialized_product):
        other = catalog_service.create_product(
            sku="TAB-SER-1", name="Serial Tablet", price_cents=30000,
            is_serialized=True, serial_numbers=["TB-1"],
        )
        foreign = _unit(other, "TB-1")

        with pytest.raises(SerialItemNotAvailableError):
            create_order([{"product_id": serialized_product.id, "quantity": 1, "serial_item_id": foreign.id}])
        assert db.session.get(SerialItem, foreign.id).status == SERIAL_STATUS_AVAILABLE

    def test_serialized_line_needs_a_unit(self, db_session, zero_tax, serialized_product):
        with pytest.raises(ValidationError):
            create_order([{"product_id": serialized_product.id, "quantity": 1}])

    def test_serialized_line_is_one_unit(self, db_session, zero_tax, serialized_product):
        unit = _unit(serialized_product, "SN-A")
        with pytest.raises(ValidationError):
            create_order([{"product_id": serialized_product.id, "quantity": 2, "serial_item_id": unit.id}])
        assert db.session.get(SerialItem, unit.id).status == SERIAL_STATUS_AVAILABLE

    def test_unit_on_plain_product_rejected(self, db_session, zero_tax, serialized_product, product_a):
        unit = _unit(serialized_product, "SN-A")
        with pytest.raises(ValidationError):
            create_order([{"product_id": product_a.id, "quantity": 1, "serial_item_id": unit.id}])


class TestSerialRelease:
    """Cancellation and returns put the unit back."""

    def test_cancel_releases_unit(self, db_session, zero_tax, serialized_product):
        unit = _unit(serialized_product, "SN-A")
        order = create_order([{"product_id": serialized_product.id, "quantity": 1, "serial_item_id": unit.id}])

        cancel_order(order.id, reason="Changed mind")

        assert db.session.get(SerialItem, unit.id).status == SERIAL_STATUS_AVAILABLE
        assert inventory_service.get_stock_level(serialized_product.id) == 2
        assert _available_count(serialized_product) == 2
        assert inventory_service.verify_stock_ledger(serialized_product.id)["consistent"]

    def test_return_releases_unit(self, db_session, zero_tax, serialized_product):
        unit = _unit(serialized_product, "SN-B")
        order = create_order([{"product_id": serialized_product.id, "quantity": 1, "serial_item_id": unit.id}])
        record_payment(order.id, order.total_cents, "CARD")
        item = get_order(order.id).items[0]

        create_return(order.id, [{"order_item_id": item.id, "quantity": 1}], "Faulty screen")

        assert db.session.get(SerialItem, unit.id).status == SERIAL_STATUS_AVAILABLE
        assert inventory_service.get_stock_level(serialized_product.id) == 2
        assert _available_count(serialized_product) == 2

    def test_returned_unit_can_be_sold_again(self, db_session, zero_tax, serialized_product):
        unit = _unit(serialized_product, "SN-A")
        order = create_order([{"product_id": serialized_product.id, "quantity": 1, "serial_item_id": unit.id}])
        record_payment(order.id, order.total_cents, "CASH")
        create_return(order.id, [{"order_item_id": get_order(order.id).items[0].id, "quantity": 1}], "Unwanted")

        again = create_order([{"product_id": serialized_product.id, "quantity": 1, "serial_item_id": unit.id}])
        assert get_order(again.id).items[0].serial_number == "SN-A"

    def test_release_of_unsold_unit_is_an_invariant_breach(self, db_session, serialized_product):
        unit = _unit(serialized_product, "SN-A")
        with pytest.raises(InvariantViolationError):
            inventory_service.release_serial_item(unit.id)


class TestSerialNumberValidation:

    def test_strips_values(self):
        assert require_serial_numbers([" A1 ", "B2"]) == ["A1", "B2"]

    def test_duplicates_in_batch(self):
        with pytest.raises(ValidationError) as exc_info:
            require_serial_numbers(["A1", "B2", "A1 "])
        assert exc_info.value.details["duplicates"] == ["A1"]

    @pytest.mark.parametrize("values", [None, [], "A1", ["A1", "  "], [7]])
    def test_rejects_bad_input(self, values):
        with pytest.raises(ValidationError):
            require_serial_numbers(values)
