# Overview: Service-layer operations for inventory; the only writer of Product.stock_quantity.

# backend/pos_core/services/inventory_service.py

"""
Inventory Guard Invariants (authoritative)

Stock model:
- Product.stock_quantity is the live count; StockMovement is its append-only ledger.
- stock_quantity == opening_quantity + SUM(signed movement quantity), always.
- Movement quantity is stored positive; the sign comes from the type
  (OUT = -1; IN, ADJUSTMENT, RETURN = +1).

Business invariants:
- stock_quantity never goes negative.
- Check-and-decrement is ONE conditional UPDATE
  (... WHERE stock_quantity >= :qty), never read-then-write, so concurrent
  reservations for one product serialize in the database.
- Every stock mutation appends exactly one StockMovement in the same
  transaction. Never one without the other.
- Serialized products: stock_quantity == COUNT(AVAILABLE serial_items).
  Units enter through receive_serial_items and flip SOLD/AVAILABLE next to
  the OUT/ADJUSTMENT/RETURN movement of the same transaction.

Transactions:
- Public functions with commit=True own their transaction and retry transient
  failures. Orchestrators pass commit=False and own the surrounding
  transaction instead (nothing is committed or retried here).
"""

from __future__ import annotations

import logging

from sqlalchemy import case, func, select, update

from ..errors import (
    InsufficientStockError,
    InvariantViolationError,
    ProductNotFoundError,
    SerialItemNotAvailableError,
    ValidationError,
)
from ..extensions import db
from ..models import Product, SerialItem, StockMovement
from ..models.inventory import (
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_IN,
    MOVEMENT_OUT,
    MOVEMENT_RETURN,
    MOVEMENT_SIGNS,
    SERIAL_STATUS_AVAILABLE,
    SERIAL_STATUS_SOLD,
)
from ..validation import require_int, require_positive_int, require_serial_numbers
from .audit_service import emit_audit, notify_low_stock
from .concurrency import begin_write, run_with_retry

logger = logging.getLogger(__name__)


RESTORE_MOVEMENT_TYPES = (MOVEMENT_RETURN, MOVEMENT_ADJUSTMENT)


def _apply_stock_change(
    *,
    product_id: int,
    movement_type: str,
    quantity: int,
    reason: str | None,
    user_id: int | None,
    reference_type: str | None = None,
    reference_id: int | None = None,
) -> StockMovement:
    """Core stock mutation without commit or retry: one UPDATE + one movement row."""
    quantity = require_positive_int(quantity, "quantity")
    sign = MOVEMENT_SIGNS[movement_type]

    if sign < 0:
        stmt = (
            update(Product)
            .where(Product.id == product_id, Product.stock_quantity >= quantity)
            .values(stock_quantity=Product.stock_quantity - quantity)
        )
    else:
        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .values(stock_quantity=Product.stock_quantity + quantity)
        )

    result = db.session.execute(stmt.execution_options(synchronize_session="fetch"))

    if result.rowcount == 0:
        row = db.session.execute(
            select(Product.name, Product.stock_quantity).where(Product.id == product_id)
        ).first()
        if row is None:
            raise ProductNotFoundError(product_id)
        logger.info(
            "Reservation rejected: product %s requested %s, available %s",
            product_id, quantity, row.stock_quantity,
        )
        raise InsufficientStockError(product_id, row.name, quantity, row.stock_quantity)

    new_quantity, threshold = db.session.execute(
        select(Product.stock_quantity, Product.low_stock_threshold).where(Product.id == product_id)
    ).one()

    if new_quantity < 0:
        raise InvariantViolationError(
            "Stock went negative",
            {"product_id": product_id, "stock_quantity": new_quantity},
        )

    movement = StockMovement(
        product_id=product_id,
        movement_type=movement_type,
        quantity=quantity,
        resulting_quantity=new_quantity,
        reason=reason,
        user_id=user_id,
        reference_type=reference_type,
        reference_id=reference_id,
    )
    db.session.add(movement)
    db.session.flush()

    previous_quantity = new_quantity - sign * quantity
    if sign < 0 and new_quantity <= threshold < previous_quantity:
        notify_low_stock(product_id, new_quantity, threshold)

    emit_audit(
        "inventory.stock_changed",
        "product",
        product_id,
        user_id=user_id,
        old_value={"stock_quantity": previous_quantity},
        new_value={"stock_quantity": new_quantity, "movement_type": movement_type, "stock_movement_id": movement.id},
        reason=reason,
    )
    return movement


def _execute(op, commit: bool):
    if not commit:
        return op()

    def _op():
        begin_write()
        movement = op()
        db.session.commit()
        return movement

    return run_with_retry(_op)


def reserve_stock(
    product_id: int,
    quantity: int,
    reason: str | None = None,
    user_id: int | None = None,
    *,
    reference_type: str | None = None,
    reference_id: int | None = None,
    commit: bool = True,
) -> StockMovement:
    """
    Atomically decrement stock for a sale line (OUT movement).

    Raises:
        ValidationError: quantity is not a positive integer
        ProductNotFoundError: no such product
        InsufficientStockError: stock_quantity < quantity at the instant of the update
    """
    return _execute(
        lambda: _apply_stock_change(
            product_id=product_id,
            movement_type=MOVEMENT_OUT,
            quantity=quantity,
            reason=reason,
            user_id=user_id,
            reference_type=reference_type,
            reference_id=reference_id,
        ),
        commit,
    )


def restore_stock(
    product_id: int,
    quantity: int,
    reason: str | None = None,
    user_id: int | None = None,
    *,
    movement_type: str = MOVEMENT_RETURN,
    reference_type: str | None = None,
    reference_id: int | None = None,
    commit: bool = True,
) -> StockMovement:
    """
    Atomically increment stock (RETURN or ADJUSTMENT movement).

    Always succeeds when the product exists.
    """
    if movement_type not in RESTORE_MOVEMENT_TYPES:
        raise ValidationError(
            f"Restore movement type must be one of {RESTORE_MOVEMENT_TYPES}",
            {"movement_type": movement_type},
        )
    return _execute(
        lambda: _apply_stock_change(
            product_id=product_id,
            movement_type=movement_type,
            quantity=quantity,
            reason=reason,
            user_id=user_id,
            reference_type=reference_type,
            reference_id=reference_id,
        ),
        commit,
    )


def receive_stock(
    product_id: int,
    quantity: int,
    reason: str | None = "Stock received",
    user_id: int | None = None,
    *,
    commit: bool = True,
) -> StockMovement:
    """Goods received from a supplier (IN movement). Serialized products use receive_serial_items."""
    def _op():
        _require_unserialized(product_id)
        return _apply_stock_change(
            product_id=product_id,
            movement_type=MOVEMENT_IN,
            quantity=quantity,
            reason=reason,
            user_id=user_id,
            reference_type="manual",
        )

    return _execute(_op, commit)


def adjust_stock(
    product_id: int,
    new_quantity: int,
    reason: str,
    user_id: int | None = None,
) -> StockMovement | None:
    """
    Set stock to an absolute counted quantity.

    The difference is booked as an OUT movement (shrinkage) or an ADJUSTMENT
    movement (found stock). Returns None when the count already matches.
    """
    new_quantity = require_int(new_quantity, "new_quantity")
    if new_quantity < 0:
        raise ValidationError("new_quantity cannot be negative", {"new_quantity": new_quantity})

    def _op():
        begin_write()
        current = db.session.execute(
            select(Product.stock_quantity).where(Product.id == product_id)
        ).scalar()
        if current is None:
            raise ProductNotFoundError(product_id)
        _require_unserialized(product_id)

        delta = new_quantity - current
        if delta == 0:
            db.session.rollback()
            return None

        movement = _apply_stock_change(
            product_id=product_id,
            movement_type=MOVEMENT_ADJUSTMENT if delta > 0 else MOVEMENT_OUT,
            quantity=abs(delta),
            reason=reason,
            user_id=user_id,
            reference_type="manual",
        )
        db.session.commit()
        return movement

    return run_with_retry(_op)


# =============================================================================
# SERIALIZED UNITS
# =============================================================================

def _require_unserialized(product_id: int) -> None:
    if db.session.execute(select(Product.is_serialized).where(Product.id == product_id)).scalar():
        raise ValidationError(
            "Serialized stock moves with its serial units",
            {"product_id": product_id},
        )


def receive_serial_items(
    product_id: int,
    serial_numbers,
    reason: str | None = "Serial units received",
    user_id: int | None = None,
) -> list[SerialItem]:
    """Register received units of a serialized product: one AVAILABLE row each, one IN movement for the batch."""
    serials = require_serial_numbers(serial_numbers)

    def _op():
        begin_write()
        product = db.session.get(Product, product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        if not product.is_serialized:
            raise ValidationError(f"Product {product.name} is not serialized", {"product_id": product_id})

        known = [
            row.serial_number
            for row in db.session.query(SerialItem.serial_number).filter(SerialItem.serial_number.in_(serials)).all()
        ]
        if known:
            raise ValidationError("Serial numbers already registered", {"serial_numbers": sorted(known)})

        units = [SerialItem(product_id=product_id, serial_number=s) for s in serials]
        db.session.add_all(units)
        _apply_stock_change(
            product_id=product_id,
            movement_type=MOVEMENT_IN,
            quantity=len(units),
            reason=reason,
            user_id=user_id,
            reference_type="manual",
        )
        db.session.commit()
        return units

    return run_with_retry(_op)


def claim_serial_item(serial_item_id: int, product_id: int, product_name: str | None = None) -> SerialItem:
    """
    AVAILABLE -> SOLD for one unit of product_id, in the caller's transaction.

    The status flip is a conditional UPDATE, so two sales of the same unit
    cannot both succeed.

    Raises:
        SerialItemNotAvailableError: unknown unit, other product, or already sold
    """
    result = db.session.execute(
        update(SerialItem)
        .where(
            SerialItem.id == serial_item_id,
            SerialItem.product_id == product_id,
            SerialItem.status == SERIAL_STATUS_AVAILABLE,
        )
        .values(status=SERIAL_STATUS_SOLD)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 0:
        logger.info("Serial unit %s not available for product %s", serial_item_id, product_id)
        raise SerialItemNotAvailableError(serial_item_id, product_id, product_name)
    return db.session.get(SerialItem, serial_item_id)


def release_serial_item(serial_item_id: int) -> SerialItem:
    """SOLD -> AVAILABLE when a sale is cancelled or the unit is returned. Caller owns the transaction."""
    result = db.session.execute(
        update(SerialItem)
        .where(SerialItem.id == serial_item_id, SerialItem.status == SERIAL_STATUS_SOLD)
        .values(status=SERIAL_STATUS_AVAILABLE)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 0:
        logger.error("Serial unit %s released while not SOLD", serial_item_id)
        raise InvariantViolationError(
            "Serial unit is not sold",
            {"serial_item_id": serial_item_id},
        )
    return db.session.get(SerialItem, serial_item_id)


def list_serial_items(product_id: int, status: str | None = None) -> list[SerialItem]:
    query = db.session.query(SerialItem).filter(SerialItem.product_id == product_id)
    if status:
        query = query.filter(SerialItem.status == status)
    return query.order_by(SerialItem.id.asc()).all()


# =============================================================================
# QUERIES
# =============================================================================

def get_stock_level(product_id: int) -> int:
    quantity = db.session.execute(
        select(Product.stock_quantity).where(Product.id == product_id)
    ).scalar()
    if quantity is None:
        raise ProductNotFoundError(product_id)
    return quantity


def list_stock_movements(product_id: int, limit: int = 200) -> list[StockMovement]:
    return (
        db.session.query(StockMovement)
        .filter_by(product_id=product_id)
        .order_by(StockMovement.id.desc())
        .limit(limit)
        .all()
    )


def list_low_stock_products() -> list[Product]:
    """Active products at or below their low-stock threshold."""
    return (
        db.session.query(Product)
        .filter(
            Product.is_active.is_(True),
            Product.stock_quantity <= Product.low_stock_threshold,
        )
        .order_by(Product.stock_quantity.asc(), Product.id.asc())
        .all()
    )


def _signed_movement_total(product_id: int) -> int:
    signed = case(
        (StockMovement.movement_type == MOVEMENT_OUT, -StockMovement.quantity),
        else_=StockMovement.quantity,
    )
    total = db.session.query(func.coalesce(func.sum(signed), 0)).filter(
        StockMovement.product_id == product_id
    ).scalar()
    return int(total or 0)


def verify_stock_ledger(product_id: int) -> dict:
    """
    Recompute the ledger equation for one product.

    consistent is True when
        stock_quantity == opening_quantity + SUM(signed movements)
    """
    row = db.session.execute(
        select(Product.stock_quantity, Product.opening_quantity).where(Product.id == product_id)
    ).first()
    if row is None:
        raise ProductNotFoundError(product_id)

    movement_total = _signed_movement_total(product_id)
    expected = row.opening_quantity + movement_total
    return {
        "product_id": product_id,
        "opening_quantity": row.opening_quantity,
        "movement_total": movement_total,
        "expected_quantity": expected,
        "stock_quantity": row.stock_quantity,
        "consistent": expected == row.stock_quantity,
    }


def assert_stock_ledger(product_id: int) -> dict:
    """verify_stock_ledger that raises InvariantViolationError on divergence."""
    result = verify_stock_ledger(product_id)
    if not result["consistent"]:
        logger.error("Stock ledger diverged for product %s: %s", product_id, result)
        raise InvariantViolationError("Stock ledger diverged from stock quantity", result)
    return result
